"""Mini-batch training for the two-tower model.

``iter_fit`` is a generator that yields after every optimizer step, so a
caller can interleave other work between batches or stop a run by simply not
asking for the next one. ``fit`` drains it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, NamedTuple

import mlflow
import pandas as pd
import torch
from torch.utils.data import DataLoader
from tqdm import tqdm

from lens_rank.config.train import TrainConfig
from lens_rank.datasets.two_tower import InteractionDataset
from lens_rank.models.two_tower import TwoTowerModel, bpr_loss, in_batch_softmax_loss

log = logging.getLogger(__name__)


class BatchLoss(NamedTuple):
    epoch: int
    step: int
    loss: float


def make_loader(df: pd.DataFrame, cfg: TrainConfig) -> DataLoader:
    """Loader that reshuffles every epoch from a seeded generator."""
    gen = torch.Generator().manual_seed(cfg.seed)
    return DataLoader(
        InteractionDataset(df),
        batch_size=cfg.batch_size,
        shuffle=True,
        drop_last=False,
        generator=gen,
    )


def sample_negatives(
    items: torch.Tensor, num_items: int, mode: str, gen: torch.Generator | None = None
) -> torch.Tensor:
    if mode == "rotate":
        return torch.roll(items, shifts=1)
    if mode == "random":
        neg = torch.randint(num_items, items.shape, generator=gen)
        return neg.to(items.device)
    raise ValueError(f"Unknown negative sampling: {mode}")


@contextmanager
def _released(optim: torch.optim.Optimizer):
    # Gradients (and the graph they pin) never outlive the batch, even on error
    try:
        yield
    finally:
        optim.zero_grad(set_to_none=True)


def _step(
    model: TwoTowerModel,
    batch: dict,
    genre_matrix: torch.Tensor,
    cfg: TrainConfig,
    optim: torch.optim.Optimizer,
    gen: torch.Generator,
) -> float:
    model.train()
    users = batch["user"].to(cfg.device)
    items = batch["item"].to(cfg.device)

    with _released(optim):
        u = model.user_forward(users, normalize=cfg.normalize)
        i = model.item_forward(items, genre_matrix[items], normalize=cfg.normalize)
        if cfg.loss == "softmax":
            loss = in_batch_softmax_loss(
                u, i, cfg.temperature, item_idx=items if cfg.mask_duplicates else None
            )
        elif cfg.loss == "bpr":
            neg = sample_negatives(items, genre_matrix.size(0), cfg.negatives, gen)
            n = model.item_forward(neg, genre_matrix[neg], normalize=cfg.normalize)
            loss = bpr_loss(u, i, n)
        else:
            raise ValueError(f"Unknown loss mode: {cfg.loss}")
        loss.backward()
        optim.step()
        return loss.item()


def iter_fit(
    model: TwoTowerModel,
    dl: DataLoader,
    genre_matrix: torch.Tensor,
    cfg: TrainConfig,
) -> Iterator[BatchLoss]:
    cfg.validate()
    model.to(cfg.device)
    genre_matrix = genre_matrix.to(cfg.device)
    optim = torch.optim.Adam(model.parameters(), lr=cfg.lr)
    neg_gen = torch.Generator().manual_seed(cfg.seed + 1)
    tracking = mlflow.active_run() is not None

    global_step = 0
    for ep in range(cfg.epochs):
        losses = []
        with tqdm(dl, desc=f"Epoch {ep+1}/{cfg.epochs}", leave=False) as pbar:
            for batch in pbar:
                loss = _step(model, batch, genre_matrix, cfg, optim, neg_gen)
                losses.append(loss)
                pbar.set_postfix(loss=f"{loss:.4f}")
                if tracking:
                    mlflow.log_metric("batch_loss", loss, step=global_step)
                yield BatchLoss(ep, global_step, loss)
                global_step += 1

        if losses:
            mean = sum(losses) / len(losses)
            if tracking:
                mlflow.log_metric("train_loss", mean, step=ep)
            log.info("Epoch %d/%d | loss %.4f | %d batches", ep + 1, cfg.epochs, mean, len(losses))


def fit(model: TwoTowerModel, dl: DataLoader, genre_matrix: torch.Tensor, cfg: TrainConfig) -> list[float]:
    """Run every epoch; return the per-batch losses."""
    return [b.loss for b in iter_fit(model, dl, genre_matrix, cfg)]
