"""Two-Tower retrieval model: embedding tables + per-tower MLPs, dot-product scoring."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

NORM_EPS = 1e-12

# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def build_tower(in_dim: int, hidden_dims: Sequence[int], out_dim: int) -> nn.Sequential:
    """Feed-forward stack: ``Linear → ReLU`` per hidden width, then a linear output layer."""
    layers: list[nn.Module] = []
    prev = in_dim
    for h in hidden_dims:
        layers += [nn.Linear(prev, h), nn.ReLU()]
        prev = h
    layers.append(nn.Linear(prev, out_dim))
    return nn.Sequential(*layers)


def l2_normalize(x: torch.Tensor, eps: float = NORM_EPS) -> torch.Tensor:
    # Safe (out-of-place) normalization; zero rows stay zero instead of NaN
    return x / torch.linalg.vector_norm(x, dim=-1, keepdim=True).clamp_min(eps)


def score(u: torch.Tensor, i: torch.Tensor) -> torch.Tensor:
    """Row-wise dot product; a ``[1, E]`` user broadcasts against ``[N, E]`` items."""
    return torch.sum(u * i, dim=-1)


# ---------------------------------------------------------------------------
# Losses
# ---------------------------------------------------------------------------


def in_batch_softmax_loss(
    user_vecs: torch.Tensor,
    item_vecs: torch.Tensor,
    temperature: float = 1.0,
    item_idx: torch.Tensor | None = None,
) -> torch.Tensor:
    """Sampled softmax where row ``b``'s positive is item ``b`` and the rest of the batch are negatives.

    If ``item_idx`` is given, off-diagonal columns holding the same item as the
    row's positive are masked out instead of being counted as negatives.
    """
    logits = user_vecs @ item_vecs.T / temperature  # (B, B)
    labels = torch.arange(logits.size(0), device=logits.device)
    if item_idx is not None:
        dup = item_idx.unsqueeze(0) == item_idx.unsqueeze(1)
        dup.fill_diagonal_(False)
        logits = logits.masked_fill(dup, float("-inf"))
    return F.cross_entropy(logits, labels)


def bpr_loss(user_vecs: torch.Tensor, pos_vecs: torch.Tensor, neg_vecs: torch.Tensor) -> torch.Tensor:
    diff = score(user_vecs, pos_vecs) - score(user_vecs, neg_vecs)
    return -F.logsigmoid(diff).mean()


# ---------------------------------------------------------------------------
class TwoTowerModel(nn.Module):
    """User tower and item tower sharing one ``emb_dim``-sized output space.

    The item tower adds a learned projection of the item's genre flags to its
    embedding before the MLP. ``user_raw`` / ``item_raw`` expose the bare table
    lookups (no MLP, no genre fusion) as a baseline.
    """

    def __init__(
        self,
        num_users: int,
        num_items: int,
        num_genres: int,
        emb_dim: int = 32,
        hidden_dims: Sequence[int] = (64,),
        init_std: float = 0.05,
    ):
        super().__init__()
        self.init_std = init_std

        self.user_emb = nn.Embedding(num_users, emb_dim)
        self.item_emb = nn.Embedding(num_items, emb_dim)
        self.genre_weights = nn.Parameter(torch.empty(num_genres, emb_dim))

        self.user_tower = build_tower(emb_dim, hidden_dims, emb_dim)
        self.item_tower = build_tower(emb_dim, hidden_dims, emb_dim)

        self.reset_parameters()

    def reset_parameters(self) -> None:
        nn.init.normal_(self.user_emb.weight, std=self.init_std)
        nn.init.normal_(self.item_emb.weight, std=self.init_std)
        nn.init.normal_(self.genre_weights, std=self.init_std)
        # Tower layers keep the default nn.Linear init

    @property
    def emb_dim(self) -> int:
        return self.user_emb.embedding_dim

    # ---------------------------------------------------------------------
    def user_forward(self, users: torch.Tensor, *, normalize: bool) -> torch.Tensor:
        u = self.user_tower(self.user_emb(users))  # (B, E)
        return l2_normalize(u) if normalize else u

    def item_forward(self, items: torch.Tensor, genres: torch.Tensor, *, normalize: bool) -> torch.Tensor:
        h = self.item_emb(items) + genres @ self.genre_weights  # (B, E)
        v = self.item_tower(h)
        return l2_normalize(v) if normalize else v

    def user_raw(self, users: torch.Tensor, *, normalize: bool) -> torch.Tensor:
        """Untrained-baseline lookup. An all-zero row stays zero under ``normalize``."""
        u = self.user_emb(users)
        return l2_normalize(u) if normalize else u

    def item_raw(self, items: torch.Tensor, *, normalize: bool) -> torch.Tensor:
        v = self.item_emb(items)
        return l2_normalize(v) if normalize else v

    def forward(
        self,
        users: torch.Tensor,
        items: torch.Tensor,
        genres: torch.Tensor,
        normalize: bool = True,
    ) -> torch.Tensor:
        return score(
            self.user_forward(users, normalize=normalize),
            self.item_forward(items, genres, normalize=normalize),
        )

    # ---------------------------------------------------------------------
    def save_pretrained(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(self.state_dict(), path)

    @classmethod
    def load_pretrained(cls, path: str | Path, **kwargs) -> "TwoTowerModel":
        model = cls(**kwargs)
        state = torch.load(path, map_location="cpu")
        model.load_state_dict(state)
        model.eval()
        return model
