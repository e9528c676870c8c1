"""Top-K retrieval against the full item catalog."""

from __future__ import annotations

import logging
from typing import List, NamedTuple

import numpy as np
import torch

from lens_rank.data.indexer import MIN_HISTORY, EntityIndex
from lens_rank.models.two_tower import TwoTowerModel, score

log = logging.getLogger(__name__)


class Recommendation(NamedTuple):
    item_id: int
    score: float


def _item_chunks(num_items: int, batch_size: int):
    for start in range(0, num_items, batch_size):
        yield torch.arange(start, min(start + batch_size, num_items), dtype=torch.long)


@torch.no_grad()
def user_vector(
    model: TwoTowerModel, user_idx: int, *, raw: bool, normalize: bool, device: str = "cpu"
) -> torch.Tensor:
    """``[1, E]`` query vector for one user."""
    model.eval()
    users = torch.tensor([user_idx], dtype=torch.long, device=device)
    if raw:
        return model.user_raw(users, normalize=normalize)
    return model.user_forward(users, normalize=normalize)


@torch.no_grad()
def item_vectors(
    model: TwoTowerModel,
    genre_matrix: torch.Tensor,
    items: torch.Tensor,
    *,
    raw: bool,
    normalize: bool,
) -> torch.Tensor:
    model.eval()
    items = items.to(genre_matrix.device)
    if raw:
        return model.item_raw(items, normalize=normalize)
    return model.item_forward(items, genre_matrix[items], normalize=normalize)


@torch.no_grad()
def item_embeddings(
    model: TwoTowerModel,
    genre_matrix: torch.Tensor,
    *,
    raw: bool = False,
    normalize: bool,
    batch_size: int = 4096,
) -> np.ndarray:
    """Final ``[num_items, E]`` item matrix, computed chunk by chunk."""
    out = [
        item_vectors(model, genre_matrix, chunk, raw=raw, normalize=normalize).cpu()
        for chunk in _item_chunks(genre_matrix.size(0), batch_size)
    ]
    if not out:
        return np.zeros((0, model.emb_dim), dtype=np.float32)
    return torch.cat(out).numpy()


@torch.no_grad()
def score_catalog(
    model: TwoTowerModel,
    genre_matrix: torch.Tensor,
    user_idx: int,
    *,
    raw: bool,
    normalize: bool,
    batch_size: int = 4096,
) -> torch.Tensor:
    """Scores of one user against every item, ``[num_items]`` on CPU.

    Only one chunk of item vectors is alive at a time.
    """
    u = user_vector(model, user_idx, raw=raw, normalize=normalize, device=genre_matrix.device)
    parts = []
    for chunk in _item_chunks(genre_matrix.size(0), batch_size):
        v = item_vectors(model, genre_matrix, chunk, raw=raw, normalize=normalize)
        parts.append(score(u, v).cpu())
        del v
    return torch.cat(parts) if parts else torch.zeros(0)


def top_k(scores: torch.Tensor, exclude: np.ndarray, k: int) -> List[tuple[int, float]]:
    """Best ``k`` (index, score) pairs, skipping ``exclude``.

    Ties resolve to the lower index (stable sort over ascending candidates).
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")
    keep = torch.ones(scores.numel(), dtype=torch.bool)
    if len(exclude):
        keep[torch.as_tensor(exclude, dtype=torch.long)] = False
    cand = torch.nonzero(keep, as_tuple=False).squeeze(1)
    order = torch.sort(scores[cand], descending=True, stable=True).indices[:k]
    return [(int(cand[j]), float(scores[cand[j]])) for j in order]


def recommend(
    model: TwoTowerModel,
    index: EntityIndex,
    genre_matrix: torch.Tensor,
    user_id: int,
    k: int = 10,
    *,
    raw: bool = False,
    normalize: bool,
    batch_size: int = 4096,
) -> List[Recommendation]:
    """Top-``k`` unseen items for raw ``user_id``.

    ``raw=True`` ranks with the bare embedding tables (baseline) under the same
    exclusion and ordering rules.
    """
    uidx = index.user_index_of(user_id)  # KeyError for unknown users
    scores = score_catalog(
        model, genre_matrix, uidx, raw=raw, normalize=normalize, batch_size=batch_size
    )
    ranked = top_k(scores, index.seen_item_indices(user_id), k)
    return [Recommendation(index.raw_item(i), s) for i, s in ranked]


def sample_query_user(index: EntityIndex, min_history: int = MIN_HISTORY, seed: int | None = None) -> int:
    """Random raw user id among those with at least ``min_history`` ratings."""
    users = index.qualifying_users(min_history)
    if not users:
        raise LookupError(f"No user has {min_history} or more ratings")
    rng = np.random.default_rng(seed)
    return users[int(rng.integers(len(users)))]
