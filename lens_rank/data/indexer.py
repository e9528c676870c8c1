"""Dense index spaces, per-user rating histories and the genre lookup table.

Raw user / item ids are mapped to contiguous zero-based indices with
``LabelEncoder`` (classes sorted ascending, so identical input always yields
identical indices).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder

log = logging.getLogger(__name__)

MIN_HISTORY = 20  # users with fewer ratings are not sampled as query users


class Rating(NamedTuple):
    item_id: int
    rating: int
    timestamp: int


def _fit_encoder(values: np.ndarray) -> LabelEncoder:
    enc = LabelEncoder()
    if len(values):
        enc.fit(values)
    else:
        enc.classes_ = np.empty(0, dtype=np.int64)
    return enc


@dataclass
class EntityIndex:
    user_encoder: LabelEncoder
    item_encoder: LabelEncoder
    interactions: pd.DataFrame  # user_id, item_id, rating, timestamp, user_idx, item_idx
    items: pd.DataFrame  # item_id, title, year, genres; row r == item index r
    histories: Dict[int, List[Rating]]
    genre_matrix: np.ndarray  # float32 [num_items, num_genres]
    _user_pos: Dict[int, int] = field(init=False, repr=False)
    _item_pos: Dict[int, int] = field(init=False, repr=False)

    def __post_init__(self):
        self._user_pos = {int(u): i for i, u in enumerate(self.user_encoder.classes_)}
        self._item_pos = {int(v): i for i, v in enumerate(self.item_encoder.classes_)}

    # -- sizes ---------------------------------------------------------------

    @property
    def num_users(self) -> int:
        return len(self.user_encoder.classes_)

    @property
    def num_items(self) -> int:
        return len(self.item_encoder.classes_)

    @property
    def num_genres(self) -> int:
        return int(self.genre_matrix.shape[1])

    @property
    def user_ids(self) -> np.ndarray:
        return self.user_encoder.classes_

    @property
    def item_ids(self) -> np.ndarray:
        return self.item_encoder.classes_

    def is_empty(self) -> bool:
        return self.num_users == 0 or self.num_items == 0 or self.interactions.empty

    # -- raw id <-> dense index ---------------------------------------------

    def user_index_of(self, user_id: int) -> int:
        return self._user_pos[int(user_id)]

    def item_index_of(self, item_id: int) -> int:
        return self._item_pos[int(item_id)]

    def raw_user(self, idx: int) -> int:
        return int(self.user_encoder.classes_[idx])

    def raw_item(self, idx: int) -> int:
        return int(self.item_encoder.classes_[idx])

    # -- histories -----------------------------------------------------------

    def history(self, user_id: int) -> List[Rating]:
        """Ratings of ``user_id``, best rated first, most recent first on ties."""
        return self.histories.get(int(user_id), [])

    def top_rated(self, user_id: int, n: int = 10) -> List[Rating]:
        return self.history(user_id)[:n]

    def seen_item_indices(self, user_id: int) -> np.ndarray:
        return np.fromiter(
            (self._item_pos[r.item_id] for r in self.history(user_id)), dtype=np.int64
        )

    def qualifying_users(self, min_history: int = MIN_HISTORY) -> List[int]:
        return [int(u) for u in self.user_ids if len(self.histories.get(int(u), ())) >= min_history]

    def item_meta(self, item_id: int) -> pd.Series:
        return self.items.iloc[self.item_index_of(item_id)]


def build_index(interactions: pd.DataFrame, items: pd.DataFrame) -> EntityIndex:
    """Build an :class:`EntityIndex` from interaction and item frames.

    A repeated item id keeps its last row. Items whose genre vector length
    differs from the most common length are dropped, and so are interactions
    that reference an item missing from ``items``.
    Empty inputs give an empty index (callers decide whether that is fatal).
    """
    if interactions.empty or items.empty:
        log.warning(
            "Building index from empty input (%d interactions, %d items)",
            len(interactions),
            len(items),
        )

    items = (
        items.drop_duplicates(subset="item_id", keep="last")
        .sort_values("item_id", kind="mergesort")
        .reset_index(drop=True)
    )
    if len(items):
        widths = items["genres"].map(len)
        ragged = widths != widths.mode().max()
        if ragged.any():
            log.warning("Dropped %d item(s) with a mismatched genre vector length", int(ragged.sum()))
            items = items[~ragged].reset_index(drop=True)
    item_enc = _fit_encoder(items["item_id"].to_numpy(dtype=np.int64))

    known = interactions["item_id"].isin(items["item_id"])
    n_dropped = int((~known).sum())
    if n_dropped:
        log.info("Dropped %d interaction(s) referencing unknown items", n_dropped)
    kept = interactions[known].reset_index(drop=True)

    user_enc = _fit_encoder(np.unique(kept["user_id"].to_numpy(dtype=np.int64)))

    kept = kept.assign(
        user_idx=user_enc.transform(kept["user_id"]) if len(kept) else np.empty(0, np.int64),
        item_idx=item_enc.transform(kept["item_id"]) if len(kept) else np.empty(0, np.int64),
    )

    ordered = kept.sort_values(
        ["user_id", "rating", "timestamp"], ascending=[True, False, False], kind="mergesort"
    )
    cols = ["item_id", "rating", "timestamp"]
    histories = {
        int(u): [Rating(*map(int, row)) for row in grp[cols].itertuples(index=False, name=None)]
        for u, grp in ordered.groupby("user_id", sort=True)
    }

    if len(items):
        genre_matrix = np.asarray(items["genres"].tolist(), dtype=np.float32)
    else:
        genre_matrix = np.zeros((0, 0), dtype=np.float32)

    log.info(
        "Indexed %d interactions | %d users | %d items | %d genres",
        len(kept),
        len(user_enc.classes_),
        len(item_enc.classes_),
        genre_matrix.shape[1],
    )
    return EntityIndex(
        user_encoder=user_enc,
        item_encoder=item_enc,
        interactions=kept,
        items=items,
        histories=histories,
        genre_matrix=genre_matrix,
    )
