"""One dataset + one model, owned by the caller.

A :class:`Session` ties the entity index, the training configuration and the
current model together so nothing in the engine needs module-level state.
Starting a new training run always replaces the previous model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
import torch

from lens_rank.config.train import ConfigError, TrainConfig
from lens_rank.data.indexer import EntityIndex, Rating, build_index
from lens_rank.data.preprocess import load_movielens
from lens_rank.datasets.two_tower import sample_interactions
from lens_rank.engine.projection import project_2d
from lens_rank.engine.ranking import Recommendation, item_embeddings, recommend
from lens_rank.engine.registry import create_model, model_kwargs
from lens_rank.engine.train_loop import BatchLoss, iter_fit, make_loader
from lens_rank.models.two_tower import TwoTowerModel

log = logging.getLogger(__name__)


@dataclass
class Session:
    index: EntityIndex
    config: TrainConfig = field(default_factory=TrainConfig)
    model: Optional[TwoTowerModel] = None
    losses: List[float] = field(default_factory=list)

    @classmethod
    def from_directory(cls, data_dir: Path, config: TrainConfig | None = None) -> "Session":
        interactions, items = load_movielens(data_dir)
        return cls(index=build_index(interactions, items), config=config or TrainConfig())

    @property
    def genre_tensor(self) -> torch.Tensor:
        return torch.as_tensor(self.index.genre_matrix, device=self.config.device)

    # ---------------------------------------------------------------------
    def new_model(self) -> TwoTowerModel:
        """Validate the config and replace the current model with a fresh one."""
        self.config.validate()
        if self.index.is_empty():
            raise ConfigError(
                f"Cannot train on an empty dataset ({self.index.num_users} users, "
                f"{self.index.num_items} items, {len(self.index.interactions)} interactions)"
            )
        self.model = None
        self.losses = []
        torch.manual_seed(self.config.seed)
        self.model = create_model("two_tower", **model_kwargs(self.index, self.config))
        self.model.to(self.config.device)
        return self.model

    def train_iter(self) -> Iterator[BatchLoss]:
        """Start a run; the returned generator performs one batch per ``next``.

        Configuration problems raise here, before the generator exists.
        """
        model = self.new_model()
        df = sample_interactions(self.index.interactions, self.config.max_interactions, self.config.seed)
        log.info("Training on %d of %d interactions", len(df), len(self.index.interactions))
        dl = make_loader(df, self.config)
        return self._record(iter_fit(model, dl, self.genre_tensor, self.config))

    def _record(self, it: Iterator[BatchLoss]) -> Iterator[BatchLoss]:
        for b in it:
            self.losses.append(b.loss)
            yield b

    def train(self) -> List[float]:
        for _ in self.train_iter():
            pass
        return self.losses

    # ---------------------------------------------------------------------
    def _trained(self) -> TwoTowerModel:
        if self.model is None:
            raise RuntimeError("No model yet; call train() first")
        return self.model

    def recommend(self, user_id: int, k: int = 10, *, baseline: bool = False) -> List[Recommendation]:
        return recommend(
            self._trained(),
            self.index,
            self.genre_tensor,
            user_id,
            k,
            raw=baseline,
            normalize=self.config.normalize,
            batch_size=self.config.score_batch_size,
        )

    def top_rated(self, user_id: int, n: int = 10) -> List[Rating]:
        return self.index.top_rated(user_id, n)

    def item_embeddings(self, *, baseline: bool = False) -> np.ndarray:
        return item_embeddings(
            self._trained(),
            self.genre_tensor,
            raw=baseline,
            normalize=self.config.normalize,
            batch_size=self.config.score_batch_size,
        )

    def projection(self) -> np.ndarray:
        return project_2d(self.item_embeddings())
