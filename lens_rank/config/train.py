"""Training configuration for the two-tower engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

import torch

LOSS_MODES = ("softmax", "bpr")
NEGATIVE_MODES = ("rotate", "random")


class ConfigError(ValueError):
    """Raised for invalid training configuration, before anything is allocated."""


def _default_device() -> str:
    return "cuda" if torch.cuda.is_available() else "cpu"


@dataclass
class TrainConfig:
    """
    Hyper-parameters for one training run.

    Defaults mirror the MovieLens-100K demo setup.

    Attributes:
        epochs: Passes over the (truncated) interaction set.
        batch_size: Interactions per optimizer step; the last batch may be short.
        emb_dim: Size of the embedding tables and of the final tower output.
        hidden_dim: Width of the single hidden layer of each tower.
        hidden_dims: Optional explicit hidden stack, overrides ``hidden_dim``.
        lr: Adam learning rate.
        max_interactions: Keep at most this many interactions (``None`` keeps all).
        loss: ``"softmax"`` (in-batch sampled softmax) or ``"bpr"``.
        negatives: BPR negative sampling, ``"rotate"`` or ``"random"``.
        temperature: Logits are divided by this before the softmax.
        normalize: L2-normalize tower outputs in training and ranking.
        mask_duplicates: Drop in-batch negatives that are the row's own item.
        init_std: Std of the normal init for embedding and genre tables.
        seed: Seeds model init, truncation and per-epoch shuffling.
        device: Torch device string.
        score_batch_size: Catalog chunk size when scoring all items.
    """

    epochs: int = 3
    batch_size: int = 1024
    emb_dim: int = 32
    hidden_dim: int = 64
    hidden_dims: tuple[int, ...] | None = None
    lr: float = 0.003
    max_interactions: int | None = 80000
    loss: str = "softmax"
    negatives: str = "rotate"
    temperature: float = 1.0
    normalize: bool = True
    mask_duplicates: bool = False
    init_std: float = 0.05
    seed: int = 42
    device: str = field(default_factory=_default_device)
    score_batch_size: int = 4096

    @property
    def tower_dims(self) -> tuple[int, ...]:
        return tuple(self.hidden_dims) if self.hidden_dims else (self.hidden_dim,)

    def validate(self) -> "TrainConfig":
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.emb_dim <= 0:
            raise ConfigError(f"emb_dim must be positive, got {self.emb_dim}")
        if any(d <= 0 for d in self.tower_dims):
            raise ConfigError(f"hidden dimensions must be positive, got {self.tower_dims}")
        if self.epochs < 0:
            raise ConfigError(f"epochs must be >= 0, got {self.epochs}")
        if self.lr <= 0:
            raise ConfigError(f"lr must be positive, got {self.lr}")
        if self.temperature <= 0:
            raise ConfigError(f"temperature must be positive, got {self.temperature}")
        if self.max_interactions is not None and self.max_interactions <= 0:
            raise ConfigError(f"max_interactions must be positive, got {self.max_interactions}")
        if self.score_batch_size <= 0:
            raise ConfigError(f"score_batch_size must be positive, got {self.score_batch_size}")
        if self.loss not in LOSS_MODES:
            raise ConfigError(f"Unknown loss mode: {self.loss!r} (expected one of {LOSS_MODES})")
        if self.negatives not in NEGATIVE_MODES:
            raise ConfigError(
                f"Unknown negative sampling: {self.negatives!r} (expected one of {NEGATIVE_MODES})"
            )
        return self

    def to_params(self) -> dict:
        """Flat dict for ``mlflow.log_params``."""
        params = asdict(self)
        params["hidden_dims"] = ",".join(map(str, self.tower_dims))
        return params
