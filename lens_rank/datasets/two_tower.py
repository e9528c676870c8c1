"""PyTorch dataset of (user, item) index pairs for Two-Tower training."""

from __future__ import annotations

import numpy as np
import pandas as pd
import torch
from torch.utils.data import Dataset


class InteractionDataset(Dataset):
    def __init__(self, df: pd.DataFrame):
        self.u = torch.as_tensor(df["user_idx"].to_numpy(dtype=np.int64), dtype=torch.long)
        self.i = torch.as_tensor(df["item_idx"].to_numpy(dtype=np.int64), dtype=torch.long)

    def __len__(self):
        return len(self.u)

    def __getitem__(self, idx):
        return {"user": self.u[idx], "item": self.i[idx]}


def sample_interactions(
    df: pd.DataFrame, max_interactions: int | None, seed: int
) -> pd.DataFrame:
    """Shuffle once and keep the first ``max_interactions`` rows."""
    shuffled = df.sample(frac=1.0, random_state=seed).reset_index(drop=True)
    if max_interactions is not None:
        shuffled = shuffled.iloc[:max_interactions]
    return shuffled
