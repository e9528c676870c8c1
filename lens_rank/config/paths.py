"""Centralised project paths & defaults."""

from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]  # repo root
DATA_DIR = PROJECT_ROOT / "data" / "ml-100k"  # u.data / u.item
MODEL_DIR = PROJECT_ROOT / "models" / "two_tower"
MLFLOW_EXPERIMENT = "lens_rank_experiments"
