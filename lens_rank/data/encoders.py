"""Thin wrappers so the entity index can be MLflow-serialised transparently."""
import tempfile
from pathlib import Path

import joblib

from lens_rank.data.indexer import EntityIndex


def dump_index(index: EntityIndex, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(index, path)
    return path


def dump_index_tmp(index: EntityIndex) -> str:
    tmp = tempfile.NamedTemporaryFile(suffix=".joblib", delete=False)
    tmp.close()
    joblib.dump(index, tmp.name)
    return tmp.name


def load_index(path: str | Path) -> EntityIndex:
    index = joblib.load(path)
    if not isinstance(index, EntityIndex):
        raise TypeError(f"{path} does not contain an EntityIndex (got {type(index).__name__})")
    return index
