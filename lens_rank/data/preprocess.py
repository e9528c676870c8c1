# ------------------------------------------------------------
# data/preprocess.py
# ------------------------------------------------------------
"""MovieLens-100K readers: raw ``u.data`` / ``u.item`` → tidy DataFrames
ready for the entity indexer.

Single malformed lines are skipped (and counted), never fatal. An empty
result for either table is a load error.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import pandas as pd

log = logging.getLogger(__name__)

GENRES = (
    "unknown",
    "Action",
    "Adventure",
    "Animation",
    "Children's",
    "Comedy",
    "Crime",
    "Documentary",
    "Drama",
    "Fantasy",
    "Film-Noir",
    "Horror",
    "Musical",
    "Mystery",
    "Romance",
    "Sci-Fi",
    "Thriller",
    "War",
    "Western",
)
NUM_GENRES = len(GENRES)

RATING_COLS = ["user_id", "item_id", "rating", "timestamp"]
ITEM_META_COLS = ["item_id", "title_raw", "release_date", "video_release_date", "imdb_url"]
ITEM_COLS = ["item_id", "title", "year", "genres"]

_YEAR_RE = re.compile(r"\((\d{4})\)")


class DataLoadError(RuntimeError):
    """A data file is missing or produced no usable records."""


def parse_title(raw: str) -> Tuple[str, Optional[int]]:
    """Split ``"Toy Story (1995)"`` into ``("Toy Story", 1995)``.

    Titles without a parenthesised 4-digit year come back unchanged with year ``None``.
    """
    if not isinstance(raw, str):  # missing column on a short line
        raw = ""
    m = _YEAR_RE.search(raw)
    if not m:
        return raw, None
    title = (raw[: m.start()] + raw[m.end():]).strip()
    return title, int(m.group(1))


# ---------------------------------------------------------------------------
# In-memory records → DataFrames
# ---------------------------------------------------------------------------


def interactions_from_records(records: Iterable[Sequence]) -> pd.DataFrame:
    """(user_id, item_id, rating, timestamp) tuples → interaction frame.

    Rows with a non-numeric field are skipped and counted.
    """
    raw = pd.DataFrame(list(records), columns=RATING_COLS)
    df = pd.DataFrame({c: pd.to_numeric(raw[c], errors="coerce") for c in RATING_COLS})
    invalid = df.isna().any(axis=1)
    if invalid.any():
        log.warning("Skipped %d malformed interaction record(s)", int(invalid.sum()))
    return df[~invalid].astype("int64").reset_index(drop=True)


def items_from_records(records: Iterable[Sequence]) -> pd.DataFrame:
    """(item_id, raw_title, genre_flags) tuples → item frame.

    The year is pulled out of the raw title the same way the file reader does it.
    Records whose id or genre flags are not integers are skipped and counted.
    """
    rows = []
    n_bad = 0
    for item_id, raw_title, genres in records:
        try:
            key, flags = int(item_id), tuple(int(g) for g in genres)
        except (TypeError, ValueError):
            n_bad += 1
            continue
        title, year = parse_title(raw_title)
        rows.append((key, title, year, flags))
    if n_bad:
        log.warning("Skipped %d malformed item record(s)", n_bad)
    df = pd.DataFrame(rows, columns=ITEM_COLS)
    df["year"] = df["year"].astype("Int64")
    return df


# ---------------------------------------------------------------------------
# File readers
# ---------------------------------------------------------------------------


def _read_delimited(path: Path, sep: str, names: list[str], encoding: str) -> Tuple[pd.DataFrame, int]:
    if not path.exists():
        raise DataLoadError(f"Data file not found: {path}")
    bad: list[list[str]] = []

    def _skip(fields: list[str]):
        bad.append(fields)
        return None  # drop the line

    df = pd.read_csv(
        path,
        sep=sep,
        header=None,
        names=names,
        dtype=str,
        keep_default_na=False,
        encoding=encoding,
        engine="python",
        on_bad_lines=_skip,
        skip_blank_lines=True,
    )
    return df, len(bad)


def load_ratings(path: Path) -> pd.DataFrame:
    """Read a tab-separated ``u.data`` file."""
    raw, n_bad = _read_delimited(Path(path), "\t", RATING_COLS, "utf-8")
    df = raw.apply(pd.to_numeric, errors="coerce")
    invalid = df.isna().any(axis=1)
    n_bad += int(invalid.sum())
    df = df[~invalid].astype("int64").reset_index(drop=True)
    if n_bad:
        log.warning("Skipped %d malformed rating line(s) in %s", n_bad, path)
    log.info("Read %d ratings from %s", len(df), path)
    return df


def load_items(path: Path, num_genres: int = NUM_GENRES) -> pd.DataFrame:
    """Read a ``|``-separated, latin-1 encoded ``u.item`` file."""
    genre_cols = [f"g{k}" for k in range(num_genres)]
    raw, n_bad = _read_delimited(Path(path), "|", ITEM_META_COLS + genre_cols, "latin-1")

    ids = pd.to_numeric(raw["item_id"], errors="coerce")
    invalid = ids.isna()
    n_bad += int(invalid.sum())
    raw, ids = raw[~invalid], ids[~invalid].astype("int64")

    flags = raw[genre_cols].apply(pd.to_numeric, errors="coerce").fillna(0).astype("int64")
    parsed = raw["title_raw"].map(parse_title)

    df = pd.DataFrame(
        {
            "item_id": ids.values,
            "title": [t for t, _ in parsed],
            "year": pd.array([y for _, y in parsed], dtype="Int64"),
            "genres": [tuple(row) for row in flags.itertuples(index=False)],
        }
    )
    if n_bad:
        log.warning("Skipped %d malformed item line(s) in %s", n_bad, path)
    log.info("Read %d items from %s", len(df), path)
    return df


def load_movielens(data_dir: Path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Return ``(interactions, items)`` for a MovieLens-100K directory."""
    data_dir = Path(data_dir)
    items = load_items(data_dir / "u.item")
    ratings = load_ratings(data_dir / "u.data")
    if items.empty:
        raise DataLoadError(f"No items could be read from {data_dir / 'u.item'}")
    if ratings.empty:
        raise DataLoadError(f"No interactions could be read from {data_dir / 'u.data'}")
    return ratings, items
