import pytest

from lens_rank.config.train import TrainConfig
from lens_rank.data.indexer import build_index
from lens_rank.data.preprocess import interactions_from_records, items_from_records

GENRE_FLAGS = [0] * 19


def _flags(*on):
    flags = list(GENRE_FLAGS)
    for k in on:
        flags[k] = 1
    return flags


U_ITEM_LINES = [
    "1|Toy Story (1995)|01-Jan-1995||http://us.imdb.com/M/title-exact?Toy%20Story%20(1995)|" + "|".join(map(str, _flags(3, 4, 5))),
    "2|GoldenEye (1995)|01-Jan-1995||http://us.imdb.com/M/title-exact?GoldenEye%20(1995)|" + "|".join(map(str, _flags(1, 2, 16))),
    "5|Café au lait|01-Jan-1994||http://example.org|" + "|".join(map(str, _flags(5))),
    "not-an-id|Broken (1990)|01-Jan-1990||http://example.org|" + "|".join(map(str, GENRE_FLAGS)),
]

U_DATA_LINES = [
    "10\t1\t5\t881250949",
    "10\t2\t3\t881250950",
    "20\t1\t4\t881250951",
    "20\t5\t2\t881250952",
    "20\t99\t5\t881250953",  # unknown item
    "30\tx\t4\t881250954",  # malformed
    "40\t2",  # truncated
]


@pytest.fixture
def movielens_dir(tmp_path):
    d = tmp_path / "ml-100k"
    d.mkdir()
    (d / "u.item").write_text("\n".join(U_ITEM_LINES) + "\n", encoding="latin-1")
    (d / "u.data").write_text("\n".join(U_DATA_LINES) + "\n", encoding="utf-8")
    return d


@pytest.fixture
def items_df():
    # raw ids deliberately out of order
    return items_from_records(
        [
            (7, "Gamma (2001)", [0, 0, 1]),
            (2, "Alpha (1995)", [1, 0, 0]),
            (3, "Beta", [0, 1, 0]),
            (11, "Delta (1980)", [1, 1, 0]),
        ]
    )


@pytest.fixture
def interactions_df():
    return interactions_from_records(
        [
            (5, 2, 5, 100),
            (5, 7, 5, 200),
            (5, 3, 3, 300),
            (1, 11, 4, 150),
            (1, 2, 2, 160),
            (9, 42, 5, 170),  # item 42 is unknown
        ]
    )


@pytest.fixture
def index(interactions_df, items_df):
    return build_index(interactions_df, items_df)


@pytest.fixture
def cpu_config():
    return TrainConfig(
        epochs=2,
        batch_size=4,
        emb_dim=8,
        hidden_dim=16,
        lr=0.01,
        max_interactions=None,
        device="cpu",
    )
