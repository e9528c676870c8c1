"""Simple factory so CLI scripts stay tiny."""
from lens_rank.config.train import TrainConfig
from lens_rank.data.indexer import EntityIndex
from lens_rank.models.two_tower import TwoTowerModel


def create_model(name: str, **kwargs):
    name = name.lower()
    if name == "two_tower":
        return TwoTowerModel(**kwargs)
    raise ValueError(f"Unknown model: {name}")


def model_kwargs(index: EntityIndex, cfg: TrainConfig) -> dict:
    """Constructor kwargs for a model sized to ``index``; also what ``load_pretrained`` needs."""
    return dict(
        num_users=index.num_users,
        num_items=index.num_items,
        num_genres=index.num_genres,
        emb_dim=cfg.emb_dim,
        hidden_dims=cfg.tower_dims,
        init_std=cfg.init_std,
    )
