import math
from dataclasses import replace

import pytest
import torch

from lens_rank.config.train import ConfigError
from lens_rank.data.indexer import build_index
from lens_rank.data.preprocess import interactions_from_records, items_from_records
from lens_rank.datasets.two_tower import InteractionDataset, sample_interactions
from lens_rank.engine.registry import create_model, model_kwargs
from lens_rank.engine.train_loop import fit, iter_fit, make_loader, sample_negatives


@pytest.fixture
def separable_index():
    items = items_from_records([(1, "A", [1, 0]), (2, "B", [0, 1])])
    inter = interactions_from_records([(1, 1, 5, 1), (2, 2, 5, 2)])
    return build_index(inter, items)


def _setup(index, cfg):
    torch.manual_seed(cfg.seed)
    model = create_model("two_tower", **model_kwargs(index, cfg))
    dl = make_loader(index.interactions, cfg)
    genres = torch.as_tensor(index.genre_matrix)
    return model, dl, genres


class TestFit:
    def test_softmax_loss_decreases_on_separable_data(self, separable_index, cpu_config):
        cfg = replace(cpu_config, epochs=60, batch_size=2)
        losses = fit(*_setup(separable_index, cfg), cfg)

        assert len(losses) == 60  # one batch per epoch
        assert losses[-1] < losses[0]

    def test_one_loss_per_batch(self, index, cpu_config):
        cfg = replace(cpu_config, epochs=3, batch_size=2)
        batches = list(iter_fit(*_setup(index, cfg), cfg))

        per_epoch = math.ceil(len(index.interactions) / 2)
        assert len(batches) == 3 * per_epoch
        assert [b.epoch for b in batches[:per_epoch]] == [0] * per_epoch
        assert [b.step for b in batches] == list(range(len(batches)))
        assert all(isinstance(b.loss, float) for b in batches)

    @pytest.mark.parametrize("negatives", ["rotate", "random"])
    def test_bpr(self, index, cpu_config, negatives):
        cfg = replace(cpu_config, loss="bpr", negatives=negatives)
        losses = fit(*_setup(index, cfg), cfg)
        assert all(math.isfinite(l) for l in losses)

    def test_updates_parameters_in_place(self, index, cpu_config):
        model, dl, genres = _setup(index, cpu_config)
        before = model.user_emb.weight.detach().clone()
        fit(model, dl, genres, cpu_config)
        assert not torch.equal(before, model.user_emb.weight)

    def test_stop_between_batches(self, index, cpu_config):
        model, dl, genres = _setup(index, replace(cpu_config, epochs=5))
        it = iter_fit(model, dl, genres, replace(cpu_config, epochs=5))
        first = next(it)
        it.close()

        assert first.step == 0
        assert all(p.grad is None for p in model.parameters())
        with pytest.raises(StopIteration):
            next(it)

    def test_mask_duplicates_runs(self, index, cpu_config):
        cfg = replace(cpu_config, mask_duplicates=True)
        assert all(math.isfinite(l) for l in fit(*_setup(index, cfg), cfg))

    @pytest.mark.parametrize("field,value", [("loss", "sampled-softmax"), ("temperature", 0.0)])
    def test_bad_config_fails_before_training(self, index, cpu_config, field, value):
        model, dl, genres = _setup(index, cpu_config)
        before = model.user_emb.weight.detach().clone()
        with pytest.raises(ConfigError):
            fit(model, dl, genres, replace(cpu_config, **{field: value}))
        assert torch.equal(before, model.user_emb.weight)


class TestBatching:
    def test_reshuffles_every_epoch(self, cpu_config):
        items = items_from_records([(i, f"I{i}", [0]) for i in range(64)])
        inter = interactions_from_records([(i, i, 4, i) for i in range(64)])
        idx = build_index(inter, items)
        dl = make_loader(idx.interactions, replace(cpu_config, batch_size=64))

        first = next(iter(dl))["item"].tolist()
        second = next(iter(dl))["item"].tolist()
        assert sorted(first) == sorted(second) == list(range(64))
        assert first != second

    def test_last_batch_short(self, index, cpu_config):
        dl = make_loader(index.interactions, replace(cpu_config, batch_size=2))
        sizes = [len(b["user"]) for b in dl]
        assert sizes == [2, 2, 1]

    def test_dataset_items(self, index):
        ds = InteractionDataset(index.interactions)
        assert len(ds) == 5
        assert set(ds[0]) == {"user", "item"}
        assert ds[0]["user"].dtype == torch.long

    def test_sample_interactions_truncates(self, index):
        df = sample_interactions(index.interactions, 3, seed=0)
        assert len(df) == 3
        assert len(sample_interactions(index.interactions, None, seed=0)) == 5
        assert df.equals(sample_interactions(index.interactions, 3, seed=0))


class TestNegatives:
    def test_rotate(self):
        items = torch.tensor([4, 5, 6])
        assert sample_negatives(items, 10, "rotate").tolist() == [6, 4, 5]

    def test_random_in_range(self):
        gen = torch.Generator().manual_seed(0)
        neg = sample_negatives(torch.zeros(100, dtype=torch.long), 7, "random", gen)
        assert neg.shape == (100,)
        assert neg.min() >= 0 and neg.max() < 7

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            sample_negatives(torch.tensor([1]), 3, "hard")
