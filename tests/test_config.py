from dataclasses import replace

import pytest

from lens_rank.cli.train_two_tower import config_from_args, parse_args
from lens_rank.config.train import ConfigError, TrainConfig


class TestTrainConfig:
    def test_defaults(self):
        cfg = TrainConfig()

        assert cfg.epochs == 3
        assert cfg.batch_size == 1024
        assert cfg.emb_dim == 32
        assert cfg.hidden_dim == 64
        assert cfg.lr == 0.003
        assert cfg.max_interactions == 80000
        assert cfg.loss == "softmax"
        assert cfg.normalize is True
        assert cfg.tower_dims == (64,)

    def test_hidden_dims_override(self):
        assert TrainConfig(hidden_dims=(32, 16)).tower_dims == (32, 16)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("batch_size", 0),
            ("batch_size", -4),
            ("emb_dim", 0),
            ("hidden_dim", 0),
            ("hidden_dims", (8, 0)),
            ("epochs", -1),
            ("lr", 0.0),
            ("temperature", 0.0),
            ("max_interactions", 0),
            ("score_batch_size", 0),
            ("loss", "pointwise"),
            ("negatives", "hard"),
        ],
    )
    def test_invalid(self, field, value):
        with pytest.raises(ConfigError):
            replace(TrainConfig(device="cpu"), **{field: value}).validate()

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)

    def test_to_params(self):
        params = TrainConfig(hidden_dims=(32, 16), device="cpu").to_params()
        assert params["hidden_dims"] == "32,16"
        assert params["loss"] == "softmax"


class TestCli:
    def test_args_to_config(self, tmp_path):
        args = parse_args(
            [
                "--data_dir", str(tmp_path),
                "--epochs", "7",
                "--batch", "256",
                "--hidden", "48", "24",
                "--loss", "bpr",
                "--negatives", "random",
                "--max_interactions", "0",
                "--no_normalize",
                "--device", "cpu",
            ]
        )
        cfg = config_from_args(args)

        assert args.data_dir == tmp_path
        assert cfg.epochs == 7
        assert cfg.batch_size == 256
        assert cfg.tower_dims == (48, 24)
        assert cfg.loss == "bpr"
        assert cfg.negatives == "random"
        assert cfg.max_interactions is None
        assert cfg.normalize is False

    def test_invalid_args_fail_fast(self):
        with pytest.raises(ConfigError):
            config_from_args(parse_args(["--batch", "0", "--device", "cpu"]))
