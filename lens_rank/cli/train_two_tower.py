"""Train the two-tower model on MovieLens-100K and print recommendations for one user.

Run:
    lens-rank-train --data_dir data/ml-100k --epochs 3
    mlflow ui
"""
from argparse import ArgumentParser
import logging
from pathlib import Path

import mlflow
import pandas as pd

from lens_rank.config.paths import DATA_DIR, MLFLOW_EXPERIMENT, MODEL_DIR
from lens_rank.config.train import LOSS_MODES, NEGATIVE_MODES, TrainConfig
from lens_rank.data.encoders import dump_index, dump_index_tmp
from lens_rank.engine.ranking import sample_query_user
from lens_rank.session import Session

log = logging.getLogger(__name__)


def parse_args(argv=None):
    d = TrainConfig()
    ap = ArgumentParser(description="Train a two-tower recommender on MovieLens-100K")
    ap.add_argument("--data_dir", type=Path, default=DATA_DIR, help="Folder with u.data and u.item")
    ap.add_argument("--model_dir", type=Path, default=MODEL_DIR)
    ap.add_argument("--epochs",   type=int,   default=d.epochs)
    ap.add_argument("--batch",    type=int,   default=d.batch_size)
    ap.add_argument("--emb_dim",  type=int,   default=d.emb_dim)
    ap.add_argument("--hidden",   type=int,   nargs="+", default=[d.hidden_dim],
                    help="Hidden layer widths of each tower")
    ap.add_argument("--lr",       type=float, default=d.lr)
    ap.add_argument("--max_interactions", type=int, default=d.max_interactions,
                    help="0 keeps every interaction")
    ap.add_argument("--loss",      choices=LOSS_MODES, default=d.loss)
    ap.add_argument("--negatives", choices=NEGATIVE_MODES, default=d.negatives)
    ap.add_argument("--temperature", type=float, default=d.temperature)
    ap.add_argument("--no_normalize", action="store_true")
    ap.add_argument("--mask_duplicates", action="store_true")
    ap.add_argument("--seed",     type=int, default=d.seed)
    ap.add_argument("--device",   default=d.device)
    ap.add_argument("--user",     type=int, default=None, help="Raw user id to recommend for")
    ap.add_argument("--top_k",    type=int, default=10)
    ap.add_argument("--baseline", action="store_true", help="Also rank with the raw embeddings")
    return ap.parse_args(argv)


def config_from_args(args) -> TrainConfig:
    return TrainConfig(
        epochs=args.epochs,
        batch_size=args.batch,
        emb_dim=args.emb_dim,
        hidden_dim=args.hidden[0],
        hidden_dims=tuple(args.hidden),
        lr=args.lr,
        max_interactions=args.max_interactions or None,
        loss=args.loss,
        negatives=args.negatives,
        temperature=args.temperature,
        normalize=not args.no_normalize,
        mask_duplicates=args.mask_duplicates,
        seed=args.seed,
        device=args.device,
    ).validate()


def _print_user(session: Session, user_id: int, k: int, baseline: bool) -> None:
    index = session.index
    print(f"\nUser {user_id}")
    print(f"  Top-{k} rated:")
    for r in session.top_rated(user_id, k):
        print(f"    {index.item_meta(r.item_id)['title']} ({r.rating})")

    modes = [("recommended", False)] + ([("recommended (baseline)", True)] if baseline else [])
    for label, raw in modes:
        print(f"  Top-{k} {label}:")
        for rec in session.recommend(user_id, k, baseline=raw):
            meta = index.item_meta(rec.item_id)
            year = "" if pd.isna(meta["year"]) else meta["year"]
            print(f"    {meta['title']} ({year})  {rec.score:.4f}")


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    args = parse_args(argv)
    cfg = config_from_args(args)

    mlflow.set_experiment(MLFLOW_EXPERIMENT)
    with mlflow.start_run():
        mlflow.log_params(cfg.to_params())

        session = Session.from_directory(args.data_dir, cfg)
        losses = session.train()
        if losses:
            mlflow.log_metric("final_batch_loss", losses[-1])
            log.info("Finished %d batches | last loss %.4f", len(losses), losses[-1])

        mlflow.pytorch.log_model(session.model, artifact_path="model")
        session.model.save_pretrained(args.model_dir / "two_tower_model.pth")
        dump_index(session.index, args.model_dir / "entity_index.joblib")
        # dump the index so inference scripts can recover raw ids
        mlflow.log_artifact(dump_index_tmp(session.index), artifact_path="artifacts")

        user_id = args.user if args.user is not None else sample_query_user(session.index, seed=cfg.seed)
        _print_user(session, user_id, args.top_k, args.baseline)


if __name__ == "__main__":
    main()
