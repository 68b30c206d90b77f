"""Command line entry point for rbmkit training runs."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable

from rbmkit.config import config_hash, read_config_file
from rbmkit.data import available_datasets
from rbmkit.training import pipelines


def _format_result(result, run_id: str | None = None) -> str:
    payload = {
        "epochs": result.epochs,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
    }
    if getattr(result, "summary_path", ""):
        payload["summary"] = result.summary_path
    if run_id is not None:
        payload["run_id"] = run_id
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=sorted(pipelines.presets().keys()),
        default="bars-cd1",
        help="Preset configuration to execute",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON/YAML config override")
    parser.add_argument("--dataset", choices=sorted(available_datasets()), help="Override the dataset")
    parser.add_argument("--epochs", type=int, help="Override the number of epochs")
    parser.add_argument("--seed", type=int, help="Seed used for dataset splits and training")
    parser.add_argument("--run-dir", type=Path, help="Directory receiving the run artifacts")
    parser.add_argument("--enable-plots", action="store_true", help="Enable plotting adapters")
    parser.add_argument(
        "--verbose", action="store_true", help="Log training progress (sets the verbose flag)"
    )
    parser.add_argument("--list-presets", action="store_true", help="List available presets and exit")
    parser.add_argument("--dump-config", type=Path, help="Dump the resolved config to a JSON file")
    return parser.parse_args(argv)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))
    from_file = False
    if args.config:
        override = json.loads(json.dumps(read_config_file(args.config)))
        if {"data", "layer", "train"} <= set(override.keys()):
            config = override
            from_file = True
        else:
            config = _merge(config, override)

    train_cfg = config.setdefault("train", {})
    if args.dataset:
        config["data"] = {"name": args.dataset, "options": {}}
        for name in ("num_visible", "nc", "nv1", "nv2"):
            config.setdefault("layer", {}).pop(name, None)
    if args.seed is not None:
        train_cfg["seed"] = int(args.seed)
        config.setdefault("data", {}).setdefault("options", {})["seed"] = int(args.seed)
    if args.epochs is not None:
        train_cfg["epochs"] = int(args.epochs)
    if args.enable_plots:
        train_cfg["enable_plots"] = True
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
        config.setdefault("layer", {})["verbose"] = True

    run_id: str | None = None
    if args.run_dir is not None:
        train_cfg["run_dir"] = str(args.run_dir)
    elif from_file and "sweep" not in config:
        train_cfg.pop("run_dir", None)
        run_id = config_hash(config)
        train_cfg["run_dir"] = str(Path(".artifacts") / run_id)

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)

    if isinstance(result, list):
        for item in result:
            print(_format_result(item, run_id=run_id))
    else:
        print(_format_result(result, run_id=run_id))


if __name__ == "__main__":
    main()
