"""Pipeline assembly: dataset, layer and trainer from a nested configuration."""

from __future__ import annotations

import itertools
import json
import time
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping

from ..config import config_hash, descriptor_from_mapping, read_config_file
from ..core.hyper import HyperParameters
from ..core.types import RunResult
from ..data import registry
from ..descriptors import LayerKind
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter, plot_filters
from ..reporting.summary import write_summary
from .metrics import compute_metrics, default_metrics
from .trainer import RBMTrainer
from .watchers import CompositeWatcher, SinkWatcher

_PRESETS: Dict[str, Mapping[str, object]] = {
    "bars-cd1": {
        "data": {"name": "bars_and_stripes", "options": {"size": 4, "repeat": 8, "seed": 0}},
        "layer": {
            "kind": "rbm",
            "num_hidden": 16,
            "batch_size": 10,
            "momentum": True,
            "weight_decay": "l2",
            "shuffle": True,
            "init_weights": True,
            "free_energy": True,
        },
        "train": {
            "epochs": 20,
            "seed": 0,
            "hyper": {"learning_rate": 0.1},
            "run_dir": "runs/bars-cd1",
            "enable_plots": False,
        },
    },
    "bars-pcd-sparse": {
        "data": {"name": "bars_and_stripes", "options": {"size": 4, "repeat": 8, "seed": 0}},
        "layer": {
            "kind": "rbm",
            "num_hidden": 32,
            "batch_size": 8,
            "momentum": True,
            "sparsity": "local_target",
            "trainer": "pcd",
            "shuffle": True,
        },
        "train": {
            "epochs": 20,
            "seed": 1,
            "hyper": {"learning_rate": 0.05, "sparsity_target": 0.1},
            "run_dir": "runs/bars-pcd-sparse",
            "enable_plots": False,
        },
    },
    "prototypes-parallel": {
        "data": {"name": "binary_prototypes", "options": {"n_features": 32, "n_samples": 512}},
        "layer": {
            "kind": "rbm",
            "num_hidden": 16,
            "batch_size": 64,
            "parallel_mode": True,
            "clip_gradients": True,
            "trainer": "cd3",
        },
        "train": {
            "epochs": 10,
            "seed": 3,
            "workers": 4,
            "run_dir": "runs/prototypes-parallel",
            "enable_plots": False,
        },
    },
    "blobs-gaussian": {
        "data": {"name": "gaussian_blobs", "options": {"n_features": 8}},
        "layer": {
            "kind": "rbm",
            "num_hidden": 12,
            "batch_size": 16,
            "visible": "gaussian",
            "hidden": "relu",
            "momentum": True,
        },
        "train": {
            "epochs": 10,
            "seed": 2,
            "hyper": {"learning_rate": 0.01},
            "run_dir": "runs/blobs-gaussian",
            "enable_plots": False,
        },
    },
    "bars-conv": {
        "data": {"name": "bars_and_stripes", "options": {"size": 6, "repeat": 2, "seed": 0}},
        "layer": {"kind": "conv_rbm", "k": 4, "nh1": 4, "nh2": 4, "batch_size": 8, "momentum": True},
        "train": {
            "epochs": 5,
            "seed": 0,
            "hyper": {"learning_rate": 0.01},
            "run_dir": "runs/bars-conv",
            "enable_plots": False,
        },
    },
    "synthetic-min": {
        "data": {"name": "binary_prototypes", "options": {"n_features": 8, "n_samples": 40}},
        "layer": {"kind": "rbm", "num_hidden": 4, "batch_size": 5},
        "train": {"epochs": 2, "seed": 0, "run_dir": "runs/synthetic-min", "enable_plots": False},
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"
_REQUIRED_SECTIONS = {"data", "layer", "train"}
_FILE_PRESETS_CACHE: Dict[str, Mapping[str, object]] | None = None


def _file_presets() -> Dict[str, Mapping[str, object]]:
    global _FILE_PRESETS_CACHE
    if _FILE_PRESETS_CACHE is None:
        found: Dict[str, Mapping[str, object]] = {}
        if _PRESET_DIR.exists():
            for file in sorted(_PRESET_DIR.iterdir()):
                if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
                    continue
                data = read_config_file(file)
                missing = _REQUIRED_SECTIONS - set(data)
                if missing:
                    missing_str = ", ".join(sorted(missing))
                    raise KeyError(f"Preset {file.name} is missing required sections: {missing_str}")
                found[file.stem] = json.loads(json.dumps(data))
        _FILE_PRESETS_CACHE = found
    return {name: deepcopy(cfg) for name, cfg in _FILE_PRESETS_CACHE.items()}


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    file_overrides = _file_presets()
    if name in file_overrides:
        return file_overrides[name]
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        raise KeyError(f"Unknown preset: {name}") from exc


def run_pipeline(config: Mapping[str, object]) -> RunResult | List[RunResult]:
    if "sweep" in config:
        return _run_sweep(config)
    return _train_single(config)


class _MetricsCapture:
    def __init__(self) -> None:
        self.history: list[tuple[int, Mapping[str, float]]] = []

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.history.append((int(epoch), {k: float(v) for k, v in metrics.items()}))


def _run_sweep(config: Mapping[str, object]) -> List[RunResult]:
    """Train one layer per combination of the swept layer options and seeds.

    ``sweep`` maps layer option names to lists of values, plus an optional
    ``seeds`` list.  Every run gets its own directory named after the hash
    of its configuration.
    """

    sweep_cfg = dict(config["sweep"])
    seeds = list(sweep_cfg.pop("seeds", [None]))
    names = sorted(sweep_cfg)
    base_dir = Path(str(config.get("train", {}).get("run_dir", "runs/sweep")))
    results: List[RunResult] = []
    for values in itertools.product(*(sweep_cfg[name] for name in names)):
        for seed in seeds:
            cfg = deepcopy(dict(config))
            cfg.pop("sweep", None)
            layer_cfg = cfg.setdefault("layer", {})
            layer_cfg.update(dict(zip(names, values)))
            train_cfg = cfg.setdefault("train", {})
            if seed is not None:
                train_cfg["seed"] = seed
            train_cfg.pop("run_dir", None)
            train_cfg["run_dir"] = str(base_dir / config_hash(cfg))
            results.append(_train_single(cfg))
    return results


def _complete_layer(layer_cfg: MutableMapping[str, object], shape) -> None:
    """Fill the visible dimensions of ``layer_cfg`` from the sample ``shape``."""

    kind = LayerKind(layer_cfg.get("kind", LayerKind.RBM.value))
    if kind is LayerKind.RBM:
        size = 1
        for d in shape:
            size *= int(d)
        layer_cfg.setdefault("num_visible", size)
    elif kind in (LayerKind.CONV_RBM, LayerKind.CONV_RBM_MP):
        if len(shape) != 3:
            raise ValueError(f"Convolutional layers need (channels, h, w) samples, got {shape}")
        for name, value in zip(("nc", "nv1", "nv2"), shape):
            layer_cfg.setdefault(name, int(value))


def _train_single(config: Mapping[str, object]) -> RunResult:
    data_cfg = dict(config["data"])
    layer_cfg = dict(config["layer"])
    train_cfg = dict(config["train"])

    dataset = registry.get(data_cfg["name"], **data_cfg.get("options", {}))
    _complete_layer(layer_cfg, dataset.data_spec.shape)
    descriptor = descriptor_from_mapping(layer_cfg)

    seed = int(train_cfg.get("seed", 0))
    epochs = int(train_cfg.get("epochs", 1))
    hyper = HyperParameters.from_mapping(train_cfg.get("hyper", {}))
    layer = descriptor.layer_t(seed=seed, hyper=hyper)
    if descriptor.config.is_dynamic:
        num_hidden = layer_cfg.get("num_hidden")
        if num_hidden is None:
            raise KeyError("dyn_rbm layers need num_hidden in the layer section")
        layer.init_layer(dataset.data_spec.size, int(num_hidden))

    run_dir = _resolve_run_dir(train_cfg, dataset.name, descriptor.config.kind.value)
    run_dir.mkdir(parents=True, exist_ok=True)
    _print_startup_summary(
        dataset_name=dataset.name,
        layer=layer.to_short_string(),
        trainer=descriptor.config.trainer.__name__,
        epochs=epochs,
        param_count=layer.parameter_count(),
    )

    fingerprint = descriptor.config.fingerprint()
    jsonl = JsonlSink(run_dir / "metrics.jsonl", split="train", seed=seed, layer=fingerprint)
    csv_sink = CsvSink(run_dir / "metrics.csv", split="train")
    enable_plots = bool(train_cfg.get("enable_plots", False))
    plots = PlotAdapter(run_dir, enable_plots=enable_plots)
    capture = _MetricsCapture()
    watcher = CompositeWatcher(
        [descriptor.watcher_t(), SinkWatcher([jsonl, csv_sink, plots, capture])]
    )

    trainer = RBMTrainer(
        layer,
        watcher,
        seed=seed,
        workers=int(train_cfg.get("workers", 4)),
        checkpoint_dir=run_dir if train_cfg.get("checkpoints", True) else None,
    )
    trainer.train(dataset.split("train").inputs, epochs)

    if dataset.splits.get("test", 0):
        names = default_metrics(free_energy=descriptor.config.free_energy)
        test_metrics = compute_metrics(names, layer, dataset.split("test").inputs)
        (run_dir / "metrics_test.json").write_text(json.dumps(dict(test_metrics), indent=2))

    if enable_plots and descriptor.config.kind is LayerKind.RBM:
        shape = dataset.data_spec.shape
        if len(shape) == 3 and shape[0] == 1:
            plot_filters(layer.w, shape[1:], run_dir / "filters.png")

    safe_config = json.loads(json.dumps(config))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=dataset.provenance,
        layer=layer,
    )
    summary_path = write_summary(
        jsonl.path, run_dir / "summary.json", tail=int(train_cfg.get("summary_tail", 8))
    )
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))

    return RunResult(
        epochs=len(capture.history),
        metrics_path=str(jsonl.path),
        manifest_path=manifest,
        summary_path=summary_path,
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str, kind: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / kind


def _print_startup_summary(
    *, dataset_name: str, layer: str, trainer: str, epochs: int, param_count: int
) -> None:
    print("=== rbmkit run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Layer         : {layer}")
    print(f"Trainer       : {trainer}")
    print(f"Epochs        : {epochs}")
    print(f"Parameters    : {param_count}")
    print("==================")


__all__ = ["load_preset", "presets", "run_pipeline"]
