import json
from pathlib import Path

from rbmkit.config import config_hash
from rbmkit.training import pipelines

EXPECTED_ARTIFACTS = {
    "metrics.jsonl",
    "metrics.csv",
    "metrics_test.json",
    "manifest.json",
    "summary.json",
    "config.json",
    "best.ckpt",
    "last.ckpt",
}


def _config(run_dir: Path) -> dict:
    config = pipelines.load_preset("synthetic-min")
    config["train"]["run_dir"] = str(run_dir)
    return config


def test_pipeline_writes_every_artifact(tmp_path):
    result = pipelines.run_pipeline(_config(tmp_path / "run"))
    produced = {path.name for path in (tmp_path / "run").iterdir()}
    assert EXPECTED_ARTIFACTS <= produced
    assert result.epochs == 2
    records = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines()]
    assert [r["epoch"] for r in records] == [1, 2]
    assert {"reconstruction_error", "sparsity", "momentum", "layer", "sha"} <= set(records[0])
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["layer"]["description"] == "RBM: 8(BINARY) -> 4(BINARY)"
    assert manifest["dataset"]["type"] == "synthetic"


def test_summary_is_identical_across_runs(tmp_path):
    first = pipelines.run_pipeline(_config(tmp_path / "a"))
    second = pipelines.run_pipeline(_config(tmp_path / "b"))
    assert Path(first.summary_path).read_bytes() == Path(second.summary_path).read_bytes()
    summary = json.loads(Path(first.summary_path).read_text())
    assert summary["epochs"] == 2
    assert "reconstruction_error" in summary["metrics"]


def test_config_hash_ignores_key_order():
    config = pipelines.load_preset("bars-cd1")
    reordered = {key: config[key] for key in reversed(list(config))}
    assert config_hash(config) == config_hash(reordered)
    assert config_hash(config) != config_hash(pipelines.load_preset("bars-pcd-sparse"))


def test_presets_are_complete():
    available = pipelines.presets()
    assert {"bars-cd1", "synthetic-min", "bars-conv-mp"} <= set(available)
    for config in available.values():
        assert {"data", "layer", "train"} <= set(config)


def test_dynamic_layer_is_sized_from_the_dataset(tmp_path):
    config = _config(tmp_path / "dyn")
    config["layer"] = {"kind": "dyn_rbm", "num_hidden": 3, "batch_size": 4}
    result = pipelines.run_pipeline(config)
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["layer"]["description"] == "RBM(dyn): 8(BINARY) -> 3(BINARY)"
    assert manifest["layer"]["parameters"] == 24
