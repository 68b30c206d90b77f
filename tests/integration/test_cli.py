import json

import pytest

from cli.main import main
from rbmkit.training import pipelines


def _result(capsys):
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    return [json.loads(line) for line in lines]


def test_cli_runs_preset(tmp_path, capsys):
    run_dir = tmp_path / "run"
    main(["--preset", "synthetic-min", "--run-dir", str(run_dir), "--epochs", "1"])
    (result,) = _result(capsys)
    assert result["epochs"] == 1
    assert (run_dir / "summary.json").exists()
    assert result["manifest"].endswith("manifest.json")


def test_cli_lists_presets(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--list-presets"])
    assert info.value.code == 0
    names = capsys.readouterr().out.split()
    assert "synthetic-min" in names
    assert "bars-conv-mp" in names


def test_cli_full_config_file_uses_hashed_run_dir(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    config = pipelines.load_preset("synthetic-min")
    config["train"]["epochs"] = 1
    path = tmp_path / "run.json"
    path.write_text(json.dumps(config))
    dump = tmp_path / "resolved.json"
    main(["--config", str(path), "--dump-config", str(dump)])
    (result,) = _result(capsys)
    assert result["run_id"]
    assert (tmp_path / ".artifacts" / result["run_id"] / "manifest.json").exists()
    assert json.loads(dump.read_text())["train"]["epochs"] == 1


def test_cli_runs_file_preset_with_max_pooling(tmp_path, capsys):
    run_dir = tmp_path / "mp"
    main(["--preset", "bars-conv-mp", "--run-dir", str(run_dir), "--epochs", "1"])
    (result,) = _result(capsys)
    assert result["epochs"] == 1
    manifest = json.loads((run_dir / "manifest.json").read_text())
    assert manifest["layer"]["description"].startswith("CRBM_MP: 1x6x6(BINARY) -> 4x4x4(BINARY)")


def test_cli_dataset_override(tmp_path, capsys):
    run_dir = tmp_path / "blobs"
    main(["--preset", "synthetic-min", "--dataset", "gaussian_blobs", "--run-dir", str(run_dir)])
    (result,) = _result(capsys)
    manifest = json.loads((run_dir / "manifest.json").read_text())
    assert manifest["dataset"]["n_features"] == 8
    assert result["epochs"] == 2


def test_sweep_trains_every_combination(tmp_path, capsys):
    config = pipelines.load_preset("synthetic-min")
    config["train"]["epochs"] = 1
    config["train"]["run_dir"] = str(tmp_path / "sweep")
    config["sweep"] = {"num_hidden": [2, 3], "seeds": [0, 1]}
    results = pipelines.run_pipeline(config)
    assert len(results) == 4
    run_dirs = {r.manifest_path.rsplit("/", 2)[-2] for r in results}
    assert len(run_dirs) == 4
    capsys.readouterr()
