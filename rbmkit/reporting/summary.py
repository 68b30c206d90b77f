"""Deterministic run summaries built from JSONL metrics."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np

_SKIP = {"epoch", "seed"}


def _series(records: Iterable[Mapping[str, object]]) -> dict[str, list[float]]:
    series: dict[str, list[float]] = {}
    for record in records:
        for key, value in record.items():
            if key in _SKIP or isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                series.setdefault(key, []).append(float(value))
    return series


def summarise(records: list[Mapping[str, object]], *, tail: int = 8) -> Mapping[str, object]:
    """Per-metric min/max/first/last and the mean of the last ``tail`` epochs."""

    window = min(tail, len(records))
    metrics: dict[str, Mapping[str, float]] = {}
    for name, values in _series(records).items():
        arr = np.asarray(values, dtype=np.float64)
        metrics[name] = {
            "min": float(np.min(arr)),
            "max": float(np.max(arr)),
            "first": float(arr[0]),
            "last": float(arr[-1]),
            "tail_mean": float(np.mean(arr[-window:])) if window else float("nan"),
        }
    return {"version": 1, "epochs": len(records), "tail_window": window, "metrics": metrics}


def write_summary(
    metrics_jsonl: str | Path, out_summary_json: str | Path, *, tail: int = 8
) -> str:
    """Write a deterministic summary for ``metrics_jsonl``."""

    metrics_path = Path(metrics_jsonl)
    out_path = Path(out_summary_json)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    records: list[Mapping[str, object]] = []
    if metrics_path.exists():
        for line in metrics_path.read_text().splitlines():
            if line.strip():
                records.append(json.loads(line))

    out_path.write_text(json.dumps(summarise(records, tail=tail), sort_keys=True, indent=2))
    return str(out_path)


__all__ = ["summarise", "write_summary"]
