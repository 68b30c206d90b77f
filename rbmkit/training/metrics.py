"""Metrics computed on a trained (or training) RBM layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

import numpy as np

from ..core.types import Array


@dataclass(frozen=True)
class MetricResult:
    name: str
    value: float


def default_metrics(*, free_energy: bool = False) -> List[str]:
    metrics = ["reconstruction_error", "sparsity"]
    if free_energy:
        metrics.append("free_energy")
    return metrics


def _hidden_mean(layer, data: Array) -> Array:
    activations = layer.forward_batch(data)
    return np.asarray(activations, dtype=np.float64)


def compute_metric(name: str, layer, data: Array) -> MetricResult:
    key = name.lower()
    if key == "reconstruction_error":
        value = float(layer.reconstruction_error(data))
    elif key == "free_energy":
        value = float(np.mean(layer.free_energy(data)))
    elif key == "sparsity":
        value = float(np.mean(_hidden_mean(layer, data)))
    elif key == "weight_norm":
        value = float(np.linalg.norm(layer.w))
    else:
        raise KeyError(f"Unknown metric: {name}")
    return MetricResult(name=key, value=value)


def compute_metrics(names: Iterable[str], layer, data: Array) -> Mapping[str, float]:
    results: Dict[str, float] = {}
    for name in names:
        metric = compute_metric(name, layer, data)
        results[metric.name] = metric.value
    return results


__all__ = ["MetricResult", "compute_metric", "compute_metrics", "default_metrics"]
