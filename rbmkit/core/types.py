"""Core typing contracts for rbmkit."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

import numpy as np

Array = np.ndarray


@dataclass(frozen=True)
class Batch:
    """A single mini-batch of data.

    ``targets`` is only used by supervised fine-tuning; unsupervised
    contrastive divergence reads ``inputs`` alone.
    """

    inputs: Array
    targets: Array | None = None


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`rbmkit.training.pipelines.run_pipeline`."""

    epochs: int
    metrics_path: str
    manifest_path: str
    summary_path: str = ""


@dataclass
class CDStatistics:
    """Gradients and diagnostics produced by one contrastive divergence step.

    Gradients are averaged over the batch.  ``h1_mean`` is the mean first
    step hidden activation per hidden unit, used by the sparsity penalties.
    """

    w_grad: Array
    b_grad: Array
    c_grad: Array
    h1_mean: Array
    reconstruction_error: float
    batch: int
    chain: Array | None = None

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.w_grad))
            and np.all(np.isfinite(self.b_grad))
            and np.all(np.isfinite(self.c_grad))
        )


@dataclass(frozen=True)
class TrainingSignals:
    """Progress information handed to watchers at the end of an epoch."""

    epoch: int
    reconstruction_error: float
    sparsity: float
    free_energy: float | None = None
    momentum: float = 0.0
    elapsed: float = 0.0

    def as_metrics(self) -> Dict[str, float]:
        metrics = {
            "reconstruction_error": self.reconstruction_error,
            "sparsity": self.sparsity,
            "momentum": self.momentum,
        }
        if self.free_energy is not None:
            metrics["free_energy"] = self.free_energy
        return metrics


@dataclass
class Diagnostic:
    """Numerical condition observed while training (never raised)."""

    kind: str
    epoch: int
    payload: Dict[str, object] = field(default_factory=dict)
