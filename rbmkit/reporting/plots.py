"""Headless-safe plotting adapters."""

from __future__ import annotations

import math
from pathlib import Path
from typing import List, Mapping, Tuple

import numpy as np


def _pyplot():
    import matplotlib

    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as plt  # imported lazily for headless safety

    return plt


class PlotAdapter:
    """Collect epoch metrics and draw the training curve on :meth:`close`."""

    def __init__(
        self,
        run_dir: str | Path,
        enable_plots: bool = False,
        metric: str = "reconstruction_error",
    ) -> None:
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self.metric = metric
        self._history: List[Tuple[int, float]] = []
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self.run_dir / f"{self.metric}.png"

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.enable_plots or self.metric not in metrics:
            return
        self._history.append((epoch, float(metrics[self.metric])))

    def close(self) -> None:
        if not self.enable_plots or not self._history:
            return
        plt = _pyplot()
        epochs, values = zip(*self._history)
        fig, ax = plt.subplots()
        ax.plot(epochs, values, marker="o")
        ax.set_xlabel("Epoch")
        ax.set_ylabel(self.metric.replace("_", " ").capitalize())
        ax.set_title("Training Curve")
        fig.savefig(self.path)
        plt.close(fig)

    __call__ = on_epoch


def plot_filters(weights: np.ndarray, shape: Tuple[int, int], path: str | Path) -> str:
    """Draw every filter of ``weights`` as a ``shape`` image in a grid.

    Dense weights ``(visible, hidden)`` give one filter per hidden unit;
    convolutional weights ``(nc, k, nw1, nw2)`` one per (channel, filter).
    """

    weights = np.asarray(weights)
    if weights.ndim == 2:
        filters = weights.T.reshape((-1,) + tuple(shape))
    else:
        filters = weights.reshape((-1,) + weights.shape[-2:])
    cols = int(math.ceil(math.sqrt(len(filters))))
    rows = int(math.ceil(len(filters) / cols))
    plt = _pyplot()
    fig, axes = plt.subplots(rows, cols, squeeze=False, figsize=(cols, rows))
    for ax in axes.flat:
        ax.axis("off")
    for ax, image in zip(axes.flat, filters):
        ax.imshow(image, cmap="gray", interpolation="nearest")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path)
    plt.close(fig)
    return str(path)


__all__ = ["PlotAdapter", "plot_filters"]
