"""Training loops: unsupervised CD pretraining and supervised SGD fine-tuning."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import numpy as np

from ..core.params import UnitType
from ..core.types import Array, Diagnostic, TrainingSignals
from .contexts import SGDContext
from .watchers import CompositeWatcher, LoggingWatcher, NullWatcher


def layer_state(layer) -> Mapping[str, Array]:
    return {"w": layer.w.copy(), "b": layer.b.copy(), "c": layer.c.copy()}


class RBMTrainer:
    """Train a single RBM layer with the trainer selected by its descriptor.

    Every epoch reports :class:`TrainingSignals` to the watcher.  The weights
    are backed up whenever the reconstruction error improves; an epoch that
    ends with a non-finite error restores the backup and stops training.
    """

    def __init__(
        self,
        layer,
        watcher=None,
        seed: int = 0,
        *,
        trainer=None,
        workers: int = 4,
        checkpoint_dir: str | Path | None = None,
    ) -> None:
        config = layer.config
        self.layer = layer
        self.trainer = trainer if trainer is not None else config.trainer(layer)
        if watcher is None:
            watcher = config.watcher()
        if config.verbose and not isinstance(watcher, LoggingWatcher):
            watcher = CompositeWatcher([watcher, LoggingWatcher()])
        self.watcher = watcher or NullWatcher()
        self.rng = np.random.default_rng(seed)
        self.workers = workers if config.is_parallel else 1
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir is not None else None

    def init_weights(self, data: Array) -> None:
        """Initialise the visible biases from the statistics of ``data``."""

        layer = self.layer
        axes = (0,) + tuple(range(2, data.ndim))
        mean = data.mean(axis=axes)
        if layer.config.visible_unit is UnitType.GAUSSIAN:
            layer.c = mean
            return
        p = np.clip(mean, 1e-4, 1.0 - 1e-4)
        layer.c = np.log(p / (1.0 - p))

    def train(self, data: Array, epochs: int) -> float:
        """Run ``epochs`` epochs over ``data`` and return the best error."""

        layer = self.layer
        config = layer.config
        data = np.asarray(data, dtype=layer.dtype).reshape((-1,) + tuple(layer.visible_shape))
        n = data.shape[0]
        if n == 0:
            raise ValueError("Cannot train on an empty dataset")
        if epochs < 1:
            raise ValueError("epochs must be at least 1")

        if config.init_weights:
            self.init_weights(data)
        layer.backup_weights()
        self.watcher.on_training_begin(layer, epochs)

        best = float("inf")
        batch_size = layer.batch_size
        for epoch in range(1, epochs + 1):
            start = time.perf_counter()
            self.trainer.init_epoch(epoch)
            order = self.rng.permutation(n) if config.shuffle else np.arange(n)

            squared = 0.0
            activity = 0.0
            seen = 0
            for index, lo in enumerate(range(0, n, batch_size)):
                batch = data[order[lo : lo + batch_size]]
                stats = self.trainer.train_batch(batch, workers=self.workers)
                if not stats.is_finite():
                    self.watcher.on_diagnostic(
                        Diagnostic("non_finite_gradients", epoch, {"batch": index})
                    )
                    continue
                squared += stats.reconstruction_error * stats.batch
                activity += float(np.mean(stats.h1_mean)) * stats.batch
                seen += stats.batch

            error = squared / seen if seen else float("nan")
            free_energy = None
            if config.free_energy:
                free_energy = float(np.mean(layer.free_energy(data)))
            signals = TrainingSignals(
                epoch=epoch,
                reconstruction_error=error,
                sparsity=activity / seen if seen else float("nan"),
                free_energy=free_energy,
                momentum=float(self.trainer.momentum),
                elapsed=time.perf_counter() - start,
            )
            self.watcher.on_epoch(signals)

            if not np.isfinite(error) or not np.all(np.isfinite(layer.w)):
                layer.restore_weights()
                self.watcher.on_diagnostic(
                    Diagnostic("restored_backup", epoch, {"reconstruction_error": error})
                )
                break
            if error < best - 1e-12:
                best = error
                layer.backup_weights()
                self._save_checkpoint("best.ckpt")

        self._save_checkpoint("last.ckpt")
        self.watcher.on_training_end(layer)
        return best

    def _save_checkpoint(self, name: str) -> None:
        if self.checkpoint_dir is None:
            return
        path = self.checkpoint_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as handle:
            np.savez_compressed(handle, **layer_state(self.layer))


def _fill(context: SGDContext, name: str, value: Array) -> Array:
    buffer = getattr(context, name)
    if buffer.shape == value.shape:
        buffer[...] = value
        return buffer
    setattr(context, name, value)
    return value


@dataclass
class SGDOptimizer:
    """SGD with momentum over the gradients held by an :class:`SGDContext`.

    ``context.errors`` holds the derivative of the loss with respect to the
    layer output, so increments move against the gradient.
    """

    lr: float
    momentum: float = 0.0

    def step(self, layer, context: SGDContext) -> None:
        batch = max(1, context.batch_size)
        context.w_inc[...] = self.momentum * context.w_inc - self.lr * context.w_grad / batch
        context.b_inc[...] = self.momentum * context.b_inc - self.lr * context.b_grad / batch
        layer.w += context.w_inc
        layer.b += context.b_inc

    def fit_batch(self, layer, context: SGDContext, inputs: Array, targets: Array) -> float:
        """One supervised step of ``layer`` towards ``targets``; returns the MSE."""

        v = np.asarray(inputs, dtype=layer.dtype).reshape((-1,) + tuple(layer.visible_shape))
        _fill(context, "input", v)
        output = _fill(context, "output", layer.forward_batch(v))
        errors = output - np.asarray(targets, dtype=layer.dtype).reshape(output.shape)
        _fill(context, "errors", errors)
        loss = float(np.mean(errors**2))
        layer.adapt_errors(context)
        layer.compute_gradients(context)
        self.step(layer, context)
        return loss


__all__ = ["RBMTrainer", "SGDOptimizer", "layer_state"]
