"""Watchers observing RBM training.

Watchers follow the callback protocol used by the metric sinks: they are
notified at the start and end of training, once per epoch with the
:class:`~rbmkit.core.types.TrainingSignals` of that epoch, and whenever the
training loop observes a numerical condition worth reporting.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from ..core.types import Diagnostic, TrainingSignals

logger = logging.getLogger("rbmkit.training")


class Watcher(Protocol):
    def on_training_begin(self, layer, epochs: int) -> None:
        """Called once before the first epoch."""

    def on_epoch(self, signals: TrainingSignals) -> None:
        """Called after every epoch."""

    def on_diagnostic(self, diagnostic: Diagnostic) -> None:
        """Called when a numerical condition is detected."""

    def on_training_end(self, layer) -> None:
        """Called once after the last epoch."""


class NullWatcher:
    """Watcher that ignores everything."""

    def on_training_begin(self, layer, epochs: int) -> None:
        pass

    def on_epoch(self, signals: TrainingSignals) -> None:
        pass

    def on_diagnostic(self, diagnostic: Diagnostic) -> None:
        pass

    def on_training_end(self, layer) -> None:
        pass


class LoggingWatcher(NullWatcher):
    """Report progress through :mod:`logging`."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def on_training_begin(self, layer, epochs: int) -> None:
        self.log.info("Train %s for %d epochs", layer.to_short_string(), epochs)

    def on_epoch(self, signals: TrainingSignals) -> None:
        message = "epoch %d - Reconstruction error: %.5f - Sparsity: %.5f - Time: %.2fs"
        args: list[object] = [
            signals.epoch,
            signals.reconstruction_error,
            signals.sparsity,
            signals.elapsed,
        ]
        if signals.free_energy is not None:
            message += " - Free energy: %.3f"
            args.append(signals.free_energy)
        self.log.info(message, *args)

    def on_diagnostic(self, diagnostic: Diagnostic) -> None:
        self.log.warning("epoch %d - %s %s", diagnostic.epoch, diagnostic.kind, diagnostic.payload)

    def on_training_end(self, layer) -> None:
        self.log.info("Training of %s finished", layer.to_short_string())


class SinkWatcher(NullWatcher):
    """Forward epoch signals to metric sinks (``on_epoch(epoch, metrics)``)."""

    def __init__(self, sinks: Sequence[object] = ()) -> None:
        self.sinks = list(sinks)

    def on_epoch(self, signals: TrainingSignals) -> None:
        metrics = signals.as_metrics()
        for sink in self.sinks:
            if hasattr(sink, "on_epoch"):
                sink.on_epoch(signals.epoch, metrics)  # type: ignore[attr-defined]
            elif callable(sink):
                sink(signals.epoch, metrics)

    def on_training_end(self, layer) -> None:
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if callable(close):
                close()


class HistoryWatcher(NullWatcher):
    """Keep every signal and diagnostic in memory."""

    def __init__(self) -> None:
        self.signals: List[TrainingSignals] = []
        self.diagnostics: List[Diagnostic] = []

    def on_epoch(self, signals: TrainingSignals) -> None:
        self.signals.append(signals)

    def on_diagnostic(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)


class CompositeWatcher(NullWatcher):
    """Fan notifications out to several watchers."""

    def __init__(self, watchers: Sequence[Watcher]) -> None:
        self.watchers = list(watchers)

    def on_training_begin(self, layer, epochs: int) -> None:
        for watcher in self.watchers:
            watcher.on_training_begin(layer, epochs)

    def on_epoch(self, signals: TrainingSignals) -> None:
        for watcher in self.watchers:
            watcher.on_epoch(signals)

    def on_diagnostic(self, diagnostic: Diagnostic) -> None:
        for watcher in self.watchers:
            watcher.on_diagnostic(diagnostic)

    def on_training_end(self, layer) -> None:
        for watcher in self.watchers:
            watcher.on_training_end(layer)


WATCHERS = {"null": NullWatcher, "logging": LoggingWatcher, "history": HistoryWatcher}


def get_watcher(name: str) -> type:
    try:
        return WATCHERS[name.lower()]
    except KeyError as exc:
        available = ", ".join(sorted(WATCHERS))
        raise KeyError(f"Unknown watcher '{name}'. Available: {available}") from exc


__all__ = [
    "CompositeWatcher",
    "HistoryWatcher",
    "LoggingWatcher",
    "NullWatcher",
    "SinkWatcher",
    "WATCHERS",
    "Watcher",
    "get_watcher",
]
