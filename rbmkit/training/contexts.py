"""Per-run buffers of the supervised optimisers.

Contexts are owned by the optimiser, never by the layer.  Their shapes
derive from the layer's resolved configuration so a layer's
``compute_gradients`` and ``backward_batch`` can write into them without any
runtime shape checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import List

import numpy as np

from ..core.types import Array


def _check_layer(layer) -> None:
    if not getattr(layer, "sgd_supported", False):
        raise TypeError(f"{layer.to_short_string()} cannot be fine-tuned")
    layer.check_fine_tune()


@dataclass
class SGDContext:
    """Gradients, increments and batch buffers of one layer under SGD.

    Increments start at zero and persist across batches; gradients are
    overwritten by every ``compute_gradients`` call.
    """

    w_grad: Array
    b_grad: Array
    w_inc: Array
    b_inc: Array
    input: Array
    output: Array
    errors: Array

    @classmethod
    def for_layer(cls, layer, batch_size: int | None = None) -> "SGDContext":
        batch = batch_size or layer.batch_size
        dtype = layer.dtype
        hidden = (batch,) + tuple(layer.hidden_shape)
        return cls(
            w_grad=np.zeros_like(layer.w),
            b_grad=np.zeros_like(layer.b),
            w_inc=np.zeros_like(layer.w),
            b_inc=np.zeros_like(layer.b),
            input=np.zeros((batch,) + tuple(layer.visible_shape), dtype=dtype),
            output=np.zeros(hidden, dtype=dtype),
            errors=np.zeros(hidden, dtype=dtype),
        )

    @property
    def batch_size(self) -> int:
        return int(self.input.shape[0])


@dataclass
class CGContext:
    """Line-search state of one layer for conjugate gradient fine-tuning.

    ``probs_a`` and ``probs_s`` hold one entry per training example.  They are
    sized by :meth:`reset` at the start of every run and never shared between
    runs.
    """

    w_incs: Array
    b_incs: Array
    w_best: Array
    b_best: Array
    w_best_incs: Array
    b_best_incs: Array
    w_df0: Array
    b_df0: Array
    w_df3: Array
    b_df3: Array
    w_s: Array
    b_s: Array
    w_tmp: Array
    b_tmp: Array
    hidden_shape: tuple = ()
    probs_a: List[Array] = field(default_factory=list)
    probs_s: List[Array] = field(default_factory=list)

    @classmethod
    def for_layer(cls, layer) -> "CGContext":
        def w() -> Array:
            return np.zeros_like(layer.w)

        def b() -> Array:
            return np.zeros_like(layer.b)

        return cls(
            w_incs=w(),
            b_incs=b(),
            w_best=w(),
            b_best=b(),
            w_best_incs=w(),
            b_best_incs=b(),
            w_df0=w(),
            b_df0=b(),
            w_df3=w(),
            b_df3=b(),
            w_s=w(),
            b_s=b(),
            w_tmp=w(),
            b_tmp=b(),
            hidden_shape=tuple(layer.hidden_shape),
        )

    def reset(self, n_samples: int) -> None:
        """Zero the search state and size the per-example buffers."""

        if n_samples < 0:
            raise ValueError("n_samples must be non-negative")
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                value.fill(0)
        dtype = self.w_incs.dtype
        self.probs_a = [np.zeros(self.hidden_shape, dtype=dtype) for _ in range(n_samples)]
        self.probs_s = [np.zeros(self.hidden_shape, dtype=dtype) for _ in range(n_samples)]

    @property
    def n_samples(self) -> int:
        return len(self.probs_a)


def sgd_context(layer, batch_size: int | None = None) -> SGDContext:
    """Build the SGD context of ``layer``.

    Raises :class:`~rbmkit.core.errors.UnsupportedActivationKind` when the
    hidden units have no usable derivative.
    """

    _check_layer(layer)
    return SGDContext.for_layer(layer, batch_size)


def cg_context(layer, n_samples: int = 0) -> CGContext:
    _check_layer(layer)
    context = CGContext.for_layer(layer)
    context.reset(n_samples)
    return context


__all__ = ["CGContext", "SGDContext", "cg_context", "sgd_context"]
