"""Standard Restricted Boltzmann Machine, following Hinton's definition."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ..core.activations import FINE_TUNE_UNITS, activate, derivative, sample, softplus
from ..core.errors import UnsupportedActivationKind
from ..core.hyper import HyperParameters
from ..core.params import UnitType
from ..core.types import Array
from ..descriptors import LayerKind, ResolvedConfig
from .base import ContrastiveDivergence, ParameterStore, ReconstructionBuffers, StoredParameters


class RBM(StoredParameters):
    """Dense RBM with ``num_visible`` visible and ``num_hidden`` hidden units.

    Weights are drawn from a zero-mean Gaussian scaled by 0.1, biases start
    at zero.  Unless the configuration is ``dbn_only`` the layer keeps the
    states of the last contrastive divergence step in :attr:`buffers`.
    """

    sgd_supported = True

    def __init__(
        self,
        config: ResolvedConfig,
        seed: int | None = None,
        hyper: HyperParameters | None = None,
    ) -> None:
        if config.kind is not LayerKind.RBM:
            raise TypeError(f"RBM requires a dense configuration, got {config.kind.value}")
        self.config = config
        self.hyper = hyper or HyperParameters()
        self.rng = np.random.default_rng(seed)
        self.batch_size = config.batch_size
        self.cd = ContrastiveDivergence(self)
        self._allocate(config.num_visible, config.num_hidden)

    def _allocate(self, num_visible: int, num_hidden: int) -> None:
        self.num_visible = num_visible
        self.num_hidden = num_hidden
        w = self.rng.standard_normal((num_visible, num_hidden)) * 0.1
        self.params = ParameterStore(
            w=w.astype(self.dtype),
            b=np.zeros(num_hidden, dtype=self.dtype),
            c=np.zeros(num_visible, dtype=self.dtype),
        )
        self.buffers: ReconstructionBuffers | None = None
        if not self.config.dbn_only:
            self.buffers = ReconstructionBuffers.allocate(
                self.batch_size, self.visible_shape, self.hidden_shape, self.dtype
            )

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        return (self.num_visible,)

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        return (self.num_hidden,)

    def dyn_init(self, dyn) -> None:
        """Give the runtime-sized twin ``dyn`` the dimensions of this layer."""

        dyn.batch_size = self.batch_size
        dyn.init_layer(self.num_visible, self.num_hidden)

    # ------------------------------------------------------------------
    # Activation

    def activate_hidden(
        self, v: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        x = v @ self.w + self.b
        h_a = activate(self.config.hidden_unit, x)
        if not sample_state:
            return h_a, None
        return h_a, sample(self.config.hidden_unit, h_a, x, rng or self.rng)

    def activate_visible(
        self, h: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        x = h @ self.w.T + self.c
        v_a = activate(self.config.visible_unit, x)
        if not sample_state:
            return v_a, None
        return v_a, sample(self.config.visible_unit, v_a, x, rng or self.rng)

    def statistics(self, v: Array, h: Array) -> tuple[Array, Array, Array]:
        return v.T @ h, h.sum(axis=0), v.sum(axis=0)

    def hidden_totals(self, h: Array) -> Array:
        return h.sum(axis=0)

    def broadcast_hidden(self, values: Array) -> Array:
        """Reshape a per-hidden-unit vector to broadcast against :attr:`w`."""

        return values

    def forward_batch(self, inputs: Array) -> Array:
        v = np.asarray(inputs, dtype=self.dtype).reshape(-1, self.num_visible)
        return self.activate_hidden(v, sample_state=False)[0]

    def forward_one(self, sample_input: Array) -> Array:
        return self.forward_batch(sample_input)[0]

    def free_energy(self, v: Array) -> Array:
        """Free energy of every sample of ``v``."""

        v = np.asarray(v, dtype=self.dtype).reshape(-1, self.num_visible)
        hidden_term = softplus(v @ self.w + self.b).sum(axis=1)
        if self.config.visible_unit is UnitType.GAUSSIAN:
            return 0.5 * np.sum((v - self.c) ** 2, axis=1) - hidden_term
        return -(v @ self.c) - hidden_term

    # ------------------------------------------------------------------
    # Supervised fine-tuning

    def check_fine_tune(self) -> None:
        if self.config.hidden_unit not in FINE_TUNE_UNITS:
            raise UnsupportedActivationKind(self.config.hidden_unit)

    def adapt_errors(self, context) -> None:
        """Multiply the errors by the derivative of the hidden activation."""

        context.errors = derivative(self.config.hidden_unit, context.output) * context.errors

    def backward_batch(self, context, out: Array | None = None) -> Array:
        """Propagate the adapted errors to the previous layer."""

        result = context.errors @ self.w.T
        if out is None:
            return result
        out.reshape(result.shape[0], self.num_visible)[...] = result
        return out

    def compute_gradients(self, context) -> None:
        context.w_grad = context.input.T @ context.errors
        context.b_grad = context.errors.sum(axis=0)


__all__ = ["RBM"]
