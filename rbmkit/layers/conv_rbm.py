"""Convolutional RBMs.

Visible units are ``nc`` channels of ``nv1 x nv2`` images, hidden units are
``k`` feature maps of ``nh1 x nh2``.  The filters are ``nw1 x nw2`` with
``nw = nv - nh + 1`` so the hidden maps are a valid correlation of the
input.  :class:`ConvRBMMP` adds probabilistic max pooling over ``pool x
pool`` blocks of every feature map (Lee et al., 2009).
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..core.activations import FINE_TUNE_UNITS, activate, derivative, sample, softplus
from ..core.errors import UnsupportedActivationKind
from ..core.hyper import HyperParameters
from ..core.params import UnitType
from ..core.types import Array
from ..descriptors import LayerKind, ResolvedConfig
from .base import ContrastiveDivergence, ParameterStore, ReconstructionBuffers, StoredParameters

_SPATIAL = (2, 3)


def _windows(x: Array, shape: Tuple[int, int]) -> Array:
    return sliding_window_view(x, shape, axis=_SPATIAL)


class ConvRBM(StoredParameters):
    """Convolutional RBM with weights of shape ``(nc, k, nw1, nw2)``."""

    kind = LayerKind.CONV_RBM
    sgd_supported = True

    def __init__(
        self,
        config: ResolvedConfig,
        seed: int | None = None,
        hyper: HyperParameters | None = None,
    ) -> None:
        if config.kind is not self.kind:
            raise TypeError(
                f"{type(self).__name__} requires a {self.kind.value} configuration, "
                f"got {config.kind.value}"
            )
        self.config = config
        self.hyper = hyper or HyperParameters()
        self.rng = np.random.default_rng(seed)
        self.batch_size = config.batch_size
        self.cd = ContrastiveDivergence(self)

        nw1, nw2 = config.filter_shape
        w = self.rng.standard_normal((config.nc, config.k, nw1, nw2)) * 0.1
        self.params = ParameterStore(
            w=w.astype(self.dtype),
            b=np.zeros(config.k, dtype=self.dtype),
            c=np.zeros(config.nc, dtype=self.dtype),
        )
        self.buffers: ReconstructionBuffers | None = None
        if not config.dbn_only:
            self.buffers = ReconstructionBuffers.allocate(
                self.batch_size, self.visible_shape, self.hidden_shape, self.dtype
            )

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        return (self.config.nc, self.config.nv1, self.config.nv2)

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        return (self.config.k, self.config.nh1, self.config.nh2)

    @property
    def filter_shape(self) -> Tuple[int, int]:
        return self.config.filter_shape

    # ------------------------------------------------------------------
    # Convolutions

    def _hidden_input(self, v: Array) -> Array:
        windows = _windows(v, self.filter_shape)
        return np.einsum("ncijab,ckab->nkij", windows, self.w)

    def _visible_input(self, h: Array) -> Array:
        nw1, nw2 = self.filter_shape
        padded = np.pad(h, ((0, 0), (0, 0), (nw1 - 1, nw1 - 1), (nw2 - 1, nw2 - 1)))
        windows = _windows(padded, self.filter_shape)
        return np.einsum("nkpqab,ckab->ncpq", windows, self.w[:, :, ::-1, ::-1])

    def _bias_hidden(self) -> Array:
        return self.b[None, :, None, None]

    # ------------------------------------------------------------------
    # Activation

    def activate_hidden(
        self, v: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        x = self._hidden_input(v) + self._bias_hidden()
        h_a = activate(self.config.hidden_unit, x, axis=1)
        if not sample_state:
            return h_a, None
        return h_a, sample(self.config.hidden_unit, h_a, x, rng or self.rng, axis=1)

    def activate_visible(
        self, h: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        x = self._visible_input(h) + self.c[None, :, None, None]
        v_a = activate(self.config.visible_unit, x, axis=1)
        if not sample_state:
            return v_a, None
        return v_a, sample(self.config.visible_unit, v_a, x, rng or self.rng, axis=1)

    def statistics(self, v: Array, h: Array) -> tuple[Array, Array, Array]:
        windows = _windows(v, self.filter_shape)
        w_stat = np.einsum("ncijab,nkij->ckab", windows, h)
        return w_stat, h.sum(axis=(0, 2, 3)), v.sum(axis=(0, 2, 3))

    def hidden_totals(self, h: Array) -> Array:
        return h.mean(axis=_SPATIAL).sum(axis=0)

    def broadcast_hidden(self, values: Array) -> Array:
        return np.asarray(values)[None, :, None, None]

    def _as_batch(self, inputs: Array) -> Array:
        return np.asarray(inputs, dtype=self.dtype).reshape((-1,) + self.visible_shape)

    def forward_batch(self, inputs: Array) -> Array:
        return self.activate_hidden(self._as_batch(inputs), sample_state=False)[0]

    def forward_one(self, sample_input: Array) -> Array:
        return self.forward_batch(sample_input)[0]

    def free_energy(self, v: Array) -> Array:
        v = self._as_batch(v)
        x = self._hidden_input(v) + self._bias_hidden()
        hidden_term = softplus(x).sum(axis=(1, 2, 3))
        if self.config.visible_unit is UnitType.GAUSSIAN:
            centred = v - self.c[None, :, None, None]
            return 0.5 * np.sum(centred**2, axis=(1, 2, 3)) - hidden_term
        return -np.einsum("ncij,c->n", v, self.c) - hidden_term

    # ------------------------------------------------------------------
    # Supervised fine-tuning

    def check_fine_tune(self) -> None:
        if self.config.hidden_unit not in FINE_TUNE_UNITS:
            raise UnsupportedActivationKind(self.config.hidden_unit)

    def adapt_errors(self, context) -> None:
        context.errors = derivative(self.config.hidden_unit, context.output) * context.errors

    def backward_batch(self, context, out: Array | None = None) -> Array:
        result = self._visible_input(context.errors)
        if out is None:
            return result
        out.reshape(result.shape)[...] = result
        return out

    def compute_gradients(self, context) -> None:
        windows = _windows(context.input, self.filter_shape)
        context.w_grad = np.einsum("ncijab,nkij->ckab", windows, context.errors)
        context.b_grad = context.errors.sum(axis=(0, 2, 3))


class ConvRBMMP(ConvRBM):
    """Convolutional RBM with probabilistic max pooling.

    Binary hidden units of one ``pool x pool`` block compete through a
    softmax that includes an extra "all off" state; the pooling unit of the
    block is on whenever one of its hidden units is.  Other hidden unit kinds
    use their own activation and pool with a plain block maximum.
    """

    kind = LayerKind.CONV_RBM_MP
    sgd_supported = False

    @property
    def pool(self) -> int:
        return self.config.pool

    @property
    def pooled_shape(self) -> Tuple[int, ...]:
        c = self.pool
        return (self.config.k, self.config.nh1 // c, self.config.nh2 // c)

    def _blocks(self, x: Array) -> Array:
        n, k, h1, h2 = x.shape
        c = self.pool
        blocks = x.reshape(n, k, h1 // c, c, h2 // c, c).transpose(0, 1, 2, 4, 3, 5)
        return blocks.reshape(n, k, h1 // c, h2 // c, c * c)

    def _unblocks(self, blocks: Array) -> Array:
        n, k, p1, p2, _ = blocks.shape
        c = self.pool
        x = blocks.reshape(n, k, p1, p2, c, c).transpose(0, 1, 2, 4, 3, 5)
        return x.reshape(n, k, p1 * c, p2 * c)

    def _block_softmax(self, x: Array) -> tuple[Array, Array]:
        """Return per-unit "on" probabilities and the per-block "off" probability."""

        blocks = self._blocks(x)
        shift = np.maximum(blocks.max(axis=-1, keepdims=True), 0.0)
        e = np.exp(blocks - shift)
        off = np.exp(-shift)
        total = off + e.sum(axis=-1, keepdims=True)
        return e / total, (off / total)[..., 0]

    def activate_hidden(
        self, v: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        if self.config.hidden_unit is not UnitType.BINARY:
            return super().activate_hidden(v, rng, sample_state)
        x = self._hidden_input(v) + self._bias_hidden()
        on, off = self._block_softmax(x)
        h_a = self._unblocks(on)
        if not sample_state:
            return h_a, None
        states = np.concatenate([on, off[..., None]], axis=-1)
        drawn = sample(UnitType.SOFTMAX, states, states, rng or self.rng, axis=-1)
        return h_a, self._unblocks(drawn[..., :-1]).astype(h_a.dtype)

    def activate_pooling(self, v: Array) -> Array:
        """Probability of each pooling unit being on."""

        v = self._as_batch(v)
        if self.config.hidden_unit is not UnitType.BINARY:
            h_a, _ = super().activate_hidden(v, sample_state=False)
            return self._blocks(h_a).max(axis=-1)
        x = self._hidden_input(v) + self._bias_hidden()
        _, off = self._block_softmax(x)
        return 1.0 - off

    def forward_batch(self, inputs: Array) -> Array:
        return self.activate_pooling(inputs)

    def free_energy(self, v: Array) -> Array:
        v = self._as_batch(v)
        if self.config.hidden_unit is not UnitType.BINARY:
            return super().free_energy(v)
        blocks = self._blocks(self._hidden_input(v) + self._bias_hidden())
        shift = np.maximum(blocks.max(axis=-1), 0.0)
        log_z = shift + np.log(np.exp(-shift) + np.exp(blocks - shift[..., None]).sum(axis=-1))
        hidden_term = log_z.sum(axis=(1, 2, 3))
        if self.config.visible_unit is UnitType.GAUSSIAN:
            centred = v - self.c[None, :, None, None]
            return 0.5 * np.sum(centred**2, axis=(1, 2, 3)) - hidden_term
        return -np.einsum("ncij,c->n", v, self.c) - hidden_term


__all__ = ["ConvRBM", "ConvRBMMP"]
