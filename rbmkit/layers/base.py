"""Capabilities shared by every RBM layer kind.

Concrete layers (dense, dynamic, convolutional) implement the
:class:`Layer` protocol.  The mechanics common to all of them are held by
composed helpers rather than a base class:

* :class:`ParameterStore` owns weights, biases and their optional backups.
* :class:`ReconstructionBuffers` holds the per-batch CD states of layers that
  support standalone reconstruction.
* :class:`ContrastiveDivergence` runs the CD state machine on top of the
  activation rules a layer provides.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from enum import Enum
from typing import List, Optional, Protocol, Tuple

import numpy as np

from ..core.types import Array, CDStatistics


class Layer(Protocol):
    """Capability set every RBM layer kind provides."""

    config: object
    buffers: Optional["ReconstructionBuffers"]
    cd: "ContrastiveDivergence"

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        """Shape of one input sample."""

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        """Shape of the hidden units of one sample."""

    def input_size(self) -> int:
        """Number of elements of one input sample."""

    def output_size(self) -> int:
        """Number of elements of one output sample."""

    def parameter_count(self) -> int:
        """Number of weights."""

    def activate_hidden(
        self, v: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        """Hidden activation probabilities (and a sampled state) given ``v``."""

    def activate_visible(
        self, h: Array, rng: np.random.Generator | None = None, sample_state: bool = True
    ) -> tuple[Array, Array | None]:
        """Visible activation probabilities (and a sampled state) given ``h``."""

    def statistics(self, v: Array, h: Array) -> tuple[Array, Array, Array]:
        """Batch-summed correlations of ``v`` and ``h`` for w, b and c."""

    def hidden_totals(self, h: Array) -> Array:
        """Batch-summed mean activation of each hidden bias unit."""

    def forward_batch(self, inputs: Array) -> Array:
        """Layer output for a batch, as consumed by the next layer."""

    def to_short_string(self) -> str:
        """Human readable one-line description."""


@dataclass
class ParameterStore:
    """Weights and biases of a layer with optional backup copies."""

    w: Array
    b: Array
    c: Array
    bak_w: Optional[Array] = None
    bak_b: Optional[Array] = None
    bak_c: Optional[Array] = None

    @property
    def has_backup(self) -> bool:
        return self.bak_w is not None

    def backup(self) -> None:
        """Copy the current parameters into the backup buffers.

        The buffers are allocated on first use.  Only call between batches.
        """

        if self.bak_w is None:
            self.bak_w = self.w.copy()
            self.bak_b = self.b.copy()
            self.bak_c = self.c.copy()
            return
        np.copyto(self.bak_w, self.w)
        np.copyto(self.bak_b, self.b)
        np.copyto(self.bak_c, self.c)

    def restore(self) -> None:
        if self.bak_w is None:
            raise RuntimeError("No backup of the weights has been taken")
        np.copyto(self.w, self.bak_w)
        np.copyto(self.b, self.bak_b)
        np.copyto(self.c, self.bak_c)


@dataclass
class ReconstructionBuffers:
    """Visible and hidden states of the last CD step, one row per sample."""

    v1: Array
    h1_a: Array
    h1_s: Array
    v2_a: Array
    v2_s: Array
    h2_a: Array
    h2_s: Array

    @classmethod
    def allocate(
        cls,
        batch: int,
        visible_shape: Tuple[int, ...],
        hidden_shape: Tuple[int, ...],
        dtype: np.dtype,
    ) -> "ReconstructionBuffers":
        vis = (batch,) + tuple(visible_shape)
        hid = (batch,) + tuple(hidden_shape)
        return cls(
            v1=np.zeros(vis, dtype=dtype),
            h1_a=np.zeros(hid, dtype=dtype),
            h1_s=np.zeros(hid, dtype=dtype),
            v2_a=np.zeros(vis, dtype=dtype),
            v2_s=np.zeros(vis, dtype=dtype),
            h2_a=np.zeros(hid, dtype=dtype),
            h2_s=np.zeros(hid, dtype=dtype),
        )

    @property
    def rows(self) -> int:
        return int(self.v1.shape[0])

    def ensure_rows(self, rows: int) -> None:
        """Make room for a batch of ``rows`` samples.

        Rows past ``rows`` are cleared so they never hold states of an
        earlier, larger batch.
        """

        if rows > self.rows:
            for f in fields(self):
                current = getattr(self, f.name)
                grown = np.zeros((rows,) + current.shape[1:], dtype=current.dtype)
                setattr(self, f.name, grown)
            return
        for f in fields(self):
            getattr(self, f.name)[rows:] = 0

    def store(self, name: str, rows: slice, value: Array) -> None:
        getattr(self, name)[rows] = value


class CDState(Enum):
    IDLE = "idle"
    VISIBLE_SAMPLED = "visible_sampled"
    HIDDEN_SAMPLED = "hidden_sampled"
    VISIBLE_RECONSTRUCTED = "visible_reconstructed"
    HIDDEN_RESAMPLED = "hidden_resampled"
    GRADIENT_COMPUTED = "gradient_computed"


@dataclass
class _Partial:
    w: Array
    b: Array
    c: Array
    h_totals: Array
    squared_error: float
    chain: Array


def _fit_chain(chain: Array, v1: Array) -> Array:
    """Rows of the persistent ``chain`` feeding a batch shaped like ``v1``.

    A longer chain gives its leading rows; a shorter one is completed with
    the batch's own samples.
    """

    chain = np.asarray(chain, dtype=v1.dtype)
    if chain.shape[1:] != v1.shape[1:]:
        raise ValueError(f"Chain samples of shape {chain.shape[1:]} do not match {v1.shape[1:]}")
    n = v1.shape[0]
    if chain.shape[0] >= n:
        return chain[:n]
    return np.concatenate([chain, v1[chain.shape[0]:]], axis=0)


class ContrastiveDivergence:
    """Run CD-k steps for ``layer`` and track the per-batch state.

    With ``workers > 1`` the batch is split in disjoint row ranges, each range
    handled by one thread with its own generator.  Partial gradients are only
    summed once every worker has finished.
    """

    def __init__(self, layer: Layer) -> None:
        self.layer = layer
        self.state = CDState.IDLE
        self.trace: List[CDState] = []

    def step(
        self,
        inputs: Array,
        rng: np.random.Generator,
        *,
        k: int = 1,
        chain: Array | None = None,
        workers: int = 1,
    ) -> CDStatistics:
        if self.in_flight:
            raise RuntimeError(f"CD step started while the layer is {self.state.value}")
        if k < 1:
            raise ValueError("CD requires at least one step")
        layer = self.layer
        v1 = np.asarray(inputs, dtype=layer.dtype).reshape((-1,) + tuple(layer.visible_shape))
        n = v1.shape[0]
        if chain is not None:
            chain = _fit_chain(chain, v1)
        if layer.buffers is not None:
            layer.buffers.ensure_rows(n)

        self.trace = []
        try:
            return self._step(v1, rng, k, chain, workers)
        except Exception:
            self.state = CDState.IDLE
            raise

    def _step(
        self,
        v1: Array,
        rng: np.random.Generator,
        k: int,
        chain: Array | None,
        workers: int,
    ) -> CDStatistics:
        layer = self.layer
        n = v1.shape[0]
        workers = max(1, min(int(workers), n))
        if workers == 1:
            parts = [self._run(v1, rng, k, chain, slice(0, n), track=True)]
        else:
            self._advance(CDState.VISIBLE_SAMPLED, True)
            ranges = [r for r in np.array_split(np.arange(n), workers) if r.size]
            seeds = rng.integers(0, 2**63 - 1, size=len(ranges))
            with ThreadPoolExecutor(max_workers=len(ranges)) as pool:
                futures = []
                for rows, seed in zip(ranges, seeds):
                    lo, hi = int(rows[0]), int(rows[-1]) + 1
                    part_chain = chain[lo:hi] if chain is not None else None
                    futures.append(
                        pool.submit(
                            self._run,
                            v1[lo:hi],
                            np.random.default_rng(int(seed)),
                            k,
                            part_chain,
                            slice(lo, hi),
                            track=False,
                        )
                    )
                parts = [future.result() for future in futures]

        w_grad = sum(part.w for part in parts) / n
        b_grad = sum(part.b for part in parts) / n
        c_grad = sum(part.c for part in parts) / n
        h_mean = sum(part.h_totals for part in parts) / n
        squared = sum(part.squared_error for part in parts)
        self._advance(CDState.GRADIENT_COMPUTED, True)
        return CDStatistics(
            w_grad=w_grad,
            b_grad=b_grad,
            c_grad=c_grad,
            h1_mean=h_mean,
            reconstruction_error=float(squared / (n * layer.input_size())),
            batch=n,
            chain=np.concatenate([part.chain for part in parts], axis=0),
        )

    @property
    def in_flight(self) -> bool:
        return self.state not in (CDState.IDLE, CDState.GRADIENT_COMPUTED)

    def finish(self) -> None:
        """Return to idle once the trainer has applied the update."""

        self.state = CDState.IDLE

    def _advance(self, state: CDState, track: bool) -> None:
        if track:
            self.state = state
            self.trace.append(state)

    def _run(
        self,
        v1: Array,
        rng: np.random.Generator,
        k: int,
        chain: Array | None,
        rows: slice,
        track: bool,
    ) -> _Partial:
        layer = self.layer
        buffers = layer.buffers
        self._advance(CDState.VISIBLE_SAMPLED, track)
        if buffers is not None:
            buffers.store("v1", rows, v1)

        h1_a, h1_s = layer.activate_hidden(v1, rng)
        self._advance(CDState.HIDDEN_SAMPLED, track)
        if buffers is not None:
            buffers.store("h1_a", rows, h1_a)
            buffers.store("h1_s", rows, h1_s)

        h_s = h1_s
        if chain is not None:
            _, h_s = layer.activate_hidden(chain, rng)
        for _ in range(k):
            v2_a, v2_s = layer.activate_visible(h_s, rng)
            self._advance(CDState.VISIBLE_RECONSTRUCTED, track)
            h2_a, h2_s = layer.activate_hidden(v2_a, rng)
            self._advance(CDState.HIDDEN_RESAMPLED, track)
            h_s = h2_s

        if buffers is not None:
            buffers.store("v2_a", rows, v2_a)
            buffers.store("v2_s", rows, v2_s)
            buffers.store("h2_a", rows, h2_a)
            buffers.store("h2_s", rows, h2_s)

        w_pos, b_pos, c_pos = layer.statistics(v1, h1_a)
        w_neg, b_neg, c_neg = layer.statistics(v2_a, h2_a)
        return _Partial(
            w=w_pos - w_neg,
            b=b_pos - b_neg,
            c=c_pos - c_neg,
            h_totals=layer.hidden_totals(h1_a),
            squared_error=float(np.sum((v1 - v2_a) ** 2)),
            chain=v2_s,
        )


class StoredParameters:
    """Accessors shared by layers whose parameters live in a :class:`ParameterStore`.

    Expects ``config``, ``params`` and ``rng`` attributes on the layer.
    """

    params: ParameterStore

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.config.weight)

    @property
    def w(self) -> Array:
        return self.params.w

    @w.setter
    def w(self, value: Array) -> None:
        self.params.w[...] = value

    @property
    def b(self) -> Array:
        return self.params.b

    @b.setter
    def b(self, value: Array) -> None:
        self.params.b[...] = value

    @property
    def c(self) -> Array:
        return self.params.c

    @c.setter
    def c(self, value: Array) -> None:
        self.params.c[...] = value

    @property
    def bak_w(self) -> Optional[Array]:
        return self.params.bak_w

    @property
    def bak_b(self) -> Optional[Array]:
        return self.params.bak_b

    @property
    def bak_c(self) -> Optional[Array]:
        return self.params.bak_c

    def backup_weights(self) -> None:
        self.params.backup()

    def restore_weights(self) -> None:
        self.params.restore()

    def input_size(self) -> int:
        return self.config.input_size()

    def output_size(self) -> int:
        return self.config.output_size()

    def parameter_count(self) -> int:
        return self.config.parameter_count()

    def to_short_string(self) -> str:
        return self.config.to_short_string()

    def prepare_input(self) -> Array:
        """Return a zeroed input sample of the right shape."""

        return np.zeros(self.visible_shape, dtype=self.dtype)

    def reconstruction_error(self, v: Array) -> float:
        """Mean squared error of a mean-field reconstruction of ``v``."""

        v = np.asarray(v, dtype=self.dtype).reshape((-1,) + tuple(self.visible_shape))
        h_a, _ = self.activate_hidden(v, sample_state=False)
        v_a, _ = self.activate_visible(h_a, sample_state=False)
        return float(np.mean((v - v_a) ** 2))

    def __repr__(self) -> str:
        return f"<{self.to_short_string()}>"


__all__ = [
    "CDState",
    "ContrastiveDivergence",
    "Layer",
    "ParameterStore",
    "ReconstructionBuffers",
    "StoredParameters",
]
