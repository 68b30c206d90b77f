"""Contrastive divergence update rules.

A trainer owns the per-layer optimisation state (momentum increments,
running sparsity estimates, persistent chains) and applies the gradients
returned by :class:`~rbmkit.layers.base.ContrastiveDivergence` to the
layer's weights.  The layer never chooses its update rule.
"""

from __future__ import annotations

import functools

import numpy as np

from ..core.params import BiasMode, DecayType, SparsityMethod
from ..core.types import Array, CDStatistics

_L1_DECAYS = frozenset({DecayType.L1, DecayType.L1L2, DecayType.L1_FULL, DecayType.L1L2_FULL})
_L2_DECAYS = frozenset({DecayType.L2, DecayType.L1L2, DecayType.L2_FULL, DecayType.L1L2_FULL})
_FULL_DECAYS = frozenset({DecayType.L1_FULL, DecayType.L2_FULL, DecayType.L1L2_FULL})


def _clip_norm(grad: Array, limit: float) -> Array:
    norm = float(np.linalg.norm(grad))
    if norm > limit > 0.0:
        return grad * (limit / norm)
    return grad


class CDTrainer:
    """CD-k trainer, ``k`` steps of Gibbs sampling per batch (CD-1 by default)."""

    k = 1
    persistent = False

    def __init__(self, layer, seed: int | None = None) -> None:
        self.layer = layer
        self.rng = layer.rng if seed is None else np.random.default_rng(seed)
        self.chain: Array | None = None
        self.epoch = 0
        self.reset()

    def reset(self) -> None:
        """Drop the increments, sparsity estimates and any persistent chain."""

        layer = self.layer
        self.w_inc = np.zeros_like(layer.w)
        self.b_inc = np.zeros_like(layer.b)
        self.c_inc = np.zeros_like(layer.c)
        self.q_global = 0.0
        self.q_local = np.zeros(layer.b.shape, dtype=np.float64)
        self.chain = None
        self.momentum = layer.hyper.initial_momentum if layer.config.momentum else 0.0

    def init_epoch(self, epoch: int) -> None:
        self.epoch = epoch
        if self.layer.config.momentum:
            self.momentum = self.layer.hyper.momentum_at(epoch)

    def train_batch(self, inputs: Array, workers: int = 1) -> CDStatistics:
        """Run one CD step on ``inputs`` and apply the resulting update.

        The returned statistics are those of the step; callers check
        :meth:`CDStatistics.is_finite` to learn whether the update was skipped.
        """

        layer = self.layer
        chain = self.chain if self.persistent else None
        stats = layer.cd.step(inputs, self.rng, k=self.k, chain=chain, workers=workers)
        self.apply(stats)
        if self.persistent:
            self._keep_chain(stats.chain)
        layer.cd.finish()
        return stats

    def _keep_chain(self, chain: Array) -> None:
        # a short batch only advances the leading rows of the chain
        if self.chain is None or chain.shape[0] >= self.chain.shape[0]:
            self.chain = chain
        else:
            self.chain[: chain.shape[0]] = chain

    def apply(self, stats: CDStatistics) -> bool:
        """Update the layer from ``stats``; non-finite gradients are ignored."""

        if not stats.is_finite():
            return False

        layer = self.layer
        config = layer.config
        hyper = layer.hyper
        w_grad = np.array(stats.w_grad, dtype=np.float64)
        b_grad = np.array(stats.b_grad, dtype=np.float64)
        c_grad = np.array(stats.c_grad, dtype=np.float64)

        if config.clip_gradients:
            w_grad = _clip_norm(w_grad, hyper.gradient_clip)
            b_grad = _clip_norm(b_grad, hyper.gradient_clip)
            c_grad = _clip_norm(c_grad, hyper.gradient_clip)

        full = config.decay in _FULL_DECAYS
        if config.decay in _L1_DECAYS:
            w_grad -= hyper.l1_weight_cost * np.sign(layer.w)
            if full:
                b_grad -= hyper.l1_weight_cost * np.sign(layer.b)
                c_grad -= hyper.l1_weight_cost * np.sign(layer.c)
        if config.decay in _L2_DECAYS:
            w_grad -= hyper.l2_weight_cost * layer.w
            if full:
                b_grad -= hyper.l2_weight_cost * layer.b
                c_grad -= hyper.l2_weight_cost * layer.c

        penalty = self._sparsity_penalty(stats.h1_mean)
        if penalty is not None:
            if config.bias is BiasMode.SIMPLE:
                b_grad -= penalty
            if config.bias is BiasMode.NONE or config.sparsity is not SparsityMethod.LEE:
                w_grad -= layer.broadcast_hidden(np.broadcast_to(penalty, layer.b.shape))

        lr = hyper.learning_rate
        if config.momentum:
            m = self.momentum
            self.w_inc = m * self.w_inc + lr * w_grad
            self.b_inc = m * self.b_inc + lr * b_grad
            self.c_inc = m * self.c_inc + lr * c_grad
        else:
            self.w_inc = lr * w_grad
            self.b_inc = lr * b_grad
            self.c_inc = lr * c_grad

        layer.w += self.w_inc.astype(layer.dtype, copy=False)
        layer.b += self.b_inc.astype(layer.dtype, copy=False)
        layer.c += self.c_inc.astype(layer.dtype, copy=False)
        return True

    def _sparsity_penalty(self, h_mean: Array) -> Array | float | None:
        config = self.layer.config
        hyper = self.layer.hyper
        method = config.sparsity
        if method is SparsityMethod.NONE:
            return None
        if method is SparsityMethod.GLOBAL_TARGET:
            self.q_global = hyper.decay_rate * self.q_global + (1.0 - hyper.decay_rate) * float(
                np.mean(h_mean)
            )
            return hyper.sparsity_cost * (self.q_global - hyper.sparsity_target)
        if method is SparsityMethod.LOCAL_TARGET:
            self.q_local = hyper.decay_rate * self.q_local + (1.0 - hyper.decay_rate) * h_mean
            return hyper.sparsity_cost * (self.q_local - hyper.sparsity_target)
        # LEE: push the mean activation towards pbias
        return hyper.pbias_lambda * (np.asarray(h_mean, dtype=np.float64) - hyper.pbias)


class PCDTrainer(CDTrainer):
    """Persistent CD: the negative chain continues from the previous batch."""

    persistent = True


@functools.lru_cache(maxsize=None)
def cd_k(k: int) -> type:
    """Return the CD trainer running ``k`` Gibbs steps per batch."""

    if k < 1:
        raise ValueError("CD requires at least one step")
    if k == 1:
        return CDTrainer
    return type(f"CD{k}Trainer", (CDTrainer,), {"k": k, "__module__": __name__})


@functools.lru_cache(maxsize=None)
def pcd_k(k: int) -> type:
    if k < 1:
        raise ValueError("PCD requires at least one step")
    if k == 1:
        return PCDTrainer
    return type(f"PCD{k}Trainer", (PCDTrainer,), {"k": k, "__module__": __name__})


TRAINERS = {"cd": CDTrainer, "pcd": PCDTrainer}


def get_trainer(name: str) -> type:
    """Resolve a trainer from its name (``cd``, ``pcd``, ``cd3``, ``pcd5``)."""

    key = name.lower()
    if key in TRAINERS:
        return TRAINERS[key]
    for prefix, factory in (("pcd", pcd_k), ("cd", cd_k)):
        if key.startswith(prefix) and key[len(prefix):].isdigit():
            return factory(int(key[len(prefix):]))
    available = ", ".join(sorted(TRAINERS))
    raise KeyError(f"Unknown trainer '{name}'. Available: {available}, cd<k>, pcd<k>")


__all__ = ["CDTrainer", "PCDTrainer", "TRAINERS", "cd_k", "get_trainer", "pcd_k"]
