"""Activation, derivative and sampling rules for RBM units."""

from __future__ import annotations

import numpy as np

from .params import UnitType
from .types import Array


def sigmoid(x: Array) -> Array:
    """Return the logistic sigmoid of ``x`` without overflow warnings."""

    return 0.5 * (1.0 + np.tanh(0.5 * x))


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def softmax(x: Array, axis: int = -1) -> Array:
    shifted = x - np.max(x, axis=axis, keepdims=True)
    e = np.exp(shifted)
    return e / np.sum(e, axis=axis, keepdims=True)


def softplus(x: Array) -> Array:
    return np.logaddexp(0.0, x)


def activate(unit: UnitType, x: Array, axis: int = -1) -> Array:
    """Mean activation of ``unit`` units given their total input ``x``."""

    if unit is UnitType.BINARY:
        return sigmoid(x)
    if unit is UnitType.GAUSSIAN:
        return x.copy()
    if unit is UnitType.SOFTMAX:
        return softmax(x, axis=axis)
    if unit is UnitType.RELU:
        return relu(x)
    if unit is UnitType.RELU1:
        return np.clip(x, 0.0, 1.0)
    if unit is UnitType.RELU6:
        return np.clip(x, 0.0, 6.0)
    raise ValueError(f"Unknown unit type: {unit}")


def sample(
    unit: UnitType,
    activation: Array,
    x: Array,
    rng: np.random.Generator,
    axis: int = -1,
) -> Array:
    """Draw a concrete state from the activation of ``unit`` units.

    ``x`` is the total input the activation was computed from; the noisy
    rectified units use it to scale their noise.
    """

    dtype = activation.dtype
    if unit is UnitType.BINARY:
        return (rng.random(activation.shape) < activation).astype(dtype)
    if unit is UnitType.GAUSSIAN:
        return (activation + rng.standard_normal(activation.shape)).astype(dtype)
    if unit is UnitType.SOFTMAX:
        return _sample_categorical(activation, rng, axis)
    if unit in (UnitType.RELU, UnitType.RELU1, UnitType.RELU6):
        noise = rng.standard_normal(x.shape) * np.sqrt(sigmoid(x))
        upper = {UnitType.RELU: None, UnitType.RELU1: 1.0, UnitType.RELU6: 6.0}[unit]
        return np.clip(x + noise, 0.0, upper).astype(dtype)
    raise ValueError(f"Unknown unit type: {unit}")


def _sample_categorical(probs: Array, rng: np.random.Generator, axis: int) -> Array:
    moved = np.moveaxis(probs, axis, -1)
    cumulative = np.cumsum(moved, axis=-1)
    draws = rng.random(moved.shape[:-1] + (1,))
    index = np.minimum((cumulative < draws).sum(axis=-1), moved.shape[-1] - 1)
    one_hot = np.zeros_like(moved)
    np.put_along_axis(one_hot, index[..., None], 1.0, axis=-1)
    return np.moveaxis(one_hot, -1, axis)


def derivative(unit: UnitType, output: Array) -> Array:
    """Derivative of the activation of ``unit`` expressed from its output.

    The softmax derivative is one: softmax outputs are paired with a
    cross-entropy error that already folds in the Jacobian.
    """

    if unit is UnitType.BINARY:
        return output * (1.0 - output)
    if unit is UnitType.RELU:
        return (output > 0.0).astype(output.dtype)
    if unit is UnitType.SOFTMAX:
        return np.ones_like(output)
    raise ValueError(f"No derivative available for {unit.name} units")


FINE_TUNE_UNITS = frozenset({UnitType.BINARY, UnitType.RELU, UnitType.SOFTMAX})


__all__ = [
    "FINE_TUNE_UNITS",
    "activate",
    "derivative",
    "relu",
    "sample",
    "sigmoid",
    "softmax",
    "softplus",
]
