"""Helpers shared by the dataset factories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import numpy as np


@dataclass(frozen=True)
class SplitIndices:
    """Indices of the train and test partitions."""

    train: np.ndarray
    test: np.ndarray

    @property
    def sizes(self) -> Mapping[str, int]:
        return {"train": int(self.train.size), "test": int(self.test.size)}


def deterministic_split(n_samples: int, *, test_split: float = 0.2, seed: int = 0) -> SplitIndices:
    """Return reproducible train/test indices for ``n_samples`` samples."""

    if not 0 <= test_split < 1:
        raise ValueError("test_split must be in [0, 1)")
    indices = np.random.default_rng(seed).permutation(n_samples)
    test_size = int(round(n_samples * test_split))
    if test_split > 0:
        test_size = max(test_size, 1)
    if n_samples - test_size <= 0:
        raise ValueError("Not enough samples for the requested split")
    return SplitIndices(train=indices[test_size:], test=indices[:test_size])


def flip_bits(data: np.ndarray, probability: float, rng: np.random.Generator) -> np.ndarray:
    """Flip every binary value of ``data`` with ``probability``."""

    if not 0 <= probability <= 1:
        raise ValueError("probability must be in [0, 1]")
    if probability == 0:
        return data.copy()
    mask = rng.random(data.shape) < probability
    return np.where(mask, 1.0 - data, data).astype(data.dtype)


__all__ = ["SplitIndices", "deterministic_split", "flip_bits"]
