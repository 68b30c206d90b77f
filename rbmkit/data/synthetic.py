"""Pure in-memory synthetic datasets for RBM experiments."""

from __future__ import annotations

import itertools
from typing import Any, Dict

import numpy as np

from ..core.types import Batch
from .registry import DataSpec, DatasetSpec, register_dataset
from .utils import deterministic_split, flip_bits


def bars_and_stripes(size: int) -> tuple[np.ndarray, np.ndarray]:
    """Every distinct bars-and-stripes image of ``size x size`` pixels.

    Returns images of shape ``(n, 1, size, size)`` and labels (0 for bars,
    1 for stripes).  The empty and the full image are labelled as bars.
    """

    if size < 1:
        raise ValueError("size must be at least 1")
    images = []
    labels = []
    for mask in itertools.product((0.0, 1.0), repeat=size):
        rows = np.asarray(mask)[:, None] * np.ones((1, size))
        images.append(rows)
        labels.append(0)
        if 0.0 < rows.mean() < 1.0:
            images.append(rows.T)
            labels.append(1)
    inputs = np.stack(images)[:, None, :, :]
    return inputs, np.asarray(labels, dtype=np.int64)


def _spec(
    name: str,
    inputs: np.ndarray,
    targets: np.ndarray,
    *,
    binary: bool,
    num_classes: int,
    provenance: Dict[str, Any],
    seed: int,
    test_split: float,
) -> DatasetSpec:
    splits = deterministic_split(inputs.shape[0], test_split=test_split, seed=seed)

    def loader(split: str) -> Batch:
        indices = getattr(splits, split)
        return Batch(inputs=inputs[indices], targets=targets[indices])

    return DatasetSpec(
        name=name,
        loader=loader,
        data_spec=DataSpec(
            shape=tuple(int(d) for d in inputs.shape[1:]),
            binary=binary,
            num_classes=num_classes,
        ),
        provenance=dict(provenance, type="synthetic", seed=seed, test_split=test_split),
        splits={k: int(v) for k, v in splits.sizes.items()},
    )


@register_dataset("bars_and_stripes")
def _bars_factory(
    size: int = 4,
    repeat: int = 8,
    noise: float = 0.0,
    seed: int = 0,
    test_split: float = 0.2,
    **_: object,
) -> DatasetSpec:
    images, labels = bars_and_stripes(int(size))
    inputs = np.tile(images, (int(repeat), 1, 1, 1))
    targets = np.tile(labels, int(repeat))
    inputs = flip_bits(inputs, float(noise), np.random.default_rng(seed))
    return _spec(
        "bars_and_stripes",
        inputs,
        targets,
        binary=True,
        num_classes=2,
        provenance={"size": size, "repeat": repeat, "noise": noise},
        seed=seed,
        test_split=test_split,
    )


@register_dataset("binary_prototypes")
def _prototypes_factory(
    n_features: int = 16,
    n_prototypes: int = 4,
    n_samples: int = 256,
    noise: float = 0.05,
    seed: int = 0,
    test_split: float = 0.2,
    **_: object,
) -> DatasetSpec:
    rng = np.random.default_rng(seed)
    prototypes = (rng.random((n_prototypes, n_features)) < 0.5).astype(np.float64)
    targets = rng.integers(0, n_prototypes, size=n_samples)
    inputs = flip_bits(prototypes[targets], float(noise), rng)
    return _spec(
        "binary_prototypes",
        inputs,
        targets,
        binary=True,
        num_classes=n_prototypes,
        provenance={
            "n_features": n_features,
            "n_prototypes": n_prototypes,
            "n_samples": n_samples,
            "noise": noise,
        },
        seed=seed,
        test_split=test_split,
    )


@register_dataset("gaussian_blobs")
def _blobs_factory(
    n_features: int = 8,
    n_centers: int = 3,
    n_samples: int = 256,
    scale: float = 0.3,
    seed: int = 0,
    test_split: float = 0.2,
    **_: object,
) -> DatasetSpec:
    rng = np.random.default_rng(seed)
    centers = rng.standard_normal((n_centers, n_features))
    targets = rng.integers(0, n_centers, size=n_samples)
    inputs = centers[targets] + scale * rng.standard_normal((n_samples, n_features))
    return _spec(
        "gaussian_blobs",
        inputs,
        targets,
        binary=False,
        num_classes=n_centers,
        provenance={
            "n_features": n_features,
            "n_centers": n_centers,
            "n_samples": n_samples,
            "scale": scale,
        },
        seed=seed,
        test_split=test_split,
    )


__all__ = ["bars_and_stripes"]
