"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, MutableMapping, Tuple

import numpy as np

from ..core.types import Batch

SPLITS = ("train", "test")


@dataclass(frozen=True)
class DataSpec:
    """Structural information about a dataset.

    Attributes
    ----------
    shape:
        Shape of one sample, ``(n,)`` for vectors or ``(channels, h, w)``
        for images.
    binary:
        Whether every input value is 0 or 1.
    num_classes:
        Number of label classes, when the samples carry labels.
    extra:
        Free-form metadata that future layers might find useful.
    """

    shape: Tuple[int, ...]
    binary: bool = True
    num_classes: int | None = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))


@dataclass(frozen=True)
class DatasetSpec:
    """Description of a dataset registered in the system."""

    name: str
    loader: Callable[[str], Batch]
    data_spec: DataSpec
    provenance: Dict[str, Any]
    splits: Dict[str, int]

    def split(self, split: str) -> Batch:
        """Return the whole ``split`` as a single :class:`Batch`."""

        if split not in self.splits:
            raise ValueError(f"Unsupported split: {split}")
        return self.loader(split)

    def iter_split(self, split: str, batch_size: int, *, seed: int | None = None) -> Iterator[Batch]:
        return iter_batches(self.split(split), batch_size, seed=seed)


DatasetFactory = Callable[..., DatasetSpec]


_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory, directly or as a decorator::

        @register_dataset("bars_and_stripes")
        def make_bars(**options):
            ...
    """

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    if name is None:
        raise TypeError("register_dataset requires a name when used without a decorator")
    return _decorator


def get_dataset(dataset: str | None = None, /, **options: Any) -> DatasetSpec:
    """Return the :class:`DatasetSpec` for ``dataset``."""

    if dataset is None:
        if "name" in options:
            dataset = str(options.pop("name"))
        else:
            raise TypeError("Dataset name must be provided")

    if dataset not in _REGISTRY:
        available = ", ".join(available_datasets())
        raise KeyError(f"Unknown dataset: {dataset}. Available: {available}")

    spec = _REGISTRY[dataset](**options)
    _validate_spec(spec)
    return spec


get = get_dataset


def available_datasets() -> Iterable[str]:
    return sorted(_REGISTRY)


def _validate_spec(spec: DatasetSpec) -> None:
    if not spec.data_spec.shape or min(spec.data_spec.shape) < 1:
        raise ValueError(f"Invalid sample shape: {spec.data_spec.shape}")
    if not isinstance(spec.splits, dict):
        raise TypeError("DatasetSpec.splits must be a mapping")
    for split, count in spec.splits.items():
        if count < 0:
            raise ValueError(f"Split {split!r} has negative sample count {count}")
    if spec.splits.get("train", 0) == 0:
        raise ValueError(f"Dataset {spec.name} has no training samples")


def iter_batches(data: Batch, batch_size: int, *, seed: int | None = None) -> Iterator[Batch]:
    """Yield consecutive batches of ``data``, permuted first when seeded."""

    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    n = data.inputs.shape[0]
    order = np.random.default_rng(seed).permutation(n) if seed is not None else np.arange(n)
    for lo in range(0, n, batch_size):
        index = order[lo : lo + batch_size]
        targets = data.targets[index] if data.targets is not None else None
        yield Batch(inputs=data.inputs[index], targets=targets)


__all__ = [
    "Batch",
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get",
    "get_dataset",
    "iter_batches",
    "register_dataset",
]
