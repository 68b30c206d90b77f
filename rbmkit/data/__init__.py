"""Dataset registry and loader helpers."""

# Built-in datasets register themselves on import.
from . import synthetic as _synthetic  # noqa: F401
from .registry import (
    DataSpec,
    DatasetSpec,
    available_datasets,
    get,
    get_dataset,
    iter_batches,
    register_dataset,
)

__all__ = [
    "DataSpec",
    "DatasetSpec",
    "available_datasets",
    "get",
    "get_dataset",
    "iter_batches",
    "register_dataset",
]
