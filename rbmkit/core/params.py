"""Configuration tags accepted by the layer descriptors.

A configuration is an ordered sequence of :class:`Tag` values.  Each tag has
a :class:`TagKind` and either a scalar, an enumerator or a type reference as
its value.  Descriptors look tags up by kind with :func:`get_value` and
:func:`get_type`, falling back to the value carried by a default template
tag when the kind was not supplied.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Any, Iterable, Sequence

import numpy as np


class TagKind(Enum):
    BATCH_SIZE = "batch_size"
    VISIBLE = "visible"
    HIDDEN = "hidden"
    POOLING = "pooling"
    SPARSITY = "sparsity"
    BIAS = "bias"
    WEIGHT_DECAY = "weight_decay"
    WEIGHT_TYPE = "weight_type"
    TRAINER = "trainer"
    WATCHER = "watcher"
    MOMENTUM = "momentum"
    CLIP_GRADIENTS = "clip_gradients"
    PARALLEL_MODE = "parallel_mode"
    SERIAL = "serial"
    VERBOSE = "verbose"
    SHUFFLE = "shuffle"
    DBN_ONLY = "dbn_only"
    INIT_WEIGHTS = "init_weights"
    FREE_ENERGY = "free_energy"
    NOP = "nop"


class UnitType(Enum):
    """Activation and sampling semantics of a group of units."""

    BINARY = "binary"
    GAUSSIAN = "gaussian"
    SOFTMAX = "softmax"
    RELU = "relu"
    RELU1 = "relu1"
    RELU6 = "relu6"


class SparsityMethod(Enum):
    NONE = "none"
    GLOBAL_TARGET = "global_target"
    LOCAL_TARGET = "local_target"
    LEE = "lee"


class BiasMode(Enum):
    NONE = "none"
    SIMPLE = "simple"


class DecayType(Enum):
    NONE = "none"
    L1 = "l1"
    L2 = "l2"
    L1L2 = "l1l2"
    L1_FULL = "l1_full"
    L2_FULL = "l2_full"
    L1L2_FULL = "l1l2_full"


@dataclass(frozen=True)
class Tag:
    """A single configuration entry."""

    kind: TagKind
    value: Any = True

    def __repr__(self) -> str:
        if self.value is True:
            return f"{self.kind.value}()"
        value = self.value.name if isinstance(self.value, Enum) else self.value
        if isinstance(value, type):
            value = value.__name__
        return f"{self.kind.value}({value})"


FLAG_KINDS = frozenset(
    {
        TagKind.MOMENTUM,
        TagKind.CLIP_GRADIENTS,
        TagKind.PARALLEL_MODE,
        TagKind.SERIAL,
        TagKind.VERBOSE,
        TagKind.SHUFFLE,
        TagKind.DBN_ONLY,
        TagKind.INIT_WEIGHTS,
        TagKind.FREE_ENERGY,
    }
)


# Tag constructors ---------------------------------------------------------


def batch_size(size: int) -> Tag:
    return Tag(TagKind.BATCH_SIZE, operator.index(size))


def visible(unit: UnitType) -> Tag:
    return Tag(TagKind.VISIBLE, UnitType(unit))


def hidden(unit: UnitType) -> Tag:
    return Tag(TagKind.HIDDEN, UnitType(unit))


def pooling(unit: UnitType) -> Tag:
    return Tag(TagKind.POOLING, UnitType(unit))


def sparsity(method: SparsityMethod = SparsityMethod.GLOBAL_TARGET) -> Tag:
    return Tag(TagKind.SPARSITY, SparsityMethod(method))


def bias(mode: BiasMode) -> Tag:
    return Tag(TagKind.BIAS, BiasMode(mode))


def weight_decay(decay: DecayType = DecayType.L2) -> Tag:
    return Tag(TagKind.WEIGHT_DECAY, DecayType(decay))


def weight_type(dtype: Any) -> Tag:
    return Tag(TagKind.WEIGHT_TYPE, np.dtype(dtype).type)


def trainer(trainer_type: type) -> Tag:
    return Tag(TagKind.TRAINER, trainer_type)


def watcher(watcher_type: type) -> Tag:
    return Tag(TagKind.WATCHER, watcher_type)


def momentum() -> Tag:
    return Tag(TagKind.MOMENTUM)


def clip_gradients() -> Tag:
    return Tag(TagKind.CLIP_GRADIENTS)


def parallel_mode() -> Tag:
    return Tag(TagKind.PARALLEL_MODE)


def serial() -> Tag:
    return Tag(TagKind.SERIAL)


def verbose() -> Tag:
    return Tag(TagKind.VERBOSE)


def shuffle() -> Tag:
    return Tag(TagKind.SHUFFLE)


def dbn_only() -> Tag:
    return Tag(TagKind.DBN_ONLY)


def init_weights() -> Tag:
    return Tag(TagKind.INIT_WEIGHTS)


def free_energy() -> Tag:
    return Tag(TagKind.FREE_ENERGY)


def nop() -> Tag:
    return Tag(TagKind.NOP)


# Lookup -------------------------------------------------------------------


def get_value(default: Tag, tags: Iterable[Tag]) -> Any:
    """Return the value of the tag of ``default.kind`` in ``tags``.

    ``default`` is a template carrying the documented default value, which is
    returned when no tag of that kind is present.
    """

    for tag in tags:
        if tag.kind is default.kind:
            return tag.value
    return default.value


def get_type(default: Tag, tags: Iterable[Tag]) -> type:
    """Like :func:`get_value` for tags holding a type reference."""

    value = get_value(default, tags)
    if not isinstance(value, type):
        raise TypeError(f"Tag {default.kind.value} must hold a type, got {value!r}")
    return value


def contains(kind: TagKind, tags: Iterable[Tag]) -> bool:
    return any(tag.kind is kind for tag in tags)


def find_illegal(tags: Iterable[Tag], allowed: AbstractSet[TagKind]) -> TagKind | None:
    """Return the first tag kind of ``tags`` that is not in ``allowed``."""

    for tag in tags:
        if tag.kind is TagKind.NOP:
            continue
        if tag.kind not in allowed:
            return tag.kind
    return None


def find_duplicate(tags: Sequence[Tag]) -> TagKind | None:
    seen: set[TagKind] = set()
    for tag in tags:
        if tag.kind is TagKind.NOP:
            continue
        if tag.kind in seen:
            return tag.kind
        seen.add(tag.kind)
    return None


def is_valid(tags: Sequence[Tag], allowed: AbstractSet[TagKind]) -> bool:
    return find_illegal(tags, allowed) is None and find_duplicate(tags) is None


__all__ = [
    "BiasMode",
    "DecayType",
    "FLAG_KINDS",
    "SparsityMethod",
    "Tag",
    "TagKind",
    "UnitType",
    "batch_size",
    "bias",
    "clip_gradients",
    "contains",
    "dbn_only",
    "find_duplicate",
    "find_illegal",
    "free_energy",
    "get_type",
    "get_value",
    "hidden",
    "init_weights",
    "is_valid",
    "momentum",
    "nop",
    "parallel_mode",
    "pooling",
    "serial",
    "shuffle",
    "sparsity",
    "trainer",
    "verbose",
    "visible",
    "watcher",
    "weight_decay",
    "weight_type",
]
