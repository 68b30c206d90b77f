"""Layer descriptors: validate configuration tags and resolve defaults.

A descriptor takes the structural dimensions of a layer and an ordered list
of :class:`~rbmkit.core.params.Tag` values.  It rejects the configuration
with a :class:`~rbmkit.core.errors.ConfigurationError` as soon as it is
built, so a broken configuration never reaches layer construction.  The
outcome of a successful resolution is a frozen :class:`ResolvedConfig`.
"""

from __future__ import annotations

import hashlib
import json
import operator
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Sequence, Tuple

import numpy as np

from .core import params as p
from .core.errors import (
    ConfigurationError,
    DimensionTooSmall,
    DuplicateParameter,
    FilterLargerThanInput,
    IncompatibleSparsity,
    InvalidBatchSize,
    InvalidPoolingRatio,
    UnknownParameter,
)
from .core.params import BiasMode, DecayType, SparsityMethod, Tag, TagKind, UnitType
from .training.trainers import CDTrainer
from .training.watchers import NullWatcher


class LayerKind(Enum):
    RBM = "rbm"
    DYN_RBM = "dyn_rbm"
    CONV_RBM = "conv_rbm"
    CONV_RBM_MP = "conv_rbm_mp"


DIMENSION_NAMES: Mapping[LayerKind, Tuple[str, ...]] = {
    LayerKind.RBM: ("num_visible", "num_hidden"),
    LayerKind.DYN_RBM: (),
    LayerKind.CONV_RBM: ("nc", "nv1", "nv2", "k", "nh1", "nh2"),
    LayerKind.CONV_RBM_MP: ("nc", "nv1", "nv2", "k", "nh1", "nh2", "pool"),
}

_DENSE_TAGS = frozenset(
    {
        TagKind.MOMENTUM,
        TagKind.BATCH_SIZE,
        TagKind.VISIBLE,
        TagKind.HIDDEN,
        TagKind.DBN_ONLY,
        TagKind.WEIGHT_DECAY,
        TagKind.SPARSITY,
        TagKind.TRAINER,
        TagKind.WATCHER,
        TagKind.INIT_WEIGHTS,
        TagKind.FREE_ENERGY,
        TagKind.SHUFFLE,
        TagKind.PARALLEL_MODE,
        TagKind.SERIAL,
        TagKind.VERBOSE,
        TagKind.WEIGHT_TYPE,
        TagKind.CLIP_GRADIENTS,
        TagKind.NOP,
    }
)

_CONV_TAGS = frozenset(
    {
        TagKind.MOMENTUM,
        TagKind.BATCH_SIZE,
        TagKind.VISIBLE,
        TagKind.HIDDEN,
        TagKind.DBN_ONLY,
        TagKind.WEIGHT_DECAY,
        TagKind.SPARSITY,
        TagKind.TRAINER,
        TagKind.WATCHER,
        TagKind.BIAS,
        TagKind.WEIGHT_TYPE,
        TagKind.SHUFFLE,
        TagKind.PARALLEL_MODE,
        TagKind.SERIAL,
        TagKind.VERBOSE,
        TagKind.NOP,
    }
)

ALLOWED_TAGS: Mapping[LayerKind, FrozenSet[TagKind]] = {
    LayerKind.RBM: _DENSE_TAGS,
    LayerKind.DYN_RBM: _DENSE_TAGS,
    LayerKind.CONV_RBM: _CONV_TAGS,
    LayerKind.CONV_RBM_MP: _CONV_TAGS | {TagKind.POOLING},
}


@dataclass(frozen=True)
class ResolvedConfig:
    """Fully resolved configuration of one layer kind."""

    kind: LayerKind
    dimensions: Tuple[int, ...]
    batch_size: int = 1
    visible_unit: UnitType = UnitType.BINARY
    hidden_unit: UnitType = UnitType.BINARY
    pooling_unit: UnitType = UnitType.BINARY
    sparsity: SparsityMethod = SparsityMethod.NONE
    bias: BiasMode = BiasMode.SIMPLE
    decay: DecayType = DecayType.NONE
    weight: type = np.float64
    trainer: type = CDTrainer
    watcher: type = NullWatcher
    momentum: bool = False
    clip_gradients: bool = False
    parallel_mode: bool = False
    serial: bool = False
    verbose: bool = False
    shuffle: bool = False
    dbn_only: bool = False
    init_weights: bool = False
    free_energy: bool = False

    def __getattr__(self, name: str) -> int:
        # Structural dimensions are exposed by name (num_visible, nv1, ...).
        names = DIMENSION_NAMES.get(self.__dict__.get("kind"), ())
        if name in names:
            return self.dimensions[names.index(name)]
        raise AttributeError(name)

    @property
    def has_sparsity(self) -> bool:
        return self.sparsity is not SparsityMethod.NONE

    @property
    def is_parallel(self) -> bool:
        return self.parallel_mode and not self.serial

    @property
    def is_dynamic(self) -> bool:
        return self.kind is LayerKind.DYN_RBM

    @property
    def is_conv(self) -> bool:
        return self.kind in (LayerKind.CONV_RBM, LayerKind.CONV_RBM_MP)

    @property
    def filter_shape(self) -> Tuple[int, int]:
        return (self.nv1 - self.nh1 + 1, self.nv2 - self.nh2 + 1)

    def input_size(self) -> int:
        if self.kind is LayerKind.RBM:
            return self.num_visible
        if self.is_conv:
            return self.nc * self.nv1 * self.nv2
        raise TypeError("Dynamic layers only know their size once initialised")

    def output_size(self) -> int:
        if self.kind is LayerKind.RBM:
            return self.num_hidden
        if self.kind is LayerKind.CONV_RBM:
            return self.k * self.nh1 * self.nh2
        if self.kind is LayerKind.CONV_RBM_MP:
            return self.k * (self.nh1 // self.pool) * (self.nh2 // self.pool)
        raise TypeError("Dynamic layers only know their size once initialised")

    def parameter_count(self) -> int:
        if self.kind is LayerKind.RBM:
            return self.num_visible * self.num_hidden
        if self.is_conv:
            nw1, nw2 = self.filter_shape
            return self.nc * self.k * nw1 * nw2
        raise TypeError("Dynamic layers only know their size once initialised")

    def to_short_string(self) -> str:
        vis, hid = self.visible_unit.name, self.hidden_unit.name
        if self.kind is LayerKind.RBM:
            return f"RBM: {self.num_visible}({vis}) -> {self.num_hidden}({hid})"
        if self.kind is LayerKind.DYN_RBM:
            return f"RBM(dyn): ({vis}) -> ({hid})"
        head = "CRBM" if self.kind is LayerKind.CONV_RBM else "CRBM_MP"
        text = (
            f"{head}: {self.nc}x{self.nv1}x{self.nv2}({vis}) -> "
            f"{self.k}x{self.nh1}x{self.nh2}({hid})"
        )
        if self.kind is LayerKind.CONV_RBM_MP:
            text += f" -> {self.k}x{self.nh1 // self.pool}x{self.nh2 // self.pool}"
        return text

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: _normalise(getattr(self, f.name)) for f in fields(self)}

    def fingerprint(self) -> str:
        """Return a stable 12-character hash of this configuration."""

        canonical = json.dumps(self.as_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]


def _normalise(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, type):
        return f"{value.__module__}.{value.__qualname__}"
    if isinstance(value, tuple):
        return [_normalise(v) for v in value]
    return value


def resolve(
    kind: LayerKind | str, dimensions: Sequence[int], tags: Sequence[Tag]
) -> ResolvedConfig:
    """Validate ``tags`` for a layer of ``kind`` and resolve every default.

    Raises the :class:`ConfigurationError` subtype of the first violated
    constraint.  Resolution is pure: equal inputs give equal results.
    """

    kind = LayerKind(kind)
    names = DIMENSION_NAMES[kind]
    dims = tuple(dimensions)
    tags = tuple(tags)
    if len(dims) != len(names):
        raise ConfigurationError(
            f"{kind.value} layers take {len(names)} dimensions ({', '.join(names)}), "
            f"got {len(dims)}"
        )
    for tag in tags:
        if not isinstance(tag, Tag):
            raise TypeError(f"Configuration entries must be Tag values, got {tag!r}")

    illegal = p.find_illegal(tags, ALLOWED_TAGS[kind])
    if illegal is not None:
        raise UnknownParameter(illegal, kind.value)
    duplicate = p.find_duplicate(tags)
    if duplicate is not None:
        raise DuplicateParameter(duplicate)
    for tag in tags:
        _check_value(tag)

    config = ResolvedConfig(
        kind=kind,
        dimensions=tuple(operator.index(d) for d in dims),
        batch_size=operator.index(p.get_value(p.batch_size(1), tags)),
        visible_unit=p.get_value(p.visible(UnitType.BINARY), tags),
        hidden_unit=p.get_value(p.hidden(UnitType.BINARY), tags),
        pooling_unit=p.get_value(p.pooling(UnitType.BINARY), tags),
        sparsity=p.get_value(p.sparsity(SparsityMethod.NONE), tags),
        bias=p.get_value(p.bias(BiasMode.SIMPLE), tags),
        decay=p.get_value(p.weight_decay(DecayType.NONE), tags),
        weight=p.get_type(p.weight_type("float64"), tags),
        trainer=p.get_type(p.trainer(CDTrainer), tags),
        watcher=p.get_type(p.watcher(NullWatcher), tags),
        **{kind_.value: p.contains(kind_, tags) for kind_ in p.FLAG_KINDS},
    )
    _check_invariants(config, names)
    return config


_ENUM_VALUES: Mapping[TagKind, type] = {
    TagKind.VISIBLE: UnitType,
    TagKind.HIDDEN: UnitType,
    TagKind.POOLING: UnitType,
    TagKind.SPARSITY: SparsityMethod,
    TagKind.BIAS: BiasMode,
    TagKind.WEIGHT_DECAY: DecayType,
}


def _check_value(tag: Tag) -> None:
    """Reject a tag whose value does not have the type of its kind."""

    kind, value = tag.kind, tag.value
    if kind is TagKind.BATCH_SIZE:
        valid = isinstance(value, (int, np.integer)) and not isinstance(value, bool)
    elif kind in _ENUM_VALUES:
        valid = isinstance(value, _ENUM_VALUES[kind])
    elif kind in (TagKind.WEIGHT_TYPE, TagKind.TRAINER, TagKind.WATCHER):
        valid = isinstance(value, type)
    else:
        valid = value is True
    if not valid:
        raise TypeError(f"Tag {kind.value} cannot hold {value!r}")


def _check_invariants(config: ResolvedConfig, names: Sequence[str]) -> None:
    for name, value in zip(names, config.dimensions):
        if value < 1:
            raise DimensionTooSmall(name, value)
    if config.is_conv:
        if config.nv1 < config.nh1:
            raise FilterLargerThanInput(config.nv1, config.nh1, axis=0)
        if config.nv2 < config.nh2:
            raise FilterLargerThanInput(config.nv2, config.nh2, axis=1)
    if config.batch_size < 1:
        raise InvalidBatchSize(config.batch_size)
    if config.has_sparsity and config.hidden_unit is not UnitType.BINARY:
        raise IncompatibleSparsity(config.sparsity, config.hidden_unit)
    if config.kind is LayerKind.CONV_RBM_MP:
        for extent in (config.nh1, config.nh2):
            if extent % config.pool:
                raise InvalidPoolingRatio(extent, config.pool)


class _Descriptor:
    """Shared surface of the layer descriptors."""

    kind: LayerKind

    def __init__(self, dimensions: Sequence[int], tags: Sequence[Tag]) -> None:
        self.tags: Tuple[Tag, ...] = tuple(tags)
        self.config = resolve(self.kind, dimensions, self.tags)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Descriptor) and self.config == other.config

    def __hash__(self) -> int:
        return hash(self.config)

    def __repr__(self) -> str:
        args = [str(d) for d in self.config.dimensions] + [repr(t) for t in self.tags]
        return f"{type(self).__name__}({', '.join(args)})"

    def resolve(self) -> ResolvedConfig:
        return self.config

    def input_size(self) -> int:
        return self.config.input_size()

    def output_size(self) -> int:
        return self.config.output_size()

    def parameter_count(self) -> int:
        return self.config.parameter_count()

    def trainer_t(self, layer, **kwargs):
        return self.config.trainer(layer, **kwargs)

    def watcher_t(self, **kwargs):
        return self.config.watcher(**kwargs)


class RBMDesc(_Descriptor):
    """Describe a dense Restricted Boltzmann Machine."""

    kind = LayerKind.RBM

    def __init__(self, num_visible: int, num_hidden: int, *tags: Tag) -> None:
        super().__init__((num_visible, num_hidden), tags)

    def layer_t(self, seed: int | None = None, hyper=None):
        from .layers.rbm import RBM

        return RBM(self.config, seed=seed, hyper=hyper)


class DynRBMDesc(_Descriptor):
    """Describe a dense RBM whose dimensions are only known at runtime."""

    kind = LayerKind.DYN_RBM

    def __init__(self, *tags: Tag) -> None:
        super().__init__((), tags)

    def layer_t(self, seed: int | None = None, hyper=None):
        from .layers.dyn_rbm import DynRBM

        return DynRBM(self.config, seed=seed, hyper=hyper)


class ConvRBMDesc(_Descriptor):
    """Describe a convolutional RBM with ``k`` filters over ``nc`` channels."""

    kind = LayerKind.CONV_RBM

    def __init__(
        self, nc: int, nv1: int, nv2: int, k: int, nh1: int, nh2: int, *tags: Tag
    ) -> None:
        super().__init__((nc, nv1, nv2, k, nh1, nh2), tags)

    def layer_t(self, seed: int | None = None, hyper=None):
        from .layers.conv_rbm import ConvRBM

        return ConvRBM(self.config, seed=seed, hyper=hyper)


class ConvRBMMPDesc(_Descriptor):
    """Describe a convolutional RBM with probabilistic max pooling."""

    kind = LayerKind.CONV_RBM_MP

    def __init__(
        self,
        nc: int,
        nv1: int,
        nv2: int,
        k: int,
        nh1: int,
        nh2: int,
        pool: int,
        *tags: Tag,
    ) -> None:
        super().__init__((nc, nv1, nv2, k, nh1, nh2, pool), tags)

    def layer_t(self, seed: int | None = None, hyper=None):
        from .layers.conv_rbm import ConvRBMMP

        return ConvRBMMP(self.config, seed=seed, hyper=hyper)


def conv_rbm_square(nc: int, nv: int, k: int, nh: int, *tags: Tag) -> ConvRBMDesc:
    return ConvRBMDesc(nc, nv, nv, k, nh, nh, *tags)


def conv_rbm_mp_square(nc: int, nv: int, k: int, nh: int, pool: int, *tags: Tag) -> ConvRBMMPDesc:
    return ConvRBMMPDesc(nc, nv, nv, k, nh, nh, pool, *tags)


DESCRIPTORS: Mapping[LayerKind, type] = {
    LayerKind.RBM: RBMDesc,
    LayerKind.DYN_RBM: DynRBMDesc,
    LayerKind.CONV_RBM: ConvRBMDesc,
    LayerKind.CONV_RBM_MP: ConvRBMMPDesc,
}


__all__ = [
    "ALLOWED_TAGS",
    "ConvRBMDesc",
    "ConvRBMMPDesc",
    "DESCRIPTORS",
    "DynRBMDesc",
    "LayerKind",
    "RBMDesc",
    "ResolvedConfig",
    "conv_rbm_mp_square",
    "conv_rbm_square",
    "resolve",
]
