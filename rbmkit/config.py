"""Build descriptors from plain mappings (JSON/YAML configuration files).

A layer section looks like::

    layer:
      kind: rbm
      num_visible: 16
      num_hidden: 8
      batch_size: 10
      hidden: binary
      sparsity: global_target
      momentum: true
      trainer: pcd

Enumerations are given by name, flags by booleans (``false`` omits the tag),
``trainer`` and ``watcher`` by their registry names.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from .core import params as p
from .core.params import BiasMode, DecayType, SparsityMethod, Tag, TagKind, UnitType
from .descriptors import DESCRIPTORS, DIMENSION_NAMES, LayerKind
from .training.trainers import get_trainer
from .training.watchers import get_watcher

_STRUCTURAL_KEYS = {"kind", "dimensions"}


def _enum(enum_type) -> Callable[[Any], Any]:
    def parse(value: Any):
        if isinstance(value, enum_type):
            return value
        text = str(value)
        try:
            return enum_type[text.upper()]
        except KeyError:
            available = ", ".join(member.name.lower() for member in enum_type)
            raise ValueError(f"Unknown {enum_type.__name__} '{value}'. Available: {available}") from None

    return parse


_PARSERS: Dict[TagKind, Callable[[Any], Tag]] = {
    TagKind.BATCH_SIZE: lambda v: p.batch_size(int(v)),
    TagKind.VISIBLE: lambda v: p.visible(_enum(UnitType)(v)),
    TagKind.HIDDEN: lambda v: p.hidden(_enum(UnitType)(v)),
    TagKind.POOLING: lambda v: p.pooling(_enum(UnitType)(v)),
    TagKind.SPARSITY: lambda v: p.sparsity(_enum(SparsityMethod)(v)),
    TagKind.BIAS: lambda v: p.bias(_enum(BiasMode)(v)),
    TagKind.WEIGHT_DECAY: lambda v: p.weight_decay(_enum(DecayType)(v)),
    TagKind.WEIGHT_TYPE: p.weight_type,
    TagKind.TRAINER: lambda v: p.trainer(v if isinstance(v, type) else get_trainer(str(v))),
    TagKind.WATCHER: lambda v: p.watcher(v if isinstance(v, type) else get_watcher(str(v))),
}


def tags_from_mapping(layer: Mapping[str, Any]) -> List[Tag]:
    """Translate a ``layer`` configuration section into an ordered tag list.

    Keys are tag kinds; structural dimensions and ``kind`` are skipped.
    Whether a tag is legal for the layer kind is left to the descriptor.
    """

    kind = LayerKind(layer.get("kind", LayerKind.RBM.value))
    skip = _STRUCTURAL_KEYS | set(DIMENSION_NAMES[kind])
    if kind is LayerKind.DYN_RBM:
        # sized at runtime through init_layer
        skip |= set(DIMENSION_NAMES[LayerKind.RBM])
    tags: List[Tag] = []
    for key, value in layer.items():
        if key in skip:
            continue
        try:
            tag_kind = TagKind(key)
        except ValueError:
            available = ", ".join(sorted(k.value for k in TagKind))
            raise KeyError(f"Unknown layer option '{key}'. Available: {available}") from None
        if tag_kind in p.FLAG_KINDS or tag_kind is TagKind.NOP:
            if value:
                tags.append(Tag(tag_kind))
            continue
        tags.append(_PARSERS[tag_kind](value))
    return tags


def dimensions_from_mapping(layer: Mapping[str, Any]) -> List[int]:
    kind = LayerKind(layer.get("kind", LayerKind.RBM.value))
    if "dimensions" in layer:
        return [int(d) for d in layer["dimensions"]]
    names = DIMENSION_NAMES[kind]
    missing = [name for name in names if name not in layer]
    if missing:
        raise KeyError(f"{kind.value} layer is missing dimensions: {', '.join(missing)}")
    return [int(layer[name]) for name in names]


def descriptor_from_mapping(layer: Mapping[str, Any]):
    """Build the descriptor of ``layer``; configuration errors surface here."""

    kind = LayerKind(layer.get("kind", LayerKind.RBM.value))
    dims = dimensions_from_mapping(layer)
    return DESCRIPTORS[kind](*dims, *tags_from_mapping(layer))


def read_config_file(path: str | Path) -> Mapping[str, Any]:
    """Load a JSON or YAML configuration file into a mapping."""

    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load configuration files in YAML format") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported configuration file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration {path.name} must decode to a mapping")
    return data


def _normalise(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


def config_hash(config: Mapping[str, Any]) -> str:
    """Return a stable 12-character hash for ``config``."""

    canonical = json.dumps(_normalise(config), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]


__all__ = [
    "config_hash",
    "descriptor_from_mapping",
    "dimensions_from_mapping",
    "read_config_file",
    "tags_from_mapping",
]
