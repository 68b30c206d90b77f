"""Configuration errors raised while resolving layer descriptors."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A layer configuration was rejected; no layer is produced."""


class UnknownParameter(ConfigurationError):
    """A tag kind outside the allowed set of the layer kind was supplied."""

    def __init__(self, kind, layer_kind: str) -> None:
        self.kind = kind
        self.layer_kind = layer_kind
        super().__init__(f"Parameter {kind.name} is not valid for {layer_kind} layers")


class DuplicateParameter(ConfigurationError):
    """The same tag kind appears more than once in a configuration list."""

    def __init__(self, kind) -> None:
        self.kind = kind
        super().__init__(f"Parameter {kind.name} was given more than once")


class DimensionTooSmall(ConfigurationError):
    """A structural dimension is lower than one."""

    def __init__(self, name: str, value: int) -> None:
        self.name = name
        self.value = value
        super().__init__(f"Dimension {name} must be at least 1, got {value}")


class FilterLargerThanInput(ConfigurationError):
    """A hidden extent exceeds the matching visible extent."""

    def __init__(self, visible: int, hidden: int, axis: int) -> None:
        self.visible = visible
        self.hidden = hidden
        self.axis = axis
        super().__init__(
            f"The convolutional filter must be of at least size 1 "
            f"(axis {axis}: visible={visible}, hidden={hidden})"
        )


class IncompatibleSparsity(ConfigurationError):
    """Sparsity was requested for non-binary hidden units."""

    def __init__(self, method, hidden_unit) -> None:
        self.method = method
        self.hidden_unit = hidden_unit
        super().__init__(
            f"Sparsity {method.name} only works with binary hidden units, "
            f"got {hidden_unit.name}"
        )


class InvalidBatchSize(ConfigurationError):
    """The batch size is lower than one."""

    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"Batch size must be at least 1, got {value}")


class InvalidPoolingRatio(ConfigurationError):
    """A hidden extent is not a multiple of the pooling ratio."""

    def __init__(self, extent: int, ratio: int) -> None:
        self.extent = extent
        self.ratio = ratio
        super().__init__(f"Hidden extent {extent} is not divisible by pooling ratio {ratio}")


class UnsupportedActivationKind(ConfigurationError):
    """The hidden unit kind has no derivative usable for backpropagation."""

    def __init__(self, unit) -> None:
        self.unit = unit
        super().__init__(
            f"Only RBM with binary, softmax or RELU hidden units support fine-tuning, "
            f"got {unit.name}"
        )


__all__ = [
    "ConfigurationError",
    "DimensionTooSmall",
    "DuplicateParameter",
    "FilterLargerThanInput",
    "IncompatibleSparsity",
    "InvalidBatchSize",
    "InvalidPoolingRatio",
    "UnknownParameter",
    "UnsupportedActivationKind",
]
