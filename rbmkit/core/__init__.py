"""Core numerical primitives and configuration tags for rbmkit."""

from . import activations, errors, hyper, params, types

__all__ = ["activations", "errors", "hyper", "params", "types"]
