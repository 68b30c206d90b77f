"""rbmkit public API."""

from .core import activations  # noqa: F401
from .core import params  # noqa: F401
from .core import types  # noqa: F401
from .core.errors import ConfigurationError
from .core.hyper import HyperParameters
from .descriptors import ConvRBMDesc, ConvRBMMPDesc, DynRBMDesc, RBMDesc, resolve
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import RBMTrainer, SGDOptimizer

__all__ = [
    "ConfigurationError",
    "ConvRBMDesc",
    "ConvRBMMPDesc",
    "DynRBMDesc",
    "HyperParameters",
    "RBMDesc",
    "RBMTrainer",
    "SGDOptimizer",
    "activations",
    "load_preset",
    "params",
    "presets",
    "resolve",
    "run_pipeline",
    "types",
]
