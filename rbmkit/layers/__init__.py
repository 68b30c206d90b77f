"""Runtime RBM layers built from resolved descriptors."""

from .base import CDState, ContrastiveDivergence, ParameterStore, ReconstructionBuffers
from .conv_rbm import ConvRBM, ConvRBMMP
from .dyn_rbm import DynRBM
from .rbm import RBM

__all__ = [
    "CDState",
    "ContrastiveDivergence",
    "ConvRBM",
    "ConvRBMMP",
    "DynRBM",
    "ParameterStore",
    "RBM",
    "ReconstructionBuffers",
]
