"""RBM whose dimensions are only known at runtime."""

from __future__ import annotations

import numpy as np

from ..core.errors import DimensionTooSmall
from ..core.hyper import HyperParameters
from ..descriptors import LayerKind, ResolvedConfig
from .base import ContrastiveDivergence
from .rbm import RBM


class DynRBM(RBM):
    """Dense RBM sized by :meth:`init_layer` instead of by its descriptor.

    Until :meth:`init_layer` is called the layer holds no weights.
    """

    def __init__(
        self,
        config: ResolvedConfig,
        seed: int | None = None,
        hyper: HyperParameters | None = None,
    ) -> None:
        if config.kind is not LayerKind.DYN_RBM:
            raise TypeError(f"DynRBM requires a dynamic configuration, got {config.kind.value}")
        self.config = config
        self.hyper = hyper or HyperParameters()
        self.rng = np.random.default_rng(seed)
        self.batch_size = config.batch_size
        self.cd = ContrastiveDivergence(self)
        self.num_visible = 0
        self.num_hidden = 0
        self.params = None
        self.buffers = None

    @property
    def initialised(self) -> bool:
        return self.params is not None

    def init_layer(self, num_visible: int, num_hidden: int) -> None:
        if num_visible < 1:
            raise DimensionTooSmall("num_visible", num_visible)
        if num_hidden < 1:
            raise DimensionTooSmall("num_hidden", num_hidden)
        self._allocate(int(num_visible), int(num_hidden))

    def input_size(self) -> int:
        return self.num_visible

    def output_size(self) -> int:
        return self.num_hidden

    def parameter_count(self) -> int:
        return self.num_visible * self.num_hidden

    def to_short_string(self) -> str:
        return (
            f"RBM(dyn): {self.num_visible}({self.config.visible_unit.name}) -> "
            f"{self.num_hidden}({self.config.hidden_unit.name})"
        )


__all__ = ["DynRBM"]
