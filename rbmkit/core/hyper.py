"""Runtime hyper-parameters of RBM layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Dict, Mapping


@dataclass
class HyperParameters:
    """Learning rates and penalty weights read by the trainers.

    Unlike the resolved configuration these may change between runs, so they
    live on the layer instance rather than in its descriptor.
    """

    learning_rate: float = 1e-1
    initial_momentum: float = 0.5
    final_momentum: float = 0.9
    final_momentum_epoch: int = 6
    l1_weight_cost: float = 0.0002
    l2_weight_cost: float = 0.0002
    sparsity_target: float = 0.01
    decay_rate: float = 0.99
    sparsity_cost: float = 1.0
    pbias: float = 0.002
    pbias_lambda: float = 5.0
    gradient_clip: float = 5.0

    def momentum_at(self, epoch: int) -> float:
        if epoch >= self.final_momentum_epoch:
            return self.final_momentum
        return self.initial_momentum

    def update(self, values: Mapping[str, object]) -> None:
        known = {f.name: f.type for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                available = ", ".join(sorted(known))
                raise KeyError(f"Unknown hyper-parameter {key!r}. Available: {available}")
            current = getattr(self, key)
            setattr(self, key, type(current)(value))

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "HyperParameters":
        hyper = cls()
        hyper.update(values)
        return hyper

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


__all__ = ["HyperParameters"]
