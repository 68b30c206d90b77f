import numpy as np
import pytest

from rbmkit.core import params as p
from rbmkit.core.params import SparsityMethod, TagKind, UnitType
from rbmkit.training.trainers import CDTrainer, PCDTrainer


def test_get_value_returns_supplied_value_or_default():
    tags = [p.batch_size(25), p.hidden(UnitType.RELU)]
    assert p.get_value(p.batch_size(1), tags) == 25
    assert p.get_value(p.hidden(UnitType.BINARY), tags) is UnitType.RELU
    assert p.get_value(p.visible(UnitType.BINARY), tags) is UnitType.BINARY


def test_get_type_defaults_without_error():
    assert p.get_type(p.trainer(CDTrainer), []) is CDTrainer
    assert p.get_type(p.trainer(CDTrainer), [p.trainer(PCDTrainer)]) is PCDTrainer
    assert p.get_type(p.weight_type("float64"), [p.weight_type(np.float32)]) is np.float32


def test_find_illegal_names_the_offending_kind():
    allowed = {TagKind.BATCH_SIZE, TagKind.MOMENTUM}
    tags = [p.batch_size(2), p.nop(), p.pooling(UnitType.BINARY), p.momentum()]
    assert p.find_illegal(tags, allowed) is TagKind.POOLING
    assert p.find_illegal([p.nop(), p.momentum()], allowed) is None


def test_find_duplicate_ignores_nop():
    assert p.find_duplicate([p.nop(), p.nop(), p.momentum()]) is None
    assert p.find_duplicate([p.momentum(), p.shuffle(), p.momentum()]) is TagKind.MOMENTUM
    assert not p.is_valid([p.momentum(), p.momentum()], {TagKind.MOMENTUM})


def test_flag_tags_and_repr():
    assert p.contains(TagKind.SHUFFLE, [p.shuffle()])
    assert not p.contains(TagKind.SHUFFLE, [p.momentum()])
    assert repr(p.momentum()) == "momentum()"
    assert repr(p.sparsity()) == "sparsity(GLOBAL_TARGET)"
    assert p.sparsity().value is SparsityMethod.GLOBAL_TARGET


def test_tags_are_immutable():
    tag = p.batch_size(3)
    with pytest.raises(AttributeError):
        tag.value = 4  # type: ignore[misc]
