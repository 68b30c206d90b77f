import numpy as np
import pytest

from rbmkit.core import params as p
from rbmkit.core.errors import UnsupportedActivationKind
from rbmkit.core.params import UnitType
from rbmkit.descriptors import RBMDesc, conv_rbm_square
from rbmkit.training.contexts import cg_context, sgd_context
from rbmkit.training.trainer import SGDOptimizer


def test_sgd_context_shapes_follow_the_layer():
    layer = RBMDesc(6, 3, p.batch_size(5)).layer_t(seed=0)
    ctx = sgd_context(layer)
    assert ctx.w_grad.shape == (6, 3)
    assert ctx.b_inc.shape == (3,)
    assert ctx.input.shape == (5, 6)
    assert ctx.output.shape == (5, 3)
    assert ctx.errors.shape == (5, 3)
    assert ctx.batch_size == 5
    assert not ctx.w_inc.any()


def test_sgd_context_for_convolutional_layer():
    layer = conv_rbm_square(2, 6, 3, 4).layer_t(seed=0)
    ctx = sgd_context(layer, batch_size=2)
    assert ctx.w_grad.shape == layer.w.shape
    assert ctx.input.shape == (2, 2, 6, 6)
    assert ctx.output.shape == (2, 3, 4, 4)


@pytest.mark.parametrize("unit", [UnitType.BINARY, UnitType.RELU, UnitType.SOFTMAX])
def test_fine_tunable_hidden_units(unit):
    layer = RBMDesc(4, 2, p.hidden(unit)).layer_t(seed=0)
    sgd_context(layer)
    cg_context(layer)


@pytest.mark.parametrize("unit", [UnitType.GAUSSIAN, UnitType.RELU6])
def test_other_hidden_units_cannot_be_fine_tuned(unit):
    layer = RBMDesc(4, 2, p.hidden(unit)).layer_t(seed=0)
    with pytest.raises(UnsupportedActivationKind):
        sgd_context(layer)
    with pytest.raises(UnsupportedActivationKind):
        cg_context(layer)


def test_cg_context_reset_sizes_per_example_buffers():
    layer = RBMDesc(6, 3).layer_t(seed=0)
    ctx = cg_context(layer, n_samples=4)
    assert ctx.n_samples == 4
    assert ctx.w_df0.shape == (6, 3)
    assert ctx.probs_a[0].shape == (3,)
    ctx.w_s += 1.0
    ctx.reset(10)
    assert ctx.n_samples == 10
    assert not ctx.w_s.any()
    with pytest.raises(ValueError):
        ctx.reset(-1)


def test_sgd_fit_batch_reduces_the_loss():
    layer = RBMDesc(6, 2, p.batch_size(8)).layer_t(seed=0)
    ctx = sgd_context(layer)
    rng = np.random.default_rng(0)
    inputs = rng.integers(0, 2, size=(8, 6)).astype(float)
    targets = np.tile([1.0, 0.0], (8, 1))
    optimizer = SGDOptimizer(lr=0.5, momentum=0.5)
    first = optimizer.fit_batch(layer, ctx, inputs, targets)
    for _ in range(30):
        last = optimizer.fit_batch(layer, ctx, inputs, targets)
    assert last < first
    assert ctx.w_inc.any()


def test_sgd_step_moves_against_the_gradient():
    layer = RBMDesc(3, 2).layer_t(seed=0)
    ctx = sgd_context(layer, batch_size=2)
    ctx.w_grad = np.ones((3, 2))
    ctx.b_grad = np.ones(2)
    w0 = layer.w.copy()
    SGDOptimizer(lr=0.1).step(layer, ctx)
    assert np.allclose(layer.w, w0 - 0.05)
    assert np.allclose(layer.b, -0.05)
