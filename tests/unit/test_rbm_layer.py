import numpy as np
import pytest

from rbmkit.core import params as p
from rbmkit.core.errors import DimensionTooSmall
from rbmkit.core.params import UnitType
from rbmkit.descriptors import DynRBMDesc, RBMDesc
from rbmkit.layers import CDState, DynRBM, RBM


def test_shapes_follow_the_descriptor():
    layer = RBMDesc(12, 5, p.batch_size(4)).layer_t(seed=0)
    assert isinstance(layer, RBM)
    assert layer.w.shape == (12, 5)
    assert layer.b.shape == (5,)
    assert layer.c.shape == (12,)
    assert layer.input_size() == 12
    assert layer.output_size() == 5
    assert layer.parameter_count() == 60
    assert layer.prepare_input().shape == (12,)
    assert np.all(layer.b == 0) and np.all(layer.c == 0)
    assert layer.buffers.v1.shape == (4, 12)
    assert layer.buffers.h2_s.shape == (4, 5)


def test_weight_type_sets_dtype():
    layer = RBMDesc(6, 3, p.weight_type(np.float32)).layer_t(seed=0)
    assert layer.w.dtype == np.float32
    assert layer.forward_batch(np.ones((2, 6))).dtype == np.float32


def test_dbn_only_layers_have_no_buffers():
    layer = RBMDesc(6, 3, p.dbn_only()).layer_t(seed=0)
    assert layer.buffers is None
    stats = layer.cd.step(np.ones((2, 6)), np.random.default_rng(0))
    layer.cd.finish()
    assert stats.w_grad.shape == (6, 3)


def test_same_seed_gives_same_weights():
    desc = RBMDesc(8, 4)
    assert np.array_equal(desc.layer_t(seed=3).w, desc.layer_t(seed=3).w)
    assert not np.array_equal(desc.layer_t(seed=3).w, desc.layer_t(seed=4).w)


def test_activation_probabilities_and_states():
    layer = RBMDesc(6, 4).layer_t(seed=1)
    v = np.random.default_rng(0).integers(0, 2, size=(5, 6)).astype(float)
    h_a, h_s = layer.activate_hidden(v)
    assert h_a.shape == (5, 4)
    assert np.all((h_a > 0) & (h_a < 1))
    assert set(np.unique(h_s)) <= {0.0, 1.0}
    v_a, missing = layer.activate_visible(h_a, sample_state=False)
    assert v_a.shape == (5, 6)
    assert missing is None


def test_softmax_hidden_activations_sum_to_one():
    layer = RBMDesc(6, 4, p.hidden(UnitType.SOFTMAX)).layer_t(seed=1)
    h_a, h_s = layer.activate_hidden(np.ones((3, 6)))
    assert np.allclose(h_a.sum(axis=1), 1.0)
    assert np.array_equal(h_s.sum(axis=1), np.ones(3))


def test_degenerate_cd_step_gives_zero_gradients():
    layer = RBMDesc(5, 3, p.visible(UnitType.GAUSSIAN)).layer_t(seed=0)
    layer.w = np.zeros_like(layer.w)
    stats = layer.cd.step(np.zeros((4, 5)), np.random.default_rng(0))
    layer.cd.finish()
    assert np.allclose(stats.w_grad, 0.0)
    assert np.allclose(stats.b_grad, 0.0)
    assert np.allclose(stats.c_grad, 0.0)
    assert stats.reconstruction_error == pytest.approx(0.0)


def test_cd_step_walks_the_state_machine():
    layer = RBMDesc(6, 3, p.batch_size(2)).layer_t(seed=0)
    assert layer.cd.state is CDState.IDLE
    layer.cd.step(np.ones((2, 6)), np.random.default_rng(0))
    assert layer.cd.trace == [
        CDState.VISIBLE_SAMPLED,
        CDState.HIDDEN_SAMPLED,
        CDState.VISIBLE_RECONSTRUCTED,
        CDState.HIDDEN_RESAMPLED,
        CDState.GRADIENT_COMPUTED,
    ]
    assert layer.cd.state is CDState.GRADIENT_COMPUTED
    layer.cd.finish()
    assert layer.cd.state is CDState.IDLE


def test_cd_step_fills_reconstruction_buffers():
    layer = RBMDesc(6, 3, p.batch_size(2)).layer_t(seed=0)
    v = np.ones((2, 6))
    stats = layer.cd.step(v, np.random.default_rng(0))
    layer.cd.finish()
    assert np.array_equal(layer.buffers.v1, v)
    h_a, _ = layer.activate_hidden(v, sample_state=False)
    assert np.allclose(layer.buffers.h1_a, h_a)
    assert np.allclose(stats.h1_mean, h_a.mean(axis=0))


def test_buffers_grow_for_larger_batches():
    layer = RBMDesc(6, 3, p.batch_size(2)).layer_t(seed=0)
    layer.cd.step(np.ones((5, 6)), np.random.default_rng(0))
    layer.cd.finish()
    assert layer.buffers.rows == 5


def test_cd_rejects_invalid_k_and_reentry():
    layer = RBMDesc(6, 3).layer_t(seed=0)
    with pytest.raises(ValueError):
        layer.cd.step(np.ones((1, 6)), np.random.default_rng(0), k=0)
    layer.cd.state = CDState.HIDDEN_SAMPLED
    with pytest.raises(RuntimeError):
        layer.cd.step(np.ones((1, 6)), np.random.default_rng(0))


def test_parallel_step_reduces_over_disjoint_ranges():
    layer = RBMDesc(6, 3, p.batch_size(8)).layer_t(seed=0)
    layer.w = np.zeros_like(layer.w)
    layer.c = np.zeros_like(layer.c)
    v = np.random.default_rng(1).integers(0, 2, size=(8, 6)).astype(float)
    stats = layer.cd.step(v, np.random.default_rng(0), workers=4)
    layer.cd.finish()
    assert layer.cd.trace == [CDState.VISIBLE_SAMPLED, CDState.GRADIENT_COMPUTED]
    # with zero weights the reconstruction is independent of the sampled states
    assert np.allclose(stats.c_grad, v.mean(axis=0) - 0.5)
    assert np.allclose(stats.w_grad, (v.T @ np.full((8, 3), 0.5) - 0.5 * 8 * 0.5) / 8)
    assert np.array_equal(layer.buffers.v1, v)
    assert stats.chain.shape == (8, 6)


def test_backward_batch_is_linear_in_the_errors():
    layer = RBMDesc(6, 3).layer_t(seed=0)
    rng = np.random.default_rng(0)

    class Ctx:
        pass

    a, b = Ctx(), Ctx()
    a.errors = rng.standard_normal((4, 3))
    b.errors = rng.standard_normal((4, 3))
    both = Ctx()
    both.errors = 2.0 * a.errors + b.errors
    expected = 2.0 * layer.backward_batch(a) + layer.backward_batch(b)
    out = np.zeros((4, 6))
    layer.backward_batch(both, out)
    assert np.allclose(out, expected)


def test_backup_and_restore():
    layer = RBMDesc(4, 2).layer_t(seed=0)
    with pytest.raises(RuntimeError):
        layer.restore_weights()
    saved = layer.w.copy()
    layer.backup_weights()
    layer.w += 1.0
    layer.b += 1.0
    layer.restore_weights()
    assert np.array_equal(layer.w, saved)
    assert np.all(layer.b == 0)
    assert np.array_equal(layer.bak_w, saved)


def test_free_energy_and_reconstruction_error():
    layer = RBMDesc(4, 2).layer_t(seed=0)
    v = np.array([[1.0, 0.0, 1.0, 0.0], [0.0, 0.0, 0.0, 0.0]])
    energy = layer.free_energy(v)
    assert energy.shape == (2,)
    assert energy[1] == pytest.approx(-2 * np.log(2.0))
    assert 0.0 <= layer.reconstruction_error(v) <= 1.0


def test_dyn_rbm_is_sized_at_runtime():
    layer = DynRBMDesc(p.batch_size(3)).layer_t(seed=0)
    assert isinstance(layer, DynRBM)
    assert not layer.initialised
    layer.init_layer(10, 4)
    assert layer.initialised
    assert layer.w.shape == (10, 4)
    assert layer.input_size() == 10
    assert layer.output_size() == 4
    assert layer.parameter_count() == 40
    assert layer.to_short_string() == "RBM(dyn): 10(BINARY) -> 4(BINARY)"
    with pytest.raises(DimensionTooSmall) as info:
        layer.init_layer(0, 4)
    assert info.value.name == "num_visible"


def test_dyn_init_copies_dimensions():
    static = RBMDesc(7, 3, p.batch_size(5)).layer_t(seed=0)
    dyn = DynRBMDesc().layer_t(seed=0)
    static.dyn_init(dyn)
    assert dyn.w.shape == (7, 3)
    assert dyn.batch_size == 5


def test_layer_rejects_foreign_configuration():
    with pytest.raises(TypeError):
        RBM(DynRBMDesc().config)


def test_forward_one_matches_batch():
    layer = RBMDesc(5, 2).layer_t(seed=0)
    sample = np.array([1.0, 0.0, 1.0, 1.0, 0.0])
    assert np.allclose(layer.forward_one(sample), layer.forward_batch(sample[None])[0])


def test_short_batch_clears_stale_buffer_rows():
    layer = RBMDesc(4, 3, p.batch_size(4)).layer_t(seed=0)
    layer.cd.step(np.ones((4, 4)), np.random.default_rng(0))
    layer.cd.finish()
    layer.cd.step(np.zeros((2, 4)), np.random.default_rng(0))
    layer.cd.finish()
    assert layer.buffers.rows == 4
    assert not layer.buffers.v1.any()
    for name in ("h1_a", "h1_s", "v2_a", "v2_s", "h2_a", "h2_s"):
        assert not getattr(layer.buffers, name)[2:].any()


def test_persistent_chain_rows_are_fitted_to_the_batch():
    layer = RBMDesc(4, 3).layer_t(seed=0)
    seen = []
    activate = layer.activate_hidden

    def recording(v, rng=None, sample_state=True):
        seen.append(v.copy())
        return activate(v, rng, sample_state)

    layer.activate_hidden = recording
    chain = np.full((1, 4), 0.5)
    layer.cd.step(np.ones((3, 4)), np.random.default_rng(0), chain=chain)
    layer.cd.finish()
    assert np.array_equal(seen[1], [[0.5] * 4, [1.0] * 4, [1.0] * 4])
    with pytest.raises(ValueError):
        layer.cd.step(np.ones((3, 4)), np.random.default_rng(0), chain=np.ones((3, 5)))
    assert layer.cd.state is CDState.IDLE


@pytest.mark.parametrize("workers", [1, 2])
def test_failed_step_returns_to_idle(monkeypatch, workers):
    layer = RBMDesc(4, 3, p.batch_size(4)).layer_t(seed=0)

    def fail(h, rng=None, sample_state=True):
        raise FloatingPointError("overflow")

    monkeypatch.setattr(layer, "activate_visible", fail)
    with pytest.raises(FloatingPointError):
        layer.cd.step(np.ones((4, 4)), np.random.default_rng(0), workers=workers)
    assert layer.cd.state is CDState.IDLE
    monkeypatch.undo()
    stats = layer.cd.step(np.ones((4, 4)), np.random.default_rng(0), workers=workers)
    layer.cd.finish()
    assert stats.batch == 4
