import numpy as np
import pytest

from rbmkit.core import params as p
from rbmkit.core.hyper import HyperParameters
from rbmkit.core.params import BiasMode, DecayType, SparsityMethod
from rbmkit.core.types import CDStatistics
from rbmkit.descriptors import ConvRBMDesc, RBMDesc
from rbmkit.layers import CDState
from rbmkit.training.trainers import CDTrainer, PCDTrainer, cd_k, get_trainer, pcd_k


def _stats(layer, w=1.0, b=1.0, c=1.0, h_mean=0.5):
    return CDStatistics(
        w_grad=np.full(layer.w.shape, w),
        b_grad=np.full(layer.b.shape, b),
        c_grad=np.full(layer.c.shape, c),
        h1_mean=np.full(layer.b.shape, h_mean),
        reconstruction_error=0.0,
        batch=1,
    )


def _layer(*tags, hyper=None):
    return RBMDesc(4, 3, *tags).layer_t(seed=0, hyper=hyper or HyperParameters(learning_rate=0.1))


def test_plain_update_adds_scaled_gradient():
    layer = _layer()
    w0 = layer.w.copy()
    trainer = CDTrainer(layer)
    assert trainer.apply(_stats(layer, w=2.0, b=1.0, c=-1.0))
    assert np.allclose(layer.w, w0 + 0.2)
    assert np.allclose(layer.b, 0.1)
    assert np.allclose(layer.c, -0.1)


def test_l2_decay_only_touches_weights():
    layer = _layer(p.weight_decay(DecayType.L2))
    layer.b = np.ones(3)
    w0 = layer.w.copy()
    CDTrainer(layer).apply(_stats(layer, w=0.0, b=0.0, c=0.0))
    assert np.allclose(layer.w, w0 - 0.1 * 0.0002 * w0)
    assert np.allclose(layer.b, 1.0)


def test_full_decay_includes_biases():
    layer = _layer(p.weight_decay(DecayType.L1L2_FULL))
    layer.b = np.ones(3)
    CDTrainer(layer).apply(_stats(layer, w=0.0, b=0.0, c=0.0))
    assert np.allclose(layer.b, 1.0 - 0.1 * (0.0002 + 0.0002))


def test_non_finite_gradients_are_skipped():
    layer = _layer()
    w0 = layer.w.copy()
    assert not CDTrainer(layer).apply(_stats(layer, w=np.nan))
    assert np.array_equal(layer.w, w0)
    assert np.all(layer.b == 0)


def test_momentum_accumulates_increments():
    layer = _layer(p.momentum())
    trainer = CDTrainer(layer)
    assert trainer.momentum == pytest.approx(0.5)
    trainer.apply(_stats(layer, w=0.0, b=1.0, c=0.0))
    trainer.apply(_stats(layer, w=0.0, b=1.0, c=0.0))
    assert np.allclose(trainer.b_inc, 0.5 * 0.1 + 0.1)
    assert np.allclose(layer.b, 0.1 + 0.15)
    trainer.init_epoch(6)
    assert trainer.momentum == pytest.approx(0.9)


def test_gradients_are_clipped_to_norm():
    layer = _layer(p.clip_gradients())
    w0 = layer.w.copy()
    CDTrainer(layer).apply(_stats(layer, w=100.0, b=0.0, c=0.0))
    assert np.linalg.norm(layer.w - w0) == pytest.approx(0.1 * 5.0)


def test_global_sparsity_penalises_bias_and_weights():
    hyper = HyperParameters(learning_rate=1.0, sparsity_target=0.1)
    layer = _layer(p.sparsity(SparsityMethod.GLOBAL_TARGET), hyper=hyper)
    w0 = layer.w.copy()
    trainer = CDTrainer(layer)
    trainer.apply(_stats(layer, w=0.0, b=0.0, c=0.0, h_mean=0.6))
    q = 0.01 * 0.6
    assert trainer.q_global == pytest.approx(q)
    assert np.allclose(layer.b, -(q - 0.1))
    assert np.allclose(layer.w, w0 - (q - 0.1))


def test_local_sparsity_tracks_each_unit():
    hyper = HyperParameters(learning_rate=1.0, sparsity_target=0.0)
    layer = _layer(p.sparsity(SparsityMethod.LOCAL_TARGET), hyper=hyper)
    trainer = CDTrainer(layer)
    stats = _stats(layer, w=0.0, b=0.0, c=0.0)
    stats.h1_mean = np.array([0.0, 0.5, 1.0])
    trainer.apply(stats)
    assert np.allclose(trainer.q_local, [0.0, 0.005, 0.01])
    assert np.allclose(layer.b, -trainer.q_local)


def test_lee_sparsity_with_simple_bias_leaves_weights():
    desc = ConvRBMDesc(1, 5, 5, 2, 3, 3, p.sparsity(SparsityMethod.LEE), p.bias(BiasMode.SIMPLE))
    layer = desc.layer_t(seed=0, hyper=HyperParameters(learning_rate=1.0, pbias=0.1, pbias_lambda=2.0))
    w0 = layer.w.copy()
    CDTrainer(layer).apply(_stats(layer, w=0.0, b=0.0, c=0.0, h_mean=0.3))
    assert np.allclose(layer.w, w0)
    assert np.allclose(layer.b, -2.0 * (0.3 - 0.1))


def test_lee_sparsity_without_bias_reaches_weights():
    desc = ConvRBMDesc(1, 5, 5, 2, 3, 3, p.sparsity(SparsityMethod.LEE), p.bias(BiasMode.NONE))
    layer = desc.layer_t(seed=0, hyper=HyperParameters(learning_rate=1.0, pbias=0.1, pbias_lambda=2.0))
    w0 = layer.w.copy()
    CDTrainer(layer).apply(_stats(layer, w=0.0, b=0.0, c=0.0, h_mean=0.3))
    assert np.allclose(layer.b, 0.0)
    assert np.allclose(layer.w, w0 - 0.4)


def test_train_batch_leaves_layer_idle():
    layer = _layer(p.batch_size(2))
    trainer = CDTrainer(layer)
    stats = trainer.train_batch(np.ones((2, 4)))
    assert stats.batch == 2
    assert layer.cd.state is CDState.IDLE
    assert trainer.chain is None


def test_persistent_trainer_keeps_its_chain():
    layer = _layer(p.batch_size(2), p.trainer(PCDTrainer))
    trainer = layer.config.trainer(layer)
    trainer.train_batch(np.ones((2, 4)))
    assert trainer.chain.shape == (2, 4)
    first = trainer.chain
    trainer.train_batch(np.zeros((2, 4)))
    assert trainer.chain is not first
    trainer.reset()
    assert trainer.chain is None


def test_cd_k_trainers_are_cached():
    assert cd_k(1) is CDTrainer
    assert pcd_k(1) is PCDTrainer
    assert cd_k(3) is cd_k(3)
    assert cd_k(3).k == 3
    assert issubclass(pcd_k(2), PCDTrainer)
    with pytest.raises(ValueError):
        cd_k(0)


def test_get_trainer_by_name():
    assert get_trainer("cd") is CDTrainer
    assert get_trainer("PCD") is PCDTrainer
    assert get_trainer("cd3") is cd_k(3)
    assert get_trainer("pcd5").k == 5
    with pytest.raises(KeyError) as info:
        get_trainer("adam")
    assert "Available" in str(info.value)


def test_cd_k_runs_k_gibbs_steps():
    layer = _layer(p.batch_size(1))
    cd_k(3)(layer).train_batch(np.ones((1, 4)))
    assert layer.cd.trace.count(CDState.VISIBLE_RECONSTRUCTED) == 3


def test_persistent_chain_survives_short_batches(monkeypatch):
    from rbmkit.training.trainer import RBMTrainer

    layer = _layer(p.batch_size(4), p.trainer(PCDTrainer))
    used = []
    step = layer.cd.step

    def recording(inputs, rng, **kwargs):
        used.append(kwargs.get("chain") is not None)
        return step(inputs, rng, **kwargs)

    monkeypatch.setattr(layer.cd, "step", recording)
    trainer = RBMTrainer(layer, seed=0)
    trainer.train(np.ones((10, 4)), 2)
    assert used == [False, True, True, True, True, True]
    assert trainer.trainer.chain.shape == (4, 4)


def test_short_batch_advances_leading_chain_rows():
    layer = _layer(p.batch_size(4), p.trainer(PCDTrainer))
    trainer = PCDTrainer(layer)
    trainer.train_batch(np.ones((4, 4)))
    tail = trainer.chain[2:].copy()
    trainer.train_batch(np.ones((2, 4)))
    assert trainer.chain.shape == (4, 4)
    assert np.array_equal(trainer.chain[2:], tail)
