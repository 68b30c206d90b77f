import numpy as np
import pytest

from rbmkit.data import available_datasets, get_dataset, iter_batches
from rbmkit.data.synthetic import bars_and_stripes
from rbmkit.data.utils import deterministic_split, flip_bits


def test_bars_and_stripes_patterns():
    images, labels = bars_and_stripes(3)
    assert images.shape == (14, 1, 3, 3)
    assert len({img.tobytes() for img in images}) == 14
    assert labels.sum() == 6


def test_registry_lists_builtin_datasets():
    assert {"bars_and_stripes", "binary_prototypes", "gaussian_blobs"} <= set(available_datasets())
    with pytest.raises(KeyError):
        get_dataset("mnist")


def test_dataset_splits_are_deterministic():
    first = get_dataset("binary_prototypes", n_features=8, n_samples=50, seed=3)
    second = get_dataset("binary_prototypes", n_features=8, n_samples=50, seed=3)
    assert first.splits == {"train": 40, "test": 10}
    assert np.array_equal(first.split("train").inputs, second.split("train").inputs)
    assert first.data_spec.shape == (8,)
    assert first.data_spec.binary
    with pytest.raises(ValueError):
        first.split("validation")


def test_gaussian_blobs_are_real_valued():
    spec = get_dataset("gaussian_blobs", n_samples=20)
    assert not spec.data_spec.binary
    assert spec.provenance["type"] == "synthetic"


def test_iter_batches_covers_every_sample():
    spec = get_dataset("bars_and_stripes", size=3, repeat=1, test_split=0.0)
    batches = list(spec.iter_split("train", 4, seed=0))
    assert [b.inputs.shape[0] for b in batches] == [4, 4, 4, 2]
    stacked = np.concatenate([b.inputs for b in batches])
    assert sorted(x.tobytes() for x in stacked) == sorted(x.tobytes() for x in spec.split("train").inputs)
    with pytest.raises(ValueError):
        next(iter_batches(spec.split("train"), 0))


def test_split_and_noise_helpers():
    split = deterministic_split(10, test_split=0.3, seed=1)
    assert split.sizes == {"train": 7, "test": 3}
    assert not set(split.train) & set(split.test)
    data = np.zeros((100, 5))
    assert np.array_equal(flip_bits(data, 0.0, np.random.default_rng(0)), data)
    assert np.all(flip_bits(data, 1.0, np.random.default_rng(0)) == 1.0)
    with pytest.raises(ValueError):
        flip_bits(data, 2.0, np.random.default_rng(0))
