import numpy as np
import pytest

from balbundle.noise import NoiseSource


def test_same_seed_gives_same_sequence():
    a = NoiseSource(38401)
    b = NoiseSource(38401)
    assert [a.rand_normal() for _ in range(20)] == [b.rand_normal() for _ in range(20)]


def test_different_seeds_differ():
    a = NoiseSource(1)
    b = NoiseSource(2)
    assert [a.rand_double() for _ in range(5)] != [b.rand_double() for _ in range(5)]


def test_rand_double_in_unit_interval():
    source = NoiseSource(7)
    samples = [source.rand_double() for _ in range(1000)]
    assert all(0.0 <= s <= 1.0 for s in samples)


def test_rand_normal_statistics():
    source = NoiseSource(12345)
    samples = np.array([source.rand_normal() for _ in range(20000)])
    assert abs(samples.mean()) < 0.05
    assert samples.std() == pytest.approx(1.0, abs=0.05)


def test_perturb_with_zero_sigma_keeps_point():
    source = NoiseSource(3)
    point = [1.0, 2.0, 3.0]
    assert np.allclose(source.perturb_point3(0.0, point), point)


def test_perturb_does_not_modify_input_and_changes_output():
    source = NoiseSource(5)
    point = np.array([1.0, 2.0, 3.0])
    result = source.perturb_point3(0.5, point)
    assert np.array_equal(point, [1.0, 2.0, 3.0])
    assert result.shape == (3,)
    assert not np.allclose(result, point)


def test_perturb_scales_with_sigma():
    base = np.zeros(3)
    small = NoiseSource(9).perturb_point3(1.0, base)
    large = NoiseSource(9).perturb_point3(10.0, base)
    assert np.allclose(large, small * 10.0)


def test_perturb_rejects_wrong_size():
    with pytest.raises(ValueError):
        NoiseSource(1).perturb_point3(1.0, [1.0, 2.0])