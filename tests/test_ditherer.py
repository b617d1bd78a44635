import numpy as np
import pytest

from conftest import solid_rgba
from mibae_lib import DIFFUSION_PATTERN, DITHERING_RATE, FloydSteinbergDitherer


def test_weights_never_amplify_error():
    assert sum(weight for _, _, weight in DIFFUSION_PATTERN) == pytest.approx(1.0)
    assert FloydSteinbergDitherer().total_weight == pytest.approx(DITHERING_RATE)
    assert FloydSteinbergDitherer(rate=1.0).total_weight <= 1.0 + 1e-12


def test_negative_rate_is_rejected():
    with pytest.raises(ValueError):
        FloydSteinbergDitherer(rate=-0.1)


def test_quantization_error_is_signed():
    error = FloydSteinbergDitherer.quantization_error(
        np.array([10, 20, 30, 255], dtype=np.uint8),
        np.array([30, 20, 10, 255], dtype=np.uint8),
    )
    assert error.tolist() == [-20, 0, 20]


def test_error_goes_to_unvisited_neighbours():
    source = solid_rgba(3, 3, (100, 100, 100))
    FloydSteinbergDitherer(rate=0.5).diffuse(source, 1, 1, np.array([32, 32, 32], dtype=np.int16))

    # 32 * 0.5 * (7, 3, 5, 1) / 16
    assert source[1, 2, 0] == 107
    assert source[2, 0, 0] == 103
    assert source[2, 1, 0] == 105
    assert source[2, 2, 0] == 101
    # already visited pixels keep their values
    assert (source[0, :, :3] == 100).all()
    assert (source[1, :2, :3] == 100).all()
    assert (source[..., 3] == 255).all()


def test_corrections_are_clamped():
    source = solid_rgba(2, 2, (5, 250, 128))
    FloydSteinbergDitherer(rate=1.0).diffuse(source, 0, 0, np.array([-200, 200, 0], dtype=np.int16))

    assert tuple(source[0, 1, :3]) == (0, 255, 128)
    assert tuple(source[1, 1, :3]) == (0, 255, 128)


def test_out_of_bounds_neighbours_are_skipped():
    source = solid_rgba(3, 3, (50, 50, 50))
    before = source.copy()
    FloydSteinbergDitherer(rate=1.0).diffuse(source, 2, 2, np.array([100, 100, 100], dtype=np.int16))
    np.testing.assert_array_equal(source, before)


def test_zero_rate_changes_nothing():
    source = solid_rgba(3, 3, (50, 50, 50))
    before = source.copy()
    FloydSteinbergDitherer(rate=0.0).diffuse(source, 0, 0, np.array([100, -100, 7], dtype=np.int16))
    np.testing.assert_array_equal(source, before)
