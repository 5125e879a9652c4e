import math

import numpy as np
import pytest

from hgcaltb.config.schemas import CalibrationPolicy
from hgcaltb.physics.calibration import reduce_cells


def test_empty_layer_returns_zero_without_draws():
    rng = np.random.default_rng(1)
    before = rng.bit_generator.state
    assert reduce_cells([], 0.085, 1.0 / 6.0, 0.5, rng) == 0.0
    assert rng.bit_generator.state == before


@pytest.mark.parametrize("v, divisor, threshold, expected", [
    (2.0, 1.0, 0.5, 2.0),
    (0.17, 0.085, 0.5, 2.0),
    (0.04, 0.085, 0.5, 0.0),
    (0.5, 1.0, 0.5, 0.0),      # cut is strict
    (0.3, 1.0, -1.0, 0.3),
])
def test_single_cell_zero_noise(v, divisor, threshold, expected):
    out = reduce_cells([v], divisor, 0.0, threshold)
    assert out == pytest.approx(expected)


def test_zero_noise_does_not_touch_rng():
    rng = np.random.default_rng(5)
    before = rng.bit_generator.state
    reduce_cells([1.0, 2.0, 3.0], 1.0, 0.0, 0.0, rng)
    assert rng.bit_generator.state == before


def test_noise_drawn_once_per_cell_in_order():
    cells = np.array([0.1, 0.2, 0.05, 0.3, 0.0])
    out = reduce_cells(cells, 0.085, 0.2, 0.5, np.random.default_rng(3))

    ref = np.random.default_rng(3)
    calib = cells / 0.085 + ref.normal(0.0, 0.2, size=cells.size)
    assert out == pytest.approx(float(calib[calib > 0.5].sum()))


def test_same_seed_same_result():
    cells = np.linspace(0.0, 0.5, 50)
    a = reduce_cells(cells, 0.085, 1.0 / 6.0, 0.5, np.random.default_rng(42))
    b = reduce_cells(cells, 0.085, 1.0 / 6.0, 0.5, np.random.default_rng(42))
    c = reduce_cells(cells, 0.085, 1.0 / 6.0, 0.5, np.random.default_rng(43))
    assert a == b
    assert a != c


def test_noise_can_make_signal_negative_with_negative_threshold():
    # all-zero cells, threshold well below zero: every noisy cell passes
    cells = np.zeros(200)
    out = reduce_cells(cells, 1.0, 1.0, -10.0, np.random.default_rng(0))
    ref = np.random.default_rng(0).normal(0.0, 1.0, size=200).sum()
    assert out == pytest.approx(ref)


def test_nonfinite_cut_and_propagate():
    assert reduce_cells([np.inf, 1.0], 1.0, 0.0, 0.0) == 1.0
    assert reduce_cells([np.nan, 2.0], 1.0, 0.0, 0.0) == 2.0
    assert reduce_cells([np.inf, 1.0], 1.0, 0.0, 0.0, nonfinite="propagate") == math.inf
    assert math.isnan(reduce_cells([np.nan, 2.0], 1.0, 0.0, 0.0, nonfinite="propagate"))


def test_bad_arguments():
    with pytest.raises(ValueError):
        reduce_cells([1.0], 0.0, 0.0, 0.0)
    with pytest.raises(ValueError):
        reduce_cells([1.0], 1.0, 0.5, 0.0, rng=None)
    with pytest.raises(ValueError):
        reduce_cells([1.0], 1.0, 0.0, 0.0, nonfinite="clamp")


def test_policy_reduce_matches_function():
    pol = CalibrationPolicy(divisor=0.4755, noise_sigma=0.12, threshold=0.5)
    cells = [0.1, 0.5, 1.0]
    a = pol.reduce(cells, np.random.default_rng(9))
    b = reduce_cells(cells, 0.4755, 0.12, 0.5, np.random.default_rng(9))
    assert a == b
