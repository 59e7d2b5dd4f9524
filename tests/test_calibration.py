import math

import numpy as np
import pytest

from feel.xrf.calibration import (
    CalibrationCurve,
    DegenerateFit,
    InsufficientData,
    calibrate,
    describe,
    estimate_loading,
    fit_calibration,
    reference_pairs,
)
from feel.xrf.grid import Grid
from feel.xrf.sample import TrackedSample
from feel.xrf.shapes import Circle, Rectangle


def test_collinear_points():
    """(10,5), (20,10), (30,15) lie on loading = 0.5 * counts."""
    curve = fit_calibration([(10, 5), (20, 10), (30, 15)])
    assert isinstance(curve, CalibrationCurve)
    assert curve.slope == pytest.approx(0.5, abs=1e-9)
    assert curve.intercept == pytest.approx(0.0, abs=1e-9)
    assert curve.r == pytest.approx(1.0, abs=1e-9)
    assert curve.n == 3


@pytest.mark.parametrize("pairs", [[], [(12.0, 3.0)]])
def test_fewer_than_two_points_is_insufficient(pairs):
    result = fit_calibration(pairs)
    assert isinstance(result, InsufficientData)
    assert result.n == len(pairs)


def test_identical_counts_is_degenerate():
    result = fit_calibration([(5, 1), (5, 2)])
    assert isinstance(result, DegenerateFit)
    assert not isinstance(result, InsufficientData)
    assert result.n == 2


def test_identical_non_integer_counts_is_degenerate():
    assert isinstance(fit_calibration([(0.1, 1), (0.1, 2), (0.1, 3)]), DegenerateFit)


def test_matches_numpy_polyfit():
    rng = np.random.default_rng(7)
    x = rng.uniform(50, 500, 12)
    y = 0.03 * x + 1.2 + rng.normal(0, 0.4, 12)
    curve = fit_calibration(zip(x, y))
    slope, intercept = np.polyfit(x, y, 1)
    assert curve.slope == pytest.approx(slope, rel=1e-9)
    assert curve.intercept == pytest.approx(intercept, rel=1e-9)
    assert curve.r == pytest.approx(np.corrcoef(x, y)[0, 1], rel=1e-9)


def test_negative_correlation():
    curve = fit_calibration([(1, 10), (2, 8), (3, 6)])
    assert curve.slope == pytest.approx(-2.0)
    assert curve.intercept == pytest.approx(12.0)
    assert curve.r == pytest.approx(-1.0)


def test_identical_loadings_leave_r_undefined():
    curve = fit_calibration([(1, 4), (2, 4), (3, 4)])
    assert isinstance(curve, CalibrationCurve)
    assert curve.slope == pytest.approx(0.0)
    assert curve.intercept == pytest.approx(4.0)
    assert curve.r is None


def test_non_finite_pairs_are_dropped():
    result = fit_calibration([(1, 1), (float("nan"), 2), (2, float("inf")), (None, 3)])
    assert isinstance(result, InsufficientData)
    assert result.n == 1


def test_result_messages():
    assert describe(InsufficientData(0)) == "Not enough data to determine loading"
    assert "identical counts" in describe(DegenerateFit(2))
    assert describe(None) == "Not enough data to determine loading"
    assert "r=1.0000" in fit_calibration([(0, 0), (1, 1)]).message


def test_to_dict_status():
    assert fit_calibration([(0, 0), (1, 2)]).to_dict()["status"] == "ok"
    assert InsufficientData(1).to_dict() == {
        "status": "insufficient",
        "n": 1,
        "message": "Not enough data to determine loading",
    }
    assert DegenerateFit(3).to_dict()["status"] == "degenerate"


def test_estimate_loading():
    curve = CalibrationCurve(slope=0.5, intercept=1.0, r=1.0, n=2)
    assert estimate_loading(curve, 10.0) == pytest.approx(6.0)


@pytest.mark.parametrize("curve", [None, InsufficientData(1), DegenerateFit(2)])
def test_estimate_without_curve_is_none(curve):
    assert estimate_loading(curve, 10.0) is None


def test_estimate_without_count_is_none():
    curve = CalibrationCurve(slope=0.5, intercept=1.0, r=1.0, n=2)
    assert estimate_loading(curve, None) is None
    assert estimate_loading(curve, math.nan) is None


def _two_level_grid():
    values = np.full((20, 20), 10.0)
    values[10:, :] = 30.0
    return Grid(values)


def test_reference_pairs_filter():
    grid = _two_level_grid()
    samples = [
        TrackedSample(Circle(5, 5, 2), "reference", known_loading=5.0),
        TrackedSample(Circle(15, 15, 2), "reference", known_loading=15.0),
        TrackedSample(Circle(5, 15, 2), "reference"),  # no loading yet
        TrackedSample(Rectangle(2, 2, 3, 3), "unknown"),
        TrackedSample(Circle(100, 100, 2), "reference", known_loading=9.0),  # off the map
    ]
    assert reference_pairs(samples, grid) == [(10.0, 5.0), (30.0, 15.0)]


def test_calibrate_from_samples():
    grid = _two_level_grid()
    samples = [
        TrackedSample(Circle(5, 5, 2), "reference", known_loading=5.0),
        TrackedSample(Circle(15, 15, 2), "reference", known_loading=15.0),
    ]
    curve = calibrate(samples, grid)
    assert curve.slope == pytest.approx(0.5)
    assert curve.intercept == pytest.approx(0.0, abs=1e-12)
    unknown = TrackedSample(Rectangle(0, 0, 3, 3))
    assert estimate_loading(curve, unknown.mean_count(grid)) == pytest.approx(5.0)


def test_calibrate_after_reclassification():
    grid = _two_level_grid()
    a = TrackedSample(Circle(5, 5, 2), "reference", known_loading=5.0)
    b = TrackedSample(Circle(15, 15, 2), "reference", known_loading=15.0)
    assert isinstance(calibrate([a, b], grid), CalibrationCurve)
    b.set_classification("unknown")
    assert isinstance(calibrate([a, b], grid), InsufficientData)


@pytest.mark.parametrize("base, step", [(1e6, 1e-3), (1e5, 1e-2), (12345.678, 1e-3)])
def test_close_large_counts_fit_accurately(base, step):
    """Distinct counts far from zero still fit; r stays within [-1, 1]."""
    pairs = [(base + k * step, float(k)) for k in range(4)]
    curve = fit_calibration(pairs)
    assert isinstance(curve, CalibrationCurve)
    assert curve.slope == pytest.approx(1.0 / step, rel=1e-4)
    assert -1.0 <= curve.r <= 1.0
    assert curve.r == pytest.approx(1.0, abs=1e-9)
    assert estimate_loading(curve, base + 2 * step) == pytest.approx(2.0, abs=1e-3)
