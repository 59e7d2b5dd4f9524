"""
calibration: Linear count-to-loading calibration.

Reference samples give ``(count, loading)`` pairs. An ordinary least squares
line ``loading = slope * count + intercept`` is fitted through them and then
applied to any sample's mean count.

The fit has three outcomes, all of which are normal return values:

- ``CalibrationCurve`` - slope, intercept and Pearson ``r``.
- ``InsufficientData`` - fewer than two usable pairs.
- ``DegenerateFit`` - two or more pairs, but every count is identical, so
  the slope is undefined.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

import numpy as np

from feel.xrf.grid import Grid
from feel.xrf.sample import TrackedSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationCurve:
    slope: float
    intercept: float
    r: Optional[float]
    n: int

    status = "ok"

    @property
    def message(self) -> str:
        r = "undefined" if self.r is None else f"{self.r:.4f}"
        return f"loading = {self.slope:.6g} * counts + {self.intercept:.6g} (r={r}, n={self.n})"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "slope": self.slope,
            "intercept": self.intercept,
            "r": self.r,
            "n": self.n,
            "message": self.message,
        }


@dataclass(frozen=True)
class InsufficientData:
    n: int

    status = "insufficient"
    message = "Not enough data to determine loading"

    def to_dict(self) -> dict:
        return {"status": self.status, "n": self.n, "message": self.message}


@dataclass(frozen=True)
class DegenerateFit:
    n: int

    status = "degenerate"
    message = "Calibration undefined: references have identical counts"

    def to_dict(self) -> dict:
        return {"status": self.status, "n": self.n, "message": self.message}


CalibrationResult = Union[CalibrationCurve, InsufficientData, DegenerateFit]


def _usable(pairs: Iterable[Sequence[float]]) -> list[tuple[float, float]]:
    out = []
    for count, loading in pairs:
        if count is None or loading is None:
            continue
        count, loading = float(count), float(loading)
        if math.isfinite(count) and math.isfinite(loading):
            out.append((count, loading))
    return out


def fit_calibration(pairs: Iterable[Sequence[float]]) -> CalibrationResult:
    """
    Fit ``loading = slope * count + intercept`` by ordinary least squares.

    Parameters
    ----------
    pairs : iterable of (count, loading)
        Pairs with a missing or non-finite member are ignored.

    Returns
    -------
    CalibrationCurve, InsufficientData or DegenerateFit

    Examples
    --------
    >>> fit_calibration([(10, 5), (20, 10), (30, 15)])
    CalibrationCurve(slope=0.5, intercept=0.0, r=1.0, n=3)
    >>> fit_calibration([(5, 1)])
    InsufficientData(n=1)
    """
    usable = _usable(pairs)
    n = len(usable)
    if n < 2:
        return InsufficientData(n)

    data = np.asarray(usable, dtype=np.float64)
    x, y = data[:, 0], data[:, 1]
    if np.all(x == x[0]):
        logger.debug("Degenerate calibration: %d references share count %s", n, x[0])
        return DegenerateFit(n)

    # Centered sums; raw power sums cancel when counts are large and close
    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float((dx * dx).sum())
    sxy = float((dx * dy).sum())
    syy = float((dy * dy).sum())

    if sxx == 0:
        return DegenerateFit(n)

    slope = sxy / sxx
    intercept = float(y.mean()) - slope * float(x.mean())
    # Identical loadings: the line is flat but r is 0/0
    r = None
    if syy > 0:
        r = max(-1.0, min(1.0, sxy / math.sqrt(sxx * syy)))

    curve = CalibrationCurve(slope=slope, intercept=intercept, r=r, n=n)
    logger.debug("Calibration fit: %s", curve.message)
    return curve


def reference_pairs(samples: Iterable[TrackedSample], grid: Grid) -> list[tuple[float, float]]:
    """
    ``(mean count, known loading)`` for every usable reference sample.

    A reference is usable when it has a known loading and its region covers
    at least one in-bounds cell.
    """
    pairs = []
    for sample in samples:
        loading = sample.value.usable_loading
        if loading is None:
            continue
        count = sample.mean_count(grid)
        if count is None:
            continue
        pairs.append((count, loading))
    return pairs


def calibrate(samples: Iterable[TrackedSample], grid: Grid) -> CalibrationResult:
    return fit_calibration(reference_pairs(samples, grid))


def estimate_loading(curve: Optional[CalibrationResult], count: Optional[float]) -> Optional[float]:
    """
    Apply a calibration to a mean count.

    Returns ``None`` unless ``curve`` is a fitted ``CalibrationCurve`` and
    ``count`` is a finite number.
    """
    if not isinstance(curve, CalibrationCurve) or count is None:
        return None
    if not math.isfinite(count):
        return None
    value = curve.slope * count + curve.intercept
    return value if math.isfinite(value) else None


def describe(result: Optional[CalibrationResult]) -> str:
    if result is None:
        return InsufficientData.message
    return result.message
