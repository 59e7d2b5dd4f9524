"""
feel.xrf: XRF count-map region sampling and loading calibration.
"""

import importlib.metadata
from typing import TYPE_CHECKING, Any

try:
    __version__ = importlib.metadata.version("feel-xrf")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"

from feel.xrf.calibration import (
    CalibrationCurve,
    DegenerateFit,
    InsufficientData,
    estimate_loading,
    fit_calibration,
)
from feel.xrf.grid import Grid, load_map
from feel.xrf.logging_config import setup_logging
from feel.xrf.sample import Classification, RegionSample, TrackedSample, mean_count
from feel.xrf.session import AnalysisSession, ShapeDraft
from feel.xrf.shapes import Circle, Rectangle

if TYPE_CHECKING:  # pragma: no cover
    from feel.xrf.calibrate2d import Calibrate2D


# The widget pulls in anywidget, so it is only imported on first access
_EXPORTS = {
    "Calibrate2D": ("feel.xrf.calibrate2d", "Calibrate2D"),
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module_name, attr_name = _EXPORTS[name]
        module = __import__(module_name, fromlist=[attr_name])
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'feel.xrf' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_EXPORTS.keys()))


__all__ = [
    "AnalysisSession",
    "Calibrate2D",
    "CalibrationCurve",
    "Circle",
    "Classification",
    "DegenerateFit",
    "Grid",
    "InsufficientData",
    "Rectangle",
    "RegionSample",
    "ShapeDraft",
    "TrackedSample",
    "estimate_loading",
    "fit_calibration",
    "load_map",
    "mean_count",
    "setup_logging",
]
