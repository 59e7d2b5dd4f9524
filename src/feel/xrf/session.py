"""
session: One loaded map plus the regions drawn over it.

The session is the glue between the drawing surface and the region math. It
owns the grid and an ordered list of samples, turns pointer drags into
committed shapes, and answers calibration and estimate queries. Nothing is
pushed to the display; callers re-query after each edit.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from feel.xrf.calibration import (
    CalibrationCurve,
    CalibrationResult,
    calibrate,
    estimate_loading,
)
from feel.xrf.grid import Grid
from feel.xrf.sample import Classification, TrackedSample
from feel.xrf.shapes import SHAPE_KINDS, Circle, Rectangle, Shape

logger = logging.getLogger(__name__)

# Marks an update_sample argument that was not passed
_UNSET = object()


class ShapeDraft:
    """
    A shape being drawn with the pointer.

    ``drag_to`` is called for every pointer-move frame and never normalizes.
    ``commit`` produces the final shape, normalizing a rectangle dragged up
    or left exactly once.

    Examples
    --------
    >>> d = ShapeDraft("rectangle", 5, 1)
    >>> d.drag_to(2, 3)
    >>> d.shape
    Rectangle(x=5.0, y=1.0, w=-3.0, h=2.0, rotation_deg=0.0)
    >>> d.commit()
    Rectangle(x=2.0, y=1.0, w=3.0, h=2.0, rotation_deg=0.0)
    """

    def __init__(self, kind: str, x: float, y: float, rotation_deg: float = 0.0):
        kind = str(kind).strip().lower()
        if kind not in SHAPE_KINDS:
            supported = ", ".join(f'"{k}"' for k in SHAPE_KINDS)
            raise ValueError(f"Unknown shape kind {kind!r}. Supported values: {supported}.")
        self.kind = kind
        self.x0 = float(x)
        self.y0 = float(y)
        self.rotation_deg = float(rotation_deg)
        self.shape: Shape = self._shape_to(self.x0, self.y0)
        self.committed = False

    def _shape_to(self, x: float, y: float) -> Shape:
        dx, dy = x - self.x0, y - self.y0
        if self.kind == "circle":
            return Circle(self.x0, self.y0, math.hypot(dx, dy))
        return Rectangle(self.x0, self.y0, dx, dy, self.rotation_deg)

    def drag_to(self, x: float, y: float) -> None:
        if self.committed:
            raise RuntimeError("Draft has already been committed.")
        self.shape = self._shape_to(float(x), float(y))

    def commit(self) -> Shape:
        if self.committed:
            raise RuntimeError("Draft has already been committed.")
        self.committed = True
        if isinstance(self.shape, Rectangle):
            self.shape = self.shape.normalized()
        return self.shape


@dataclass(frozen=True)
class SampleRow:
    """Display values for one sample."""

    index: int
    label: str
    shape: Shape
    classification: Classification
    known_loading: Optional[float]
    mean_count: Optional[float]
    estimated_loading: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "classification": self.classification.value,
            "known_loading": self.known_loading,
            "mean_count": self.mean_count,
            "estimated_loading": self.estimated_loading,
        }


class AnalysisSession:
    """
    A count map with reference and unknown regions.

    Parameters
    ----------
    grid : Grid, optional
        Map to analyze. Samples can be added before a map is loaded, but
        mean counts and calibration need one.

    Examples
    --------
    >>> s = AnalysisSession(Grid(np.arange(25.0).reshape(5, 5)))
    >>> s.add_sample(Circle(1, 1, 1), "reference", known_loading=3.0)
    0
    >>> s.add_sample(Circle(3, 3, 1), "reference", known_loading=9.0)
    1
    >>> s.calibration()
    CalibrationCurve(slope=0.5, intercept=0.0, r=1.0, n=2)
    """

    def __init__(self, grid: Optional[Grid] = None):
        self._grid = grid
        self._samples: list[TrackedSample] = []
        self._draft: Optional[ShapeDraft] = None
        self._draft_classification = Classification.UNKNOWN

    # ── Grid ────────────────────────────────────────────────────────────────

    @property
    def grid(self) -> Optional[Grid]:
        return self._grid

    def set_grid(self, grid: Grid, keep_samples: bool = True) -> None:
        """
        Replace the map.

        Every cached mean is invalidated. With ``keep_samples=False`` all
        regions are removed as well.
        """
        self._grid = grid
        self._draft = None
        if not keep_samples:
            self._samples = []
        for sample in self._samples:
            sample.invalidate()
        logger.info("Grid set to %dx%d, %d sample(s) kept", grid.width, grid.height, len(self._samples))

    def _require_grid(self) -> Grid:
        if self._grid is None:
            raise ValueError("No map loaded.")
        return self._grid

    # ── Samples ─────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[TrackedSample]:
        return iter(self._samples)

    def __getitem__(self, index: int) -> TrackedSample:
        return self._resolve(index)

    @property
    def samples(self) -> list[TrackedSample]:
        return list(self._samples)

    def _resolve(self, index: int) -> TrackedSample:
        try:
            return self._samples[int(index)]
        except IndexError as exc:
            raise IndexError(
                f"Sample index {index} out of range for {len(self._samples)} samples."
            ) from exc

    def add_sample(self, shape: Shape, classification=Classification.UNKNOWN,
                   known_loading: Optional[float] = None) -> int:
        """Commit ``shape`` as a new sample and return its index."""
        if isinstance(shape, Rectangle):
            shape = shape.normalized()
        sample = TrackedSample(shape, classification, known_loading)
        self._samples.append(sample)
        return len(self._samples) - 1

    def update_sample(self, index: int, *, shape: Optional[Shape] = None,
                      classification=None, known_loading=_UNSET) -> TrackedSample:
        """
        Edit one sample. Classification is applied before loading, so a
        sample can be turned into a reference and given a loading in one call.
        Pass ``known_loading=None`` to clear a loading.
        """
        sample = self._resolve(index)
        if shape is not None:
            sample.set_shape(shape)
        if classification is not None:
            sample.set_classification(classification)
        if known_loading is not _UNSET:
            sample.set_known_loading(known_loading)
        return sample

    def remove_sample(self, index: int) -> None:
        self._resolve(index)
        del self._samples[int(index)]

    def clear_samples(self) -> None:
        self._samples = []

    def replace_samples(self, samples: list[TrackedSample]) -> None:
        """Swap in a new ordered sample list. Existing objects keep their caches."""
        self._samples = list(samples)

    # ── Drawing ─────────────────────────────────────────────────────────────

    @property
    def draft(self) -> Optional[ShapeDraft]:
        return self._draft

    def begin_draft(self, kind: str, x: float, y: float,
                    classification=Classification.UNKNOWN, rotation_deg: float = 0.0) -> ShapeDraft:
        self._draft = ShapeDraft(kind, x, y, rotation_deg)
        self._draft_classification = Classification.coerce(classification)
        return self._draft

    def drag_draft(self, x: float, y: float) -> Optional[Shape]:
        if self._draft is None:
            return None
        self._draft.drag_to(x, y)
        return self._draft.shape

    def commit_draft(self) -> Optional[int]:
        """Turn the current draft into a sample. Returns its index."""
        if self._draft is None:
            return None
        shape = self._draft.commit()
        self._draft = None
        return self.add_sample(shape, self._draft_classification)

    def cancel_draft(self) -> None:
        self._draft = None

    # ── Derived values ──────────────────────────────────────────────────────

    def mean_count(self, index: int) -> Optional[float]:
        return self._resolve(index).mean_count(self._require_grid())

    def calibration(self) -> CalibrationResult:
        return calibrate(self._samples, self._require_grid())

    def estimate(self, index: int, curve: Optional[CalibrationResult] = None) -> Optional[float]:
        if curve is None:
            curve = self.calibration()
        return estimate_loading(curve, self.mean_count(index))

    def rows(self) -> list[SampleRow]:
        """
        Per-sample display values.

        Labels are numbered by list position: ``"Reference 1"``, ``"Sample 2"``, ...
        """
        grid = self._require_grid()
        curve = calibrate(self._samples, grid)
        rows = []
        for i, sample in enumerate(self._samples):
            prefix = "Reference" if sample.value.is_reference else "Sample"
            count = sample.mean_count(grid)
            rows.append(SampleRow(
                index=i,
                label=f"{prefix} {i + 1}",
                shape=sample.shape,
                classification=sample.classification,
                known_loading=sample.known_loading,
                mean_count=count,
                estimated_loading=estimate_loading(curve, count),
            ))
        return rows

    def has_curve(self) -> bool:
        return isinstance(self.calibration(), CalibrationCurve)
