"""
sample: Region samples and their memoized mean count.

A ``RegionSample`` is an immutable value: shape, classification, known
loading and a shape ``version``. Every transition returns a new value, and
any change of shape increments ``version``. The mean count is memoized
separately in a ``MeanCache`` keyed by that version and by the grid it was
computed on, so a stale mean can never be read back.

``TrackedSample`` pairs one value with its own cache and gives the mutable
``set_*`` interface that sessions and widgets drive.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, replace
from typing import Optional

from feel.xrf.grid import Grid
from feel.xrf.shapes import Rectangle, Shape, covered_cells

logger = logging.getLogger(__name__)


class Classification(enum.Enum):
    REFERENCE = "reference"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value) -> "Classification":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(
            f"Unknown classification {value!r}. Supported values: \"reference\", \"unknown\"."
        )


def mean_count(shape: Shape, grid: Grid) -> Optional[float]:
    """
    Mean count over the grid cells covered by ``shape``.

    Cells outside the grid are skipped. Returns ``None`` when the shape
    covers no in-bounds cell or when the covered values are not finite.
    """
    ys, xs = covered_cells(shape, grid.width, grid.height)
    n = int(xs.size)
    if n == 0:
        return None
    values = grid.values[ys, xs]
    # Shifted sum: a uniform region returns its value exactly
    ref = float(values[0])
    mean = ref + float((values - ref).sum()) / n
    if not math.isfinite(mean):
        return None
    return mean


@dataclass(frozen=True)
class RegionSample:
    """
    One region drawn over the map.

    Parameters
    ----------
    shape : Circle or Rectangle
        Region geometry in grid-cell units.
    classification : Classification, default UNKNOWN
        ``REFERENCE`` samples with a known loading feed the calibration.
    known_loading : float, optional
        Physical loading in µg/cm². Must be ``None`` for ``UNKNOWN``.
    version : int, default 0
        Incremented on every shape change.
    """

    shape: Shape
    classification: Classification = Classification.UNKNOWN
    known_loading: Optional[float] = None
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, "classification", Classification.coerce(self.classification))
        if self.classification is Classification.UNKNOWN and self.known_loading is not None:
            raise ValueError("Unknown samples cannot carry a known loading.")

    @property
    def is_reference(self) -> bool:
        return self.classification is Classification.REFERENCE

    @property
    def usable_loading(self) -> Optional[float]:
        """Known loading if this sample can feed the calibration, else ``None``."""
        if not self.is_reference:
            return None
        return self.known_loading

    def with_shape(self, shape: Shape) -> "RegionSample":
        return replace(self, shape=shape, version=self.version + 1)

    def with_classification(self, classification) -> "RegionSample":
        """
        Return a copy with a new classification.

        Switching to ``UNKNOWN`` drops the known loading. Switching to
        ``REFERENCE`` leaves the loading unset until one is supplied.
        """
        classification = Classification.coerce(classification)
        if classification is Classification.UNKNOWN:
            return replace(self, classification=classification, known_loading=None)
        return replace(self, classification=classification)

    def with_known_loading(self, value: Optional[float]) -> "RegionSample":
        # Unknown samples ignore the loading rather than raising
        if not self.is_reference:
            return self
        return replace(self, known_loading=None if value is None else float(value))


class MeanCache:
    """
    Memoized mean for one sample.

    The cached value is valid only for the exact ``(version, grid)`` pair it
    was computed for. ``computations`` counts how often the mean was
    actually recomputed.
    """

    def __init__(self):
        self._mean: Optional[float] = None
        self._version: Optional[int] = None
        self._grid: Optional[Grid] = None
        self.computations = 0

    def valid_for(self, sample: RegionSample, grid: Grid) -> bool:
        return self._grid is grid and self._version == sample.version

    def invalidate(self) -> None:
        self._version = None
        self._grid = None
        self._mean = None

    def get(self, sample: RegionSample, grid: Grid) -> Optional[float]:
        if not self.valid_for(sample, grid):
            self._mean = mean_count(sample.shape, grid)
            self._version = sample.version
            self._grid = grid
            self.computations += 1
            logger.debug(
                "Recomputed mean for %s v%d: %s", sample.shape.kind, sample.version, self._mean
            )
        return self._mean


class TrackedSample:
    """
    A region sample that owns its mean cache.

    Examples
    --------
    >>> s = TrackedSample(Circle(2, 2, 1))
    >>> s.mean_count(Grid(np.full((5, 5), 10.0)))
    10.0
    >>> s.set_shape(Circle(2, 2, 2))
    >>> s.cache_valid
    False
    """

    def __init__(self, shape: Shape, classification=Classification.UNKNOWN,
                 known_loading: Optional[float] = None):
        self._value = RegionSample(shape, Classification.coerce(classification))
        if known_loading is not None:
            self._value = self._value.with_known_loading(known_loading)
        self._cache = MeanCache()
        self._grid: Optional[Grid] = None

    @property
    def value(self) -> RegionSample:
        return self._value

    @property
    def shape(self) -> Shape:
        return self._value.shape

    @property
    def classification(self) -> Classification:
        return self._value.classification

    @property
    def known_loading(self) -> Optional[float]:
        return self._value.known_loading

    @property
    def version(self) -> int:
        return self._value.version

    @property
    def cache(self) -> MeanCache:
        return self._cache

    @property
    def cache_valid(self) -> bool:
        """True if the last read mean still matches the current shape and grid."""
        return self._grid is not None and self._cache.valid_for(self._value, self._grid)

    def set_shape(self, shape: Shape) -> None:
        self._value = self._value.with_shape(shape)

    def commit_shape(self, shape: Shape) -> None:
        """Set a freshly drawn shape, normalizing negative rectangle extents."""
        if isinstance(shape, Rectangle):
            shape = shape.normalized()
        self.set_shape(shape)

    def set_classification(self, classification) -> None:
        self._value = self._value.with_classification(classification)

    def set_known_loading(self, value: Optional[float]) -> None:
        self._value = self._value.with_known_loading(value)

    def invalidate(self) -> None:
        self._cache.invalidate()

    def mean_count(self, grid: Grid) -> Optional[float]:
        self._grid = grid
        return self._cache.get(self._value, grid)

    def __repr__(self) -> str:
        return (
            f"TrackedSample({self._value.shape!r}, {self.classification.value}, "
            f"loading={self.known_loading}, v{self.version})"
        )
