"""
grid: Immutable 2D map of XRF counts.

The grid is the only data the region math reads. It is row-major with the
origin at the top-left cell, so ``values[y, x]`` is the count at column
``x`` and row ``y``.
"""

from __future__ import annotations

import csv
import logging
import pathlib
import warnings
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from feel.xrf.array_utils import as_count_map

logger = logging.getLogger(__name__)

DEFAULT_DELIMITER = ";"


@dataclass(frozen=True, eq=False)
class Grid:
    """
    Read-only ``(H, W)`` map of non-negative float counts.

    Parameters
    ----------
    values : array_like
        2D array (NumPy, CuPy, PyTorch, or nested lists). A private
        float64 copy is taken and marked read-only.

    Examples
    --------
    >>> g = Grid(np.full((5, 5), 10.0))
    >>> g.width, g.height
    (5, 5)
    >>> g.value(7, 0) is None
    True
    """

    values: np.ndarray

    def __init__(self, values: Any):
        object.__setattr__(self, "values", as_count_map(values))

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Grid":
        """Build a grid from row-major nested lists."""
        return cls(np.asarray(rows, dtype=np.float64))

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def value(self, x: int, y: int) -> Optional[float]:
        """Count at cell ``(x, y)``, or ``None`` outside the grid."""
        if not self.contains(x, y):
            return None
        return float(self.values[y, x])

    def __repr__(self) -> str:
        return f"Grid(width={self.width}, height={self.height})"


def _parse_cell(text: str) -> Optional[float]:
    try:
        return float(text.strip())
    except ValueError:
        return None


def parse_rows(lines: Iterable[str], delimiter: str = DEFAULT_DELIMITER) -> tuple[np.ndarray, int]:
    """
    Parse headerless delimited text into a float array.

    Returns
    -------
    tuple of (np.ndarray, int)
        The ``(H, W)`` array and the number of cells that failed to parse
        and were replaced by ``0.0``. Ragged rows are padded with ``0.0``.
    """
    rows: list[list[float]] = []
    bad = 0
    for record in csv.reader(lines, delimiter=delimiter):
        if not record or all(not cell.strip() for cell in record):
            continue
        row = []
        for cell in record:
            parsed = _parse_cell(cell)
            if parsed is None:
                bad += 1
                parsed = 0.0
            row.append(parsed)
        rows.append(row)

    if not rows:
        raise ValueError("Map file contains no rows.")

    width = max(len(r) for r in rows)
    arr = np.zeros((len(rows), width), dtype=np.float64)
    for i, row in enumerate(rows):
        arr[i, : len(row)] = row
    return arr, bad


def load_map(path: str | pathlib.Path, delimiter: str = DEFAULT_DELIMITER) -> Grid:
    """
    Load an XRF count map from a delimited text file.

    Each line is one grid row. Cells are separated by ``delimiter``
    (semicolon by default, as written by the instrument export). Cells that
    are not numbers are read as ``0.0``.

    Parameters
    ----------
    path : str or pathlib.Path
        ``.txt`` or ``.csv`` file.
    delimiter : str, default ";"
        Cell separator.

    Returns
    -------
    Grid

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    ValueError
        If the file holds no rows.
    """
    path = pathlib.Path(path)
    with path.open(newline="", encoding="utf-8") as fh:
        arr, bad = parse_rows(fh, delimiter=delimiter)
    if bad:
        warnings.warn(
            f"{bad} cell(s) in {path.name} could not be parsed and were set to 0.0",
            stacklevel=2,
        )
    logger.info("Loaded map %s (%dx%d)", path.name, arr.shape[1], arr.shape[0])
    return Grid(arr)
