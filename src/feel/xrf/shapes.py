"""
shapes: Region geometry and the cell inclusion test.

Two shapes are supported, both in grid-cell units:

- ``Circle(cx, cy, r)`` - cell ``(x, y)`` is inside iff
  ``(x - cx)**2 + (y - cy)**2 <= r**2``.
- ``Rectangle(x, y, w, h, rotation_deg)`` - ``(x, y)`` is the anchor
  corner and rotation is applied about that corner. A cell is inside iff,
  after translating by ``-(x, y)`` and rotating by ``-rotation_deg``, it
  lands in ``[0, w] x [0, h]``.

Both tests are inclusive on the boundary. Masks are only evaluated over the
shape's bounding box clipped to the grid, so a small region on a large map
never allocates a full ``(H, W)`` array.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Optional, Union

import numpy as np


@dataclass(frozen=True)
class Circle:
    cx: float
    cy: float
    r: float

    kind = "circle"


@dataclass(frozen=True)
class Rectangle:
    x: float
    y: float
    w: float
    h: float
    rotation_deg: float = 0.0

    kind = "rectangle"

    def normalized(self) -> "Rectangle":
        """
        Return the rectangle with non-negative width and height.

        A rectangle dragged up or to the left has a negative extent. The
        anchor moves to the opposite edge so the covered area is unchanged:
        ``w < 0`` gives ``x + w, |w|`` and likewise for ``h`` and ``y``.
        """
        x, w = (self.x + self.w, -self.w) if self.w < 0 else (self.x, self.w)
        y, h = (self.y + self.h, -self.h) if self.h < 0 else (self.y, self.h)
        return replace(self, x=x, y=y, w=w, h=h)


Shape = Union[Circle, Rectangle]

SHAPE_KINDS = ("circle", "rectangle")


def _is_finite(shape: Shape) -> bool:
    if isinstance(shape, Circle):
        return all(math.isfinite(v) for v in (shape.cx, shape.cy, shape.r))
    return all(
        math.isfinite(v)
        for v in (shape.x, shape.y, shape.w, shape.h, shape.rotation_deg)
    )


def _cos_sin(deg: float) -> tuple[float, float]:
    # Quarter turns are exact so rotated edges stay on integer cells
    quarter = deg / 90.0
    if quarter.is_integer():
        return ((1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0))[int(quarter) % 4]
    theta = math.radians(deg)
    return math.cos(theta), math.sin(theta)


def _rectangle_corners(rect: Rectangle) -> list[tuple[float, float]]:
    cos_t, sin_t = _cos_sin(rect.rotation_deg)
    corners = []
    for lx, ly in ((0.0, 0.0), (rect.w, 0.0), (0.0, rect.h), (rect.w, rect.h)):
        corners.append((rect.x + lx * cos_t - ly * sin_t, rect.y + lx * sin_t + ly * cos_t))
    return corners


def bounding_box(shape: Shape, width: int, height: int) -> Optional[tuple[int, int, int, int]]:
    """
    Integer cell window holding the shape's footprint, clipped to the grid.

    Returns
    -------
    tuple of (x0, y0, x1, y1) or None
        Half-open window ``[x0, x1) x [y0, y1)``. ``None`` if the window is
        empty or the geometry contains NaN/inf.
    """
    if not _is_finite(shape):
        return None
    if isinstance(shape, Circle):
        r = abs(shape.r)
        xmin, xmax = shape.cx - r, shape.cx + r
        ymin, ymax = shape.cy - r, shape.cy + r
    else:
        corners = _rectangle_corners(shape)
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        xmin, xmax, ymin, ymax = min(xs), max(xs), min(ys), max(ys)

    # One cell of slack each side; the exact test decides membership
    x0 = max(0, math.floor(xmin) - 1)
    y0 = max(0, math.floor(ymin) - 1)
    x1 = min(width, math.ceil(xmax) + 2)
    y1 = min(height, math.ceil(ymax) + 2)
    if x0 >= x1 or y0 >= y1:
        return None
    return x0, y0, x1, y1


def _inside(shape: Shape, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    if isinstance(shape, Circle):
        return (xs - shape.cx) ** 2 + (ys - shape.cy) ** 2 <= shape.r ** 2

    cos_t, sin_t = _cos_sin(shape.rotation_deg)
    cos_n, sin_n = cos_t, -sin_t
    dx = xs - shape.x
    dy = ys - shape.y
    xr = dx * cos_n - dy * sin_n
    yr = dx * sin_n + dy * cos_n
    return (xr >= 0) & (xr <= shape.w) & (yr >= 0) & (yr <= shape.h)


def contains(shape: Shape, x: float, y: float) -> bool:
    """Exact inclusion test for a single cell ``(x, y)``."""
    return bool(_inside(shape, np.float64(x), np.float64(y)))


def covered_cells(shape: Shape, width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Row and column indices of grid cells covered by ``shape``.

    Only cells with ``0 <= x < width`` and ``0 <= y < height`` are ever
    produced, so the result can index a ``(height, width)`` array directly.

    Returns
    -------
    tuple of (np.ndarray, np.ndarray)
        ``(ys, xs)`` integer arrays of equal length (possibly empty).
    """
    box = bounding_box(shape, width, height)
    if box is None:
        empty = np.empty(0, dtype=np.intp)
        return empty, empty
    x0, y0, x1, y1 = box
    ys, xs = np.ogrid[y0:y1, x0:x1]
    inside = _inside(shape, xs.astype(np.float64), ys.astype(np.float64))
    rows, cols = np.nonzero(inside)
    return rows + y0, cols + x0


def mask(shape: Shape, width: int, height: int) -> np.ndarray:
    """Materialized ``(height, width)`` boolean mask of ``shape``."""
    out = np.zeros((height, width), dtype=bool)
    ys, xs = covered_cells(shape, width, height)
    out[ys, xs] = True
    return out


def to_circle(shape: Shape) -> Circle:
    """
    Convert to a circle.

    A rectangle becomes a circle centered on its anchor corner whose radius
    is the rectangle's diagonal.
    """
    if isinstance(shape, Circle):
        return shape
    return Circle(shape.x, shape.y, math.hypot(shape.w, shape.h))


def to_rectangle(shape: Shape) -> Rectangle:
    """Convert to a rectangle anchored at the circle center with ``w = h = r``."""
    if isinstance(shape, Rectangle):
        return shape
    return Rectangle(shape.cx, shape.cy, shape.r, shape.r)


def replace_anchor(shape: Shape, x: float, y: float) -> Shape:
    """Move the anchor (circle center, rectangle corner) to ``(x, y)``."""
    if isinstance(shape, Circle):
        return replace(shape, cx=x, cy=y)
    return replace(shape, x=x, y=y)


def shape_to_dict(shape: Shape) -> dict[str, Any]:
    """Plain-dict form used for widget sync."""
    if isinstance(shape, Circle):
        return {"kind": "circle", "cx": shape.cx, "cy": shape.cy, "r": shape.r}
    return {
        "kind": "rectangle",
        "x": shape.x,
        "y": shape.y,
        "w": shape.w,
        "h": shape.h,
        "rotation_deg": shape.rotation_deg,
    }


def shape_from_dict(data: dict[str, Any]) -> Shape:
    kind = str(data.get("kind", "circle")).strip().lower()
    if kind == "circle":
        return Circle(float(data["cx"]), float(data["cy"]), float(data["r"]))
    if kind == "rectangle":
        return Rectangle(
            float(data["x"]),
            float(data["y"]),
            float(data["w"]),
            float(data["h"]),
            float(data.get("rotation_deg", 0.0)),
        )
    supported = ", ".join(f'"{k}"' for k in SHAPE_KINDS)
    raise ValueError(f"Unknown shape kind {kind!r}. Supported values: {supported}.")
