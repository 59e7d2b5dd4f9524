"""
calibrate2d: Interactive XRF map calibration widget.

Draw reference and unknown regions over a count map, enter the known
loading of each reference, and read back the fitted count-to-loading line
and the estimated loading of every region.
"""

import math
import pathlib
from typing import List, Optional

import anywidget
import numpy as np
import traitlets

from feel.xrf import __version__
from feel.xrf.autodetect import preprocess_stages
from feel.xrf.calibration import CalibrationCurve, CalibrationResult
from feel.xrf.grid import Grid, load_map
from feel.xrf.sample import Classification, TrackedSample
from feel.xrf.session import AnalysisSession
from feel.xrf.shapes import (
    SHAPE_KINDS,
    Circle,
    Rectangle,
    Shape,
    replace_anchor,
    shape_from_dict,
    shape_to_dict,
)


_STATIC = pathlib.Path(__file__).parent / "static"
_ESM = _STATIC / "calibrate2d.js"
_CSS = _STATIC / "calibrate2d.css"

_DRAW_MODES = ("none", "reference", "unknown")


def _finite_or_none(value):
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


class Calibrate2D(anywidget.AnyWidget):
    """
    Calibrate an XRF count map against reference regions.

    Regions are circles or (optionally rotated) rectangles in grid-cell
    units. Reference regions with a known loading are fitted with an
    ordinary least squares line ``loading = slope * counts + intercept``;
    the line is then applied to the mean count of every region.

    Parameters
    ----------
    data : array_like, Grid, str or pathlib.Path
        Count map. Accepts a 2D array ``(H, W)`` (NumPy, CuPy, PyTorch), a
        ``Grid``, or the path of a semicolon-delimited map file.
    title : str, default ""
        Title shown in the widget header. Empty shows ``"Calibrate2D"``.
    cmap : str, default "cool"
        Colormap used by the frontend heatmap.
    scale : float, default 1.0
        Display scale factor (CSS pixels per grid cell).
    samples : list of dict, optional
        Initial regions, in the same form as ``sample_list``:
        ``{"shape": {"kind": "circle", "cx": 4, "cy": 4, "r": 2},
        "classification": "reference", "known_loading": 12.5}``.
    draw_shape : str, default "circle"
        Shape drawn by the next pointer drag. ``"circle"`` or ``"rectangle"``.
    loading_unit : str, default "µg/cm²"
        Unit label for loadings.
    show_controls : bool, default True
        Show the control row below the canvas.

    Attributes
    ----------
    sample_list : list of dict
        Regions, synced with the frontend. Each entry has ``id``, ``shape``
        (dict with ``kind``), ``classification`` and ``known_loading``.
        Edits made by dragging in the frontend arrive here.
    sample_stats : list of dict
        Per-region ``label``, ``mean_count`` and ``estimated_loading``
        (``None`` when not available).
    calibration : dict
        ``status`` is ``"ok"``, ``"insufficient"`` or ``"degenerate"``.
        ``slope``, ``intercept``, ``r`` are present when ``status == "ok"``.

    Examples
    --------
    >>> import numpy as np
    >>> from feel.xrf import Calibrate2D
    >>> counts = np.random.poisson(100, (64, 64)).astype(float)
    >>> w = Calibrate2D(counts)
    >>> w.add_circle(10, 10, 4, classification="reference", known_loading=5.0)
    >>> w.add_circle(40, 40, 4, classification="reference", known_loading=20.0)
    >>> w.add_rectangle(20, 30, 8, 6)
    >>> w.calibration["status"]
    'ok'
    >>> w.estimated_loadings()
    """

    _esm = _ESM if _ESM.exists() else "export function render() {}"
    _css = _CSS if _CSS.exists() else ""

    widget_version = traitlets.Unicode("unknown").tag(sync=True)

    # Map
    width = traitlets.Int(0).tag(sync=True)
    height = traitlets.Int(0).tag(sync=True)
    frame_bytes = traitlets.Bytes(b"").tag(sync=True)
    img_min = traitlets.Float(0.0).tag(sync=True)
    img_max = traitlets.Float(0.0).tag(sync=True)

    # Display
    title = traitlets.Unicode("").tag(sync=True)
    cmap = traitlets.Unicode("cool").tag(sync=True)
    scale = traitlets.Float(1.0).tag(sync=True)
    loading_unit = traitlets.Unicode("µg/cm²").tag(sync=True)
    show_controls = traitlets.Bool(True).tag(sync=True)

    # Drawing state (pointer handling lives in the frontend)
    draw_mode = traitlets.Unicode("none").tag(sync=True)
    draw_shape = traitlets.Unicode("circle").tag(sync=True)

    # Regions and derived values
    sample_list = traitlets.List().tag(sync=True)
    sample_stats = traitlets.List().tag(sync=True)
    calibration = traitlets.Dict().tag(sync=True)

    @traitlets.validate("draw_mode")
    def _validate_draw_mode(self, proposal):
        value = str(proposal["value"]).strip().lower()
        if value not in _DRAW_MODES:
            supported = ", ".join(f'"{m}"' for m in _DRAW_MODES)
            raise traitlets.TraitError(f"Unknown draw mode {value!r}. Supported values: {supported}.")
        return value

    @traitlets.validate("draw_shape")
    def _validate_draw_shape(self, proposal):
        value = str(proposal["value"]).strip().lower()
        if value not in SHAPE_KINDS:
            supported = ", ".join(f'"{k}"' for k in SHAPE_KINDS)
            raise traitlets.TraitError(f"Unknown shape {value!r}. Supported values: {supported}.")
        return value

    def __init__(
        self,
        data,
        title: str = "",
        cmap: str = "cool",
        scale: float = 1.0,
        samples: Optional[List[dict]] = None,
        draw_shape: str = "circle",
        loading_unit: str = "µg/cm²",
        show_controls: bool = True,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.widget_version = __version__
        self._session = AnalysisSession()
        self._ids: list[int] = []
        self._syncing = False

        self.title = title
        self.cmap = cmap
        self.scale = scale
        self.draw_shape = draw_shape
        self.loading_unit = loading_unit
        self.show_controls = show_controls
        self._set_data(data)
        if samples:
            self._apply_entries(samples)
        self.observe(self._on_sample_list_change, names=["sample_list"])
        self._publish()

    # ── Map ─────────────────────────────────────────────────────────────────

    def _set_data(self, data, keep_samples: bool = True):
        if isinstance(data, Grid):
            grid = data
        elif isinstance(data, (str, pathlib.Path)):
            grid = load_map(data)
            if not self.title:
                self.title = pathlib.Path(data).stem
        else:
            grid = Grid(data)

        self._session.set_grid(grid, keep_samples=keep_samples)
        if not keep_samples:
            self._ids = []

        frame = grid.values.astype(np.float32)
        finite = frame[np.isfinite(frame)]
        with self.hold_sync():
            self.height = grid.height
            self.width = grid.width
            self.img_min = float(finite.min()) if finite.size else 0.0
            self.img_max = float(finite.max()) if finite.size else 0.0
            self.frame_bytes = frame.tobytes()

    @property
    def grid(self) -> Grid:
        return self._session.grid

    @property
    def session(self) -> AnalysisSession:
        return self._session

    def set_image(self, data, keep_samples: bool = True):
        """
        Replace the count map.

        Every cached mean is recomputed against the new map on next read.

        Parameters
        ----------
        data : array_like, Grid, str or pathlib.Path
            Same formats as the constructor.
        keep_samples : bool, default True
            Keep the drawn regions. ``False`` clears them.
        """
        self._set_data(data, keep_samples=keep_samples)
        self._publish()

    # ── Frontend sync ───────────────────────────────────────────────────────

    def _entry(self, sample_id: int, sample: TrackedSample) -> dict:
        return {
            "id": sample_id,
            "shape": shape_to_dict(sample.shape),
            "classification": sample.classification.value,
            "known_loading": sample.known_loading,
        }

    def _publish(self):
        """Push session samples and derived values to the synced traits."""
        self._syncing = True
        try:
            with self.hold_sync():
                self.sample_list = [
                    self._entry(sid, sample) for sid, sample in zip(self._ids, self._session)
                ]
                self._refresh_stats()
        finally:
            self._syncing = False

    def _refresh_stats(self):
        rows = self._session.rows()
        curve = self._session.calibration()
        self.sample_stats = [
            {
                "id": sid,
                "label": row.label,
                "mean_count": _finite_or_none(row.mean_count),
                "estimated_loading": _finite_or_none(row.estimated_loading),
            }
            for sid, row in zip(self._ids, rows)
        ]
        self.calibration = curve.to_dict()

    def _on_sample_list_change(self, change=None):
        if self._syncing:
            return
        try:
            self._apply_entries(self.sample_list)
        finally:
            # A rejected edit puts the last valid list back on the trait
            self._publish()

    def _parse_entries(self, entries) -> list:
        parsed = []
        seen: set[int] = set()
        for entry in entries:
            if not isinstance(entry, dict) or "shape" not in entry:
                raise ValueError(f"Invalid sample entry: {entry!r}")
            try:
                shape = shape_from_dict(entry["shape"])
                loading = entry.get("known_loading")
                loading = None if loading is None else float(loading)
                sid = entry.get("id")
                sid = None if sid is None else int(sid)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Invalid sample entry: {entry!r}") from exc
            classification = Classification.coerce(entry.get("classification", "unknown"))
            if isinstance(shape, Rectangle):
                shape = shape.normalized()
            if sid is not None:
                if sid in seen:
                    raise ValueError(f"Duplicate sample id {sid}.")
                seen.add(sid)
            parsed.append((sid, shape, classification, loading))
        return parsed

    def _apply_entries(self, entries):
        """
        Replace the regions with ``entries`` (the ``sample_list`` form).

        Every entry is validated before any region changes. An entry whose
        ``id`` matches an existing region updates that region in place;
        the rest become new regions.
        """
        parsed = self._parse_entries(entries)
        by_id = dict(zip(self._ids, self._session))
        known = [sid for sid, *_ in parsed if sid is not None]
        next_id = max(self._ids + known, default=-1) + 1

        ids: list[int] = []
        samples: list[TrackedSample] = []
        for sid, shape, classification, loading in parsed:
            sample = by_id.get(sid) if sid is not None else None
            if sample is None:
                sample = TrackedSample(shape, classification)
                if sid is None:
                    sid = next_id
                    next_id += 1
            else:
                # Unchanged geometry keeps the cached mean
                if shape != sample.shape:
                    sample.set_shape(shape)
                if classification is not sample.classification:
                    sample.set_classification(classification)
            if loading != sample.known_loading:
                sample.set_known_loading(loading)
            ids.append(sid)
            samples.append(sample)

        self._ids = ids
        self._session.replace_samples(samples)

    # ── Region API ──────────────────────────────────────────────────────────

    def _resolve_index(self, index: Optional[int] = None, sample_id: Optional[int] = None) -> int:
        """List position of one region by index or id (defaults to the most recently added)."""
        if index is not None and sample_id is not None:
            raise ValueError("Pass either index or sample_id, not both.")
        n = len(self._ids)
        if n == 0:
            raise ValueError("No regions are defined.")

        if sample_id is not None:
            target = int(sample_id)
            if target not in self._ids:
                raise ValueError(f"Region id {sample_id} not found.")
            return self._ids.index(target)

        idx = -1 if index is None else int(index)
        if idx < -n or idx >= n:
            raise IndexError(f"Sample index {idx} out of range for {n} samples.")
        return idx % n

    def _add(self, shape: Shape, classification, known_loading) -> int:
        self._session.add_sample(shape, classification, known_loading)
        sid = max(self._ids, default=-1) + 1
        self._ids.append(sid)
        self._publish()
        return sid

    def add_circle(self, cx: float, cy: float, r: float,
                   classification: str = "unknown", known_loading: Optional[float] = None) -> int:
        """
        Add a circular region.

        Parameters
        ----------
        cx, cy : float
            Center in grid cells (column, row).
        r : float
            Radius in grid cells.
        classification : str, default "unknown"
            ``"reference"`` or ``"unknown"``.
        known_loading : float, optional
            Loading of a reference region. Ignored for unknown regions.

        Returns
        -------
        int
            The new region's ``id``. Pass it as ``sample_id=`` to the
            editing methods; it stays valid when other regions are removed.
        """
        return self._add(Circle(float(cx), float(cy), float(r)), classification, known_loading)

    def add_rectangle(self, x: float, y: float, w: float, h: float, rotation_deg: float = 0.0,
                      classification: str = "unknown", known_loading: Optional[float] = None) -> int:
        """
        Add a rectangular region.

        ``(x, y)`` is the anchor corner and rotation is applied about it.
        Negative ``w``/``h`` are normalized so the anchor ends up on the
        top-left edge.

        Returns
        -------
        int
            The new region's ``id``.
        """
        shape = Rectangle(float(x), float(y), float(w), float(h), float(rotation_deg))
        return self._add(shape, classification, known_loading)

    def set_shape(self, shape: Shape, index: Optional[int] = None, sample_id: Optional[int] = None):
        """
        Replace the geometry of one region.

        The editing methods below all select the region the same way. By
        default the most recently added region is edited.

        Parameters
        ----------
        shape : Circle or Rectangle
            New geometry.
        index : int, optional
            Position in ``sample_list``. Supports negative indexing.
        sample_id : int, optional
            Region ``id`` as returned by ``add_circle``/``add_rectangle``.
            Mutually exclusive with ``index``.
        """
        idx = self._resolve_index(index, sample_id)
        if isinstance(shape, Rectangle):
            shape = shape.normalized()
        self._session.update_sample(idx, shape=shape)
        self._publish()

    def move_sample(self, x: float, y: float, index: Optional[int] = None,
                    sample_id: Optional[int] = None):
        """Move a region so its anchor (circle center, rectangle corner) is at ``(x, y)``."""
        idx = self._resolve_index(index, sample_id)
        shape = replace_anchor(self._session[idx].shape, float(x), float(y))
        self._session.update_sample(idx, shape=shape)
        self._publish()

    def set_classification(self, classification: str, index: Optional[int] = None,
                           sample_id: Optional[int] = None):
        """
        Mark a region as ``"reference"`` or ``"unknown"``.

        Making a region unknown discards its known loading.
        """
        idx = self._resolve_index(index, sample_id)
        self._session.update_sample(idx, classification=classification)
        self._publish()

    def set_loading(self, loading: Optional[float], index: Optional[int] = None,
                    sample_id: Optional[int] = None):
        """Set (or with ``None`` clear) the known loading of a reference region."""
        idx = self._resolve_index(index, sample_id)
        self._session.update_sample(idx, known_loading=loading)
        self._publish()

    def remove_sample(self, index: Optional[int] = None, sample_id: Optional[int] = None):
        idx = self._resolve_index(index, sample_id)
        self._session.remove_sample(idx)
        del self._ids[idx]
        self._publish()

    def clear_samples(self):
        self._session.clear_samples()
        self._ids = []
        self._publish()

    # ── Results ─────────────────────────────────────────────────────────────

    def calibration_curve(self) -> CalibrationResult:
        """
        Current calibration result.

        Returns
        -------
        CalibrationCurve, InsufficientData or DegenerateFit
        """
        return self._session.calibration()

    def mean_counts(self) -> List[Optional[float]]:
        return [self._session.mean_count(i) for i in range(len(self._session))]

    def estimated_loadings(self) -> List[Optional[float]]:
        curve = self._session.calibration()
        return [self._session.estimate(i, curve) for i in range(len(self._session))]

    def autodetect_preview(self) -> dict:
        """
        Preprocessing stages for automatic region detection.

        Returns
        -------
        dict of str to np.ndarray
            ``"Normalized"`` and ``"Gaussian"`` float32 maps in ``[0, 1]``.
        """
        return preprocess_stages(self.grid)

    def __repr__(self) -> str:
        n_ref = sum(1 for s in self._session if s.value.is_reference)
        n_unk = len(self._session) - n_ref
        parts = [f"{self.height}×{self.width}", f"references={n_ref}", f"unknowns={n_unk}"]
        curve = self._session.calibration()
        if isinstance(curve, CalibrationCurve):
            parts.append(f"slope={curve.slope:.4g}")
        else:
            parts.append(f"calibration={curve.status}")
        return f"Calibrate2D({', '.join(parts)})"

    def summary(self):
        """Print the map, every region, and the calibration."""
        lines = [self.title or "Calibrate2D", "═" * 32]
        lines.append(f"Map:      {self.height}×{self.width}")
        lines.append(f"Range:    [{self.img_min:.4g}, {self.img_max:.4g}]")
        curve = self._session.calibration()
        lines.append(f"Fit:      {curve.message}")
        unit = self.loading_unit
        for row in self._session.rows():
            count = "not calculated" if row.mean_count is None else f"{row.mean_count:.2f} counts"
            known = "" if row.known_loading is None else f"  known {row.known_loading:.2f} {unit}"
            est = "n/a" if row.estimated_loading is None else f"{row.estimated_loading:.2f} {unit}"
            lines.append(f"  {row.label}: {row.shape.kind}  {count}{known}  est. {est}")
        print("\n".join(lines))

