"""
autodetect: Preprocessing stages shown before automatic region detection.

The map is min-max normalized to ``[0, 1]`` and then smoothed with a small
Gaussian kernel. Both stages are returned so the user can compare them.
Pure NumPy, no scipy.
"""

from __future__ import annotations

import numpy as np

from feel.xrf.grid import Grid

GAUSSIAN_KERNEL_SIZE = 5
GAUSSIAN_SIGMA = 1.0


def normalize(values: np.ndarray) -> np.ndarray:
    """Min-max scale to ``[0, 1]``. Constant or all-NaN maps give zeros."""
    arr = np.asarray(values, dtype=np.float32)
    finite = np.isfinite(arr)
    if not finite.any():
        return np.zeros(arr.shape, dtype=np.float32)
    vmin = float(arr[finite].min())
    vmax = float(arr[finite].max())
    if vmax <= vmin:
        return np.zeros(arr.shape, dtype=np.float32)
    out = (arr - vmin) / (vmax - vmin)
    out[~finite] = 0.0
    return out.astype(np.float32)


def gaussian_kernel(size: int = GAUSSIAN_KERNEL_SIZE, sigma: float = GAUSSIAN_SIGMA) -> np.ndarray:
    """Normalized 1D Gaussian taps of odd length ``size``."""
    if size < 1 or size % 2 == 0:
        raise ValueError(f"Kernel size must be a positive odd integer, got {size}.")
    if sigma <= 0:
        raise ValueError(f"Sigma must be positive, got {sigma}.")
    half = size // 2
    t = np.arange(-half, half + 1, dtype=np.float64)
    k = np.exp(-(t ** 2) / (2.0 * sigma ** 2))
    return k / k.sum()


def gaussian_blur(values: np.ndarray, size: int = GAUSSIAN_KERNEL_SIZE,
                  sigma: float = GAUSSIAN_SIGMA) -> np.ndarray:
    """
    Separable Gaussian blur with a zero (constant) border.

    Parameters
    ----------
    values : np.ndarray
        2D array.
    size : int, default 5
        Kernel width and height.
    sigma : float, default 1.0
        Standard deviation in cells.
    """
    arr = np.asarray(values, dtype=np.float64)
    k = gaussian_kernel(size, sigma)
    half = size // 2
    h, w = arr.shape
    padded = np.pad(arr, half, mode="constant", constant_values=0.0)
    rows = np.zeros((h + 2 * half, w), dtype=np.float64)
    for i, tap in enumerate(k):
        rows += tap * padded[:, i:i + w]
    out = np.zeros((h, w), dtype=np.float64)
    for i, tap in enumerate(k):
        out += tap * rows[i:i + h, :]
    return out.astype(np.float32)


def preprocess_stages(grid: Grid) -> dict[str, np.ndarray]:
    """
    Preprocessing stages in display order.

    Returns
    -------
    dict of str to np.ndarray
        ``{"Normalized": ..., "Gaussian": ...}``, float32 ``(H, W)``.
    """
    normalized = normalize(grid.values)
    return {
        "Normalized": normalized,
        "Gaussian": gaussian_blur(normalized),
    }


def to_uint8(stage: np.ndarray) -> np.ndarray:
    """Scale a ``[0, 1]`` stage to 8-bit for display."""
    return np.clip(np.asarray(stage, dtype=np.float64) * 255.0, 0, 255).astype(np.uint8)
