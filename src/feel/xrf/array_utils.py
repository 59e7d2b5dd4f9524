"""
Host-side conversion of count maps coming from NumPy, CuPy, or PyTorch.

Maps read from instrument exports are plain NumPy arrays, but a map that
was produced on the GPU can be handed over as-is. The region math only ever
sees a private, read-only float64 copy on the host.
"""

from typing import Any, Literal
import numpy as np


ArrayBackend = Literal["numpy", "cupy", "torch", "unknown"]


def get_array_backend(data: Any) -> ArrayBackend:
    """
    Name the array library ``data`` comes from.

    Returns
    -------
    str
        ``"numpy"``, ``"cupy"``, ``"torch"``, or ``"unknown"`` for lists
        and other array-likes.
    """
    if isinstance(data, np.ndarray):
        return "numpy"
    # torch.Tensor exposes both; nothing else in practice does
    if callable(getattr(data, "detach", None)) and callable(getattr(data, "numpy", None)):
        return "torch"
    if hasattr(data, "__cuda_array_interface__") or type(data).__module__.startswith("cupy"):
        return "cupy"
    return "unknown"


def _cupy_to_host(data: Any) -> np.ndarray:
    if hasattr(data, "get"):
        return data.get()
    import cupy as cp

    return cp.asnumpy(data)


_TO_HOST = {
    "numpy": lambda data: data,
    "torch": lambda data: data.detach().cpu().numpy(),
    "cupy": _cupy_to_host,
    "unknown": np.asarray,
}


def to_numpy(data: Any, dtype: np.dtype | None = None) -> np.ndarray:
    """
    Return ``data`` as a host NumPy array.

    NumPy input is passed through without a copy unless ``dtype`` differs.

    Parameters
    ----------
    data : array-like
        NumPy/CuPy array, PyTorch tensor, or nested lists.
    dtype : np.dtype, optional
        Cast to this dtype. Keeps the source dtype when omitted.

    Examples
    --------
    >>> to_numpy([[1, 2], [3, 4]], dtype=np.float64).shape
    (2, 2)
    """
    result = _TO_HOST[get_array_backend(data)](data)
    if dtype is None:
        return np.asarray(result)
    return np.asarray(result, dtype=dtype)


def as_count_map(data: Any) -> np.ndarray:
    """
    Convert ``data`` to a fresh, read-only ``(H, W)`` float64 array.

    Raises
    ------
    ValueError
        If the input is not 2D or has a zero-length axis.
    """
    arr = np.array(to_numpy(data), dtype=np.float64, copy=True)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2D (H, W) count map, got {arr.ndim}D input.")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise ValueError(f"Count map must be non-empty, got shape {arr.shape}.")
    arr.setflags(write=False)
    return arr
