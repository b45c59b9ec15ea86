"""Input compatibility layer for the data boundary.

Design matrices, outcomes and group indices reach the kernel from a
data-preparation collaborator.  They may arrive as NumPy arrays,
pandas objects, or Polars objects.  This module converts all of them
to plain NumPy arrays so that the data model (``data.py``), and the
JAX kernel behind it, only ever sees ``np.ndarray``.

Polars is **not** a required dependency.  If it is not installed,
Polars inputs simply cannot occur and the converter handles pandas and
NumPy inputs only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
import pandas as pd

from ._typing import ArrayLike

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Optional: polars inputs are only recognised when it is installed.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_numpy(obj: Any, *, name: str = "input") -> np.ndarray:
    """Convert *obj* to a :class:`numpy.ndarray` if necessary.

    Accepted types:
        * ``numpy.ndarray``: returned as-is.
        * ``pandas.DataFrame`` / ``pandas.Series``: ``.to_numpy()``.
        * ``polars.DataFrame`` / ``polars.Series``: ``.to_numpy()``.
        * ``polars.LazyFrame``: collected then converted.
        * sequences and scalars: ``np.asarray``.

    Args:
        obj: Array-like input.
        name: Label used in error messages (e.g. ``"X"`` or ``"y"``).

    Returns:
        A NumPy array.

    Raises:
        TypeError: If *obj* cannot be interpreted as an array.
    """
    if isinstance(obj, np.ndarray):
        return obj
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        return obj.to_numpy()

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_numpy()
        if isinstance(obj, (pl.DataFrame, pl.Series)):
            return obj.to_numpy()

    if isinstance(obj, (str, bytes, dict)):
        msg = f"'{name}' must be array-like, got {type(obj).__name__}."
        raise TypeError(msg)
    return np.asarray(obj)


def as_float_array(obj: ArrayLike | DataFrameLike, *, name: str, ndim: int) -> np.ndarray:
    """Coerce *obj* to a float64 array with exactly *ndim* dimensions.

    A 1-D input is accepted where a 2-D matrix is expected and is
    treated as a single column.

    Raises:
        ValueError: If the dimensionality cannot be reconciled.
    """
    arr = np.asarray(_ensure_numpy(obj, name=name), dtype=np.float64)
    if ndim == 2 and arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != ndim:
        msg = f"'{name}' must be {ndim}-D, got shape {arr.shape}."
        raise ValueError(msg)
    return arr


def as_index_array(obj: ArrayLike | DataFrameLike, *, name: str) -> np.ndarray:
    """Coerce *obj* to a 1-D array of 0-based integer indices.

    Raises:
        ValueError: If the values are not whole numbers or are negative.
    """
    arr = np.asarray(_ensure_numpy(obj, name=name))
    if arr.ndim != 1:
        msg = f"'{name}' must be 1-D, got shape {arr.shape}."
        raise ValueError(msg)
    if arr.size and not np.all(np.equal(np.mod(arr, 1), 0)):
        msg = f"'{name}' must contain integer indices."
        raise ValueError(msg)
    out = arr.astype(np.int64)
    if out.size and out.min() < 0:
        msg = f"'{name}' must contain 0-based (non-negative) indices."
        raise ValueError(msg)
    return out
