"""Typed derived-quantity objects for reporting.

Frozen dataclasses that provide:

* **Attribute access**: ``derived.intercepts``, ``derived.correlations``.
* **Dict-like access**: ``derived["intercepts"]``, ``derived.get("key")``,
  ``"key" in derived`` for consumers that prefer bracket syntax.
* **Serialisation**: ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

These are side outputs of one parameter draw; they never enter the
log-density.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar

import numpy as np

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, and
    np.floating so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports ``result["key"]`` (``KeyError`` on miss),
    ``result.get(key, default)`` and ``"key" in result``.
    """

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# DerivedQuantities
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DerivedQuantities(_DictAccessMixin):
    """Reporting quantities of one draw of the multivariate model.

    Per-submodel lists are in submodel order; per-factor lists in
    grouping-factor order.
    """

    intercepts: list[float | None]
    """Intercepts on the uncentred predictor scale, ``gamma - x_bar · beta``
    (``None`` for submodels without an intercept)."""

    coefficients: list[np.ndarray]
    """Regression coefficients ``beta`` per submodel."""

    aux: list[float | None]
    """Scaled auxiliary parameters (``None`` where the family has none)."""

    correlations: list[np.ndarray | float]
    """Correlation matrix per grouping factor; ``1.0`` when the factor has
    at most one coefficient."""

    covariances: list[np.ndarray]
    """Covariance matrix ``(bK, bK)`` per grouping factor."""

    group_coefficients: list[np.ndarray]
    """Group-specific coefficients per factor, the ``(groups, bK)`` matrix
    flattened row by row."""


@dataclass(frozen=True)
class LinearModelDerived(_DictAccessMixin):
    """Reporting quantities of one draw of the R² linear model, per group."""

    coefficients: list[np.ndarray]
    """Coefficients ``beta_j = R_inv_j theta_j``."""

    intercepts: list[float | None]
    """Intercepts on the uncentred predictor scale."""

    sigma: list[float]
    """Residual standard deviations."""

    r_squared: list[float]
    """Proportions of variance explained."""
