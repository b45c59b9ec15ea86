"""Precision configuration for the mvglm_posterior package.

Controls whether the JAX kernel evaluates log-densities in float64
(the default) or float32.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_precision`.
    2. The ``MVGLM_POSTERIOR_PRECISION`` environment variable.
    3. Default: ``"float64"``.

Valid precision names are ``"float64"`` and ``"float32"``
(case-insensitive); ``"auto"`` restores the default resolution order.

HMC integrates Hamilton's equations using the gradient of the
log-density; the shrinkage-prior transforms and the onion-method
Cholesky construction involve products of many small scale factors,
so float32 round-off shows up as spurious divergences.  float32 is
therefore accepted but reported with a warning.

Examples:
    Use single precision from the shell::

        export MVGLM_POSTERIOR_PRECISION=float32

    Use single precision programmatically::

        import mvglm_posterior
        mvglm_posterior.set_precision("float32")

    Re-enable the default::

        mvglm_posterior.set_precision("auto")
"""

from __future__ import annotations

import os
import warnings

import jax

_VALID_PRECISIONS = {"float64", "float32", "auto"}

_ENV_VAR = "MVGLM_POSTERIOR_PRECISION"

# Sentinel indicating "no programmatic override has been set".
_precision_override: str | None = None


def get_precision() -> str:
    """Return the active precision name (``"float64"`` or ``"float32"``).

    Resolution order:
        1. Value set by :func:`set_precision` (unless ``"auto"``).
        2. ``MVGLM_POSTERIOR_PRECISION`` environment variable.
        3. ``"float64"``.

    Returns:
        ``"float64"`` or ``"float32"``.
    """
    # 1. Programmatic override
    if _precision_override is not None and _precision_override != "auto":
        return _precision_override

    # 2. Environment variable
    env = os.environ.get(_ENV_VAR, "").strip().lower()
    if env in ("float64", "float32"):
        return env

    # 3. Default
    return "float64"


def apply_precision() -> str:
    """Push the resolved precision into JAX's global configuration.

    Must run before the first JAX array is created for the setting to
    take effect on that array; the package calls it on import.

    Returns:
        The precision that was applied.
    """
    precision = get_precision()
    jax.config.update("jax_enable_x64", precision == "float64")
    if precision == "float32":
        warnings.warn(
            "mvglm_posterior is running in float32; log-density gradients "
            "of shrinkage and decov priors may lose accuracy.",
            UserWarning,
            stacklevel=2,
        )
    return precision


def set_precision(name: str) -> None:
    """Override the precision selection and apply it.

    Args:
        name: One of ``"float64"``, ``"float32"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised precision.
    """
    global _precision_override
    normalised = name.strip().lower()
    if normalised not in _VALID_PRECISIONS:
        msg = f"Unknown precision '{name}'. Choose from: {sorted(_VALID_PRECISIONS)}"
        raise ValueError(msg)
    _precision_override = normalised
    apply_precision()
