"""Group-specific coefficients from covariance primitives.

Two exclusive parameterisations of the group-level covariance are
supported, selected by the model's covariance prior.

Decov
~~~~~
Every grouping factor is one *term* with ``p`` coefficients (summed
over the submodels that use the factor) and ``l`` levels.  The
covariance matrix of a term is decomposed as

    Σ = (τ · scale · dispersion)² · p · diag(π) ⊙ Ω

with ``π`` a simplex of variance proportions (``zeta`` normalised to
sum to one) and ``Ω`` a correlation matrix built by the onion method
from ``rho`` and ``z_T``.  :func:`make_theta_L` stores the Cholesky
factor ``T`` of every term in one flat vector ``theta_L``; per term
``p + C(p, 2)`` entries, column-major (for each column the diagonal
entry, then the entries below it).  A term with ``p == 1`` stores the
single standard deviation.  :func:`make_b_matrix_decov` parses one
term back out and returns the ``(levels, p)`` coefficient matrix.

LKJ
~~~
Per grouping factor, standard deviations ``sd`` (``bK``), a matrix of
standard-normal primitives ``Z`` (``bK × groups``) and, when
``bK > 1``, the Cholesky factor ``L`` of a correlation matrix.
:func:`make_b_matrix_lkj` returns ``(diag(sd) L Z)ᵀ``.

Both return ``(groups, bK)`` matrices whose columns follow the
submodels' contiguous coefficient partition
(:class:`~.layout.FactorPartition`).
"""

from __future__ import annotations

from typing import Any

import jax.numpy as jnp
import numpy as np

from .layout import DecovLayout, DecovTermLayout

# ------------------------------------------------------------------ #
# Column-major vech
# ------------------------------------------------------------------ #


def _vech_indices(p: int) -> tuple[np.ndarray, np.ndarray]:
    """Row and column indices of the lower triangle in column-major order."""
    cols, rows = np.triu_indices(p)
    return rows, cols


def vech_lower(T: Any) -> jnp.ndarray:
    """Flatten the lower triangle of *T* column by column."""
    rows, cols = _vech_indices(T.shape[0])
    return T[rows, cols]


def unvech_lower(theta: Any, p: int) -> jnp.ndarray:
    """Inverse of :func:`vech_lower`: rebuild the ``(p, p)`` lower-triangular matrix."""
    rows, cols = _vech_indices(p)
    return jnp.zeros((p, p), dtype=jnp.result_type(theta)).at[rows, cols].set(theta)


# ------------------------------------------------------------------ #
# Decov
# ------------------------------------------------------------------ #


def _onion_cholesky(
    trace: Any,
    pi: jnp.ndarray,
    rho: jnp.ndarray,
    z_T: jnp.ndarray,
    p: int,
) -> jnp.ndarray:
    """Cholesky factor of one term's covariance via the onion method.

    Row ``r`` (0-based, ``r >= 2``) consumes ``r`` entries of *z_T*
    and one entry of *rho*; the first two rows use ``rho[0]`` only.
    """
    T = jnp.zeros((p, p), dtype=jnp.result_type(trace, pi))
    std_dev = jnp.sqrt(pi[0] * trace)
    T = T.at[0, 0].set(std_dev)
    std_dev = jnp.sqrt(pi[1] * trace)
    t21 = 2.0 * rho[0] - 1.0
    T = T.at[1, 1].set(std_dev * jnp.sqrt(1.0 - jnp.square(t21)))
    T = T.at[1, 0].set(std_dev * t21)
    z_mark = 0
    for r in range(2, p):
        row = z_T[z_mark : z_mark + r]
        z_mark += r
        scale_factor = jnp.sqrt(rho[r - 1] / jnp.dot(row, row)) * std_dev
        std_dev = jnp.sqrt(pi[r] * trace)
        T = T.at[r, :r].set(row * scale_factor)
        T = T.at[r, r].set(jnp.sqrt(1.0 - rho[r - 1]) * std_dev)
    return T


def make_theta_L(
    layout: DecovLayout,
    tau: Any,
    scale: Any,
    zeta: Any,
    rho: Any,
    z_T: Any,
    dispersion: Any = 1.0,
) -> jnp.ndarray:
    """Flat Cholesky-factor vector of all decov terms.

    Args:
        layout: Decov offsets.
        tau: Per-term trace primitives ``(t,)``.
        scale: Per-term prior scales ``(t,)``.
        zeta: Concentration primitives, ``p`` per term with ``p > 1``.
        rho: Onion-method primitives in ``(0, 1)``, ``p - 1`` per term
            with ``p > 1``.
        z_T: Onion-method direction primitives.
        dispersion: Multiplier of every term's scale (the running
            maximum of the scaled auxiliary parameters).

    Returns:
        ``theta_L`` of length ``layout.len_theta_L``.
    """
    pieces = []
    for term in layout.terms:
        sd = tau[term.index] * scale[term.index] * dispersion
        if term.p == 1:
            pieces.append(jnp.reshape(sd, (1,)))
            continue
        trace = jnp.square(sd) * term.p
        pi = zeta[term.zeta]
        pi = pi / jnp.sum(pi)
        T = _onion_cholesky(trace, pi, rho[term.rho], z_T[term.z_T], term.p)
        pieces.append(vech_lower(T))
    if not pieces:
        return jnp.zeros((0,))
    return jnp.concatenate(pieces)


def term_cholesky(theta_L: Any, term: DecovTermLayout) -> jnp.ndarray:
    """The ``(p, p)`` lower-triangular factor of *term* stored in *theta_L*."""
    return unvech_lower(theta_L[term.theta_L], term.p)


def make_b_matrix_decov(z_b: Any, theta_L: Any, term: DecovTermLayout) -> jnp.ndarray:
    """Group coefficients of one decov term as a ``(levels, p)`` matrix.

    ``p == 1``: ``theta_L[term] * z_b[level]``.  ``p > 1``: each
    level's ``p`` primitives are multiplied by the term's factor,
    ``T @ z_b[level segment]``.
    """
    z = jnp.reshape(z_b[term.z_b], (term.levels, term.p))
    if term.p == 1:
        return theta_L[term.theta_L.start] * z
    return z @ term_cholesky(theta_L, term).T


def make_b_matrices_decov(
    layout: DecovLayout,
    z_b: Any,
    theta_L: Any,
) -> list[jnp.ndarray]:
    """One ``(levels, p)`` matrix per decov term, in term order."""
    return [make_b_matrix_decov(z_b, theta_L, term) for term in layout.terms]


# ------------------------------------------------------------------ #
# LKJ
# ------------------------------------------------------------------ #


def make_b_matrix_lkj(sd: Any, z_mat: Any, cholesky: Any = None) -> jnp.ndarray:
    """Group coefficients of one grouping factor under the LKJ prior.

    Args:
        sd: Standard deviations ``(bK,)``.
        z_mat: Standard-normal primitives ``(bK, groups)``.
        cholesky: Cholesky factor ``(bK, bK)`` of the correlation
            matrix; ignored when ``bK == 1``.

    Returns:
        ``(groups, bK)`` matrix.
    """
    sd = jnp.asarray(sd)
    z_mat = jnp.asarray(z_mat)
    if sd.shape[0] == 1:
        return (sd[:, None] * z_mat).T
    return (jnp.diag(sd) @ cholesky @ z_mat).T


# ------------------------------------------------------------------ #
# Derived matrices
# ------------------------------------------------------------------ #


def correlation_from_cholesky(cholesky: Any) -> jnp.ndarray:
    """``L Lᵀ``."""
    return cholesky @ cholesky.T


def correlation_from_covariance(cov: Any) -> jnp.ndarray:
    sd = jnp.sqrt(jnp.diag(cov))
    return cov / jnp.outer(sd, sd)


def covariance_from_lkj(sd: Any, cholesky: Any = None) -> jnp.ndarray:
    """``diag(sd) L Lᵀ diag(sd)``; ``sd²`` as a ``(1, 1)`` matrix when ``bK == 1``."""
    sd = jnp.asarray(sd)
    if sd.shape[0] == 1:
        return jnp.square(sd)[:, None]
    scaled = jnp.diag(sd) @ cholesky
    return scaled @ scaled.T
