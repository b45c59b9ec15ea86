"""Linear-predictor assembly for one submodel.

    eta = X β  (+ intercept policy)  + Σ_f Σ_k b_f[group_f(n), offset_f + k] · Z_f[n, k]

The fixed part is a zero vector when the submodel has no predictors.
The intercept policy is applied to the fixed part *before* the
group-specific terms are added:

==========  ===============================
none        no-op
unbounded   ``eta + gamma``
lower       ``eta - max(eta) + gamma``
upper       ``eta - min(eta) + gamma``
==========  ===============================

so that after the ``lower`` policy ``max(eta) == gamma`` exactly, and
after ``upper`` ``min(eta) == gamma`` exactly.  The bound uses all
``n_eta`` entries, not only the first ``n_obs``.

Group-specific contributions take the submodel's columns of each
factor's ``(groups, bK)`` coefficient matrix through its
:class:`~.layout.FactorPartition` slice, so the global column
``offset + k`` meets local design column ``k``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import jax.numpy as jnp

from .exceptions import ModelConfigurationError

if TYPE_CHECKING:
    from .data import GroupTerm
    from .layout import FactorPartition

INTERCEPT_TYPES = ("none", "unbounded", "lower", "upper")


def apply_intercept(eta: Any, intercept_type: str, gamma: Any = None) -> jnp.ndarray:
    """Apply an intercept policy to the fixed part of the linear predictor.

    Raises:
        ModelConfigurationError: For an unknown *intercept_type*.
    """
    if intercept_type == "none":
        return eta
    if intercept_type == "unbounded":
        return eta + gamma
    if intercept_type == "lower":
        return eta - jnp.max(eta) + gamma
    if intercept_type == "upper":
        return eta - jnp.min(eta) + gamma
    msg = f"Invalid intercept type {intercept_type!r}. Expected one of: {INTERCEPT_TYPES}."
    raise ModelConfigurationError(msg)


def group_contribution(
    b_matrix: Any,
    partition: FactorPartition,
    m: int,
    term: GroupTerm,
) -> jnp.ndarray:
    """Contribution of one grouping factor to submodel *m* (0-based).

    Args:
        b_matrix: ``(groups, bK)`` coefficients of the factor.
        partition: The factor's coefficient partition.
        m: Submodel index.
        term: Group indices ``(n_eta,)`` and local design ``(n_eta, k_m)``.

    Returns:
        ``(n_eta,)`` vector ``Σ_k b[group(n), offset + k] · Z[n, k]``.
    """
    b_local = b_matrix[:, partition.slice(m)]
    return jnp.sum(b_local[term.group_index] * term.design, axis=1)


def evaluate_eta(
    X: Any,
    beta: Any,
    intercept_type: str = "unbounded",
    gamma: Any = None,
    group_parts: Any = (),
) -> jnp.ndarray:
    """Linear predictor of one submodel.

    Args:
        X: Centred design matrix ``(n_eta, K)``; ``K`` may be 0.
        beta: Coefficients ``(K,)``.
        intercept_type: One of ``none``, ``unbounded``, ``lower``,
            ``upper``.
        gamma: Intercept (unused when *intercept_type* is ``none``).
        group_parts: Iterable of ``(b_matrix, partition, m, term)``
            tuples, one per grouping factor the submodel uses.

    Returns:
        ``(n_eta,)`` linear predictor.
    """
    X = jnp.asarray(X)
    if X.shape[1] > 0:
        eta = X @ beta
    else:
        eta = jnp.zeros(X.shape[0], dtype=X.dtype)
    eta = apply_intercept(eta, intercept_type, gamma)
    for b_matrix, partition, m, term in group_parts:
        eta = eta + group_contribution(b_matrix, partition, m, term)
    return eta
