"""Prior log-densities on the sampler's primitives.

Every location and scale of a prior is absorbed into the
reparameterisation (``transforms.py``, ``covariance.py``), so the
terms here are standard densities evaluated on the primitives:

* coefficients: standard normal on ``z_beta`` plus the hyperpriors
  of the shrinkage latents;
* intercepts: the prior itself, on the raw intercept;
* auxiliary parameters: standard forms on the unscaled value;
* group-level covariance: decov or LKJ.

Each function returns a scalar and the terms are independent and
additive.  Constants that do not depend on parameters are kept, as
numpyro's ``log_prob`` keeps them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import jax.numpy as jnp
import numpy as np
from numpyro.distributions import (
    Beta,
    Chi2,
    Exponential,
    Gamma,
    InverseGamma,
    LKJCholesky,
    Normal,
    StudentT,
)

from .exceptions import ModelConfigurationError
from .layout import DecovLayout
from .priors import (
    ExponentialPrior,
    HorseshoePlusPrior,
    HorseshoePrior,
    LaplacePrior,
    LassoPrior,
    NoPrior,
    NormalPrior,
    ProductNormalPrior,
    StudentTPrior,
)


def _std_normal_lp(x: Any) -> jnp.ndarray:
    return jnp.sum(Normal(0.0, 1.0).log_prob(x))


def _inv_gamma_lp(x: Any, df: Any) -> jnp.ndarray:
    half = 0.5 * jnp.asarray(df)
    return jnp.sum(InverseGamma(half, half).log_prob(x))


# ------------------------------------------------------------------ #
# Intercepts and auxiliary parameters
# ------------------------------------------------------------------ #


def intercept_lp(gamma: Any, prior: Any) -> jnp.ndarray:
    """Prior on the raw (centred) intercept."""
    if type(prior) is NoPrior:
        return jnp.zeros(())
    if type(prior) is NormalPrior:
        return jnp.sum(Normal(prior.mean, prior.scale).log_prob(gamma))
    if type(prior) is StudentTPrior:
        return jnp.sum(StudentT(prior.df, prior.mean, prior.scale).log_prob(gamma))
    msg = f"Invalid intercept prior {prior!r}."
    raise ModelConfigurationError(msg)


def aux_lp(aux_unscaled: Any, prior: Any) -> jnp.ndarray:
    """Prior on the unscaled auxiliary parameter.

    Contributes only when the prior has a positive scale; a zero scale
    means the auxiliary parameter is fixed by the scaler.
    """
    if type(prior) is NoPrior:
        return jnp.zeros(())
    if type(prior) not in (NormalPrior, StudentTPrior, ExponentialPrior):
        msg = f"Invalid auxiliary prior {prior!r}."
        raise ModelConfigurationError(msg)
    if not np.all(np.asarray(prior.scale) > 0):
        return jnp.zeros(())
    if type(prior) is NormalPrior:
        return _std_normal_lp(aux_unscaled)
    if type(prior) is StudentTPrior:
        return jnp.sum(StudentT(prior.df, 0.0, 1.0).log_prob(aux_unscaled))
    return jnp.sum(Exponential(1.0).log_prob(aux_unscaled))


# ------------------------------------------------------------------ #
# Coefficients
# ------------------------------------------------------------------ #


def coefficient_lp(
    z_beta: Any,
    prior: Any,
    latent: Mapping[str, Any] | None = None,
) -> jnp.ndarray:
    """Prior on the standardized coefficients and their shrinkage latents.

    * none: 0
    * normal, student_t, product_normal: ``N(0, 1)`` on ``z_beta``
    * hs: additionally half-normal ``local[0]`` and ``global[0]``,
      ``InvGamma(df/2, df/2)`` on ``local[1]``,
      ``InvGamma(global_df/2, global_df/2)`` on ``global[1]`` and
      ``InvGamma(slab_df/2, slab_df/2)`` on ``caux``
    * hs_plus: as hs, plus half-normal ``local[2]`` and
      ``InvGamma(plus_df/2, plus_df/2)`` on ``local[3]``
    * laplace: additionally ``Exponential(1)`` on ``mix``
    * lasso: as laplace, plus ``Chi2(df)`` on ``ool``
    """
    latent = latent or {}
    kind = type(prior)
    if kind is NoPrior or jnp.size(z_beta) == 0:
        return jnp.zeros(())
    lp = _std_normal_lp(z_beta)
    if kind in (NormalPrior, StudentTPrior, ProductNormalPrior):
        return lp
    if kind in (HorseshoePrior, HorseshoePlusPrior):
        local = latent["local"]
        global_ = latent["global"]
        lp = lp + _std_normal_lp(local[0])
        lp = lp + _inv_gamma_lp(local[1], prior.df)
        if kind is HorseshoePlusPrior:
            lp = lp + _std_normal_lp(local[2])
            lp = lp + _inv_gamma_lp(local[3], prior.plus_df)
        lp = lp + _std_normal_lp(global_[0])
        lp = lp + _inv_gamma_lp(global_[1], prior.global_df)
        return lp + _inv_gamma_lp(latent["caux"], prior.slab_df)
    if kind in (LaplacePrior, LassoPrior):
        lp = lp + jnp.sum(Exponential(1.0).log_prob(latent["mix"]))
        if kind is LassoPrior:
            lp = lp + jnp.sum(Chi2(prior.df).log_prob(latent["ool"]))
        return lp
    msg = f"Invalid coefficient prior {prior!r}."
    raise ModelConfigurationError(msg)


# ------------------------------------------------------------------ #
# Group-level covariance
# ------------------------------------------------------------------ #


def onion_beta_shapes(regularization: float, p: int) -> tuple[np.ndarray, np.ndarray]:
    """Beta shapes of the ``p - 1`` onion-method primitives of one term.

    Starting from ``ν = regularization + (p - 2) / 2``, the first pair
    is ``(ν, ν)``; each later entry ``j`` (1-based, ``j >= 2``) has
    ``shape1 = j / 2`` and ``shape2`` decreased by ``1/2``.  With these
    shapes the implied correlation matrix is ``LKJ(regularization)``.
    """
    shape1 = np.empty(p - 1)
    shape2 = np.empty(p - 1)
    nu = regularization + 0.5 * (p - 2)
    shape1[0] = nu
    shape2[0] = nu
    for j in range(2, p):
        nu -= 0.5
        shape1[j - 1] = 0.5 * j
        shape2[j - 1] = nu
    return shape1, shape2


def decov_lp(
    layout: DecovLayout,
    hyper: Mapping[str, np.ndarray],
    z_b: Any,
    z_T: Any,
    rho: Any,
    zeta: Any,
    tau: Any,
) -> jnp.ndarray:
    """Decov prior.

    ``N(0, 1)`` on ``z_b`` and ``z_T``; per term with ``p > 1`` a Beta
    on its ``rho`` segment (:func:`onion_beta_shapes`);
    ``Gamma(concentration, 1)`` on ``zeta``; ``Gamma(shape, 1)`` on
    ``tau``.

    Args:
        layout: Decov offsets.
        hyper: Output of :meth:`~.priors.DecovPrior.resolve`.
    """
    lp = _std_normal_lp(z_b) + _std_normal_lp(z_T)
    pos_reg = 0
    for term in layout.terms:
        if term.p == 1:
            continue
        shape1, shape2 = onion_beta_shapes(float(hyper["regularization"][pos_reg]), term.p)
        pos_reg += 1
        lp = lp + jnp.sum(Beta(shape1, shape2).log_prob(rho[term.rho]))
    if layout.len_concentration:
        lp = lp + jnp.sum(Gamma(hyper["concentration"], 1.0).log_prob(zeta))
    if layout.n_terms:
        lp = lp + jnp.sum(Gamma(hyper["shape"], 1.0).log_prob(tau))
    return lp


def lkj_lp(
    sd: Any,
    z_mat: Any,
    cholesky: Any,
    hyper: Mapping[str, Any],
) -> jnp.ndarray:
    """LKJ prior of one grouping factor.

    Student-t on the standard deviations, ``N(0, 1)`` on the
    primitive matrix and ``LKJCholesky(regularization)`` on the
    correlation factor when the factor has more than one coefficient.

    Args:
        hyper: Output of :meth:`~.priors.LkjPrior.resolve`.
    """
    lp = jnp.sum(StudentT(hyper["df"], 0.0, hyper["scale"]).log_prob(sd))
    lp = lp + _std_normal_lp(z_mat)
    bK = jnp.shape(sd)[0]
    if bK > 1:
        lkj = LKJCholesky(bK, concentration=hyper["regularization"])
        lp = lp + lkj.log_prob(cholesky)
    return lp
