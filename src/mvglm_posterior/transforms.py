"""Non-centred reparameterisations of coefficients and auxiliary parameters.

The sampler never sees interpretable coefficients directly.  It moves
over *primitive* quantities (standardized coefficients ``z_beta``,
unscaled auxiliary parameters and, for shrinkage priors, latent
positive scales), and the functions here map them to the quantities
that enter the linear predictor and the likelihood:

    β = make_beta(z_beta, prior, latent, aux, family)
    aux = make_aux(aux_unscaled, prior)

Because each prior's location and scale are absorbed here, the prior
accumulator (``densities.py``) only ever evaluates standard densities
on the primitives.  Any change to these maps changes the posterior
being sampled, so they follow the reference formulas exactly.

All functions are pure ``jax.numpy`` expressions and are safe to trace
under ``jax.jit`` / ``jax.grad``.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Mapping
from typing import Any

import jax.numpy as jnp

from .exceptions import ModelConfigurationError
from .priors import (
    ExponentialPrior,
    HorseshoePlusPrior,
    HorseshoePrior,
    LaplacePrior,
    LassoPrior,
    NoPrior,
    NormalPrior,
    StudentTPrior,
)

# ------------------------------------------------------------------ #
# Auxiliary-parameter scaler
# ------------------------------------------------------------------ #


def make_aux(aux_unscaled: Any, prior: Any) -> jnp.ndarray:
    """Scale an auxiliary parameter (σ, shape, dispersion, ...).

    ``none`` is the identity; every other prior multiplies by its
    scale, and the location-scale priors (normal, Student-t) also
    shift by their mean.

    Raises:
        ModelConfigurationError: If *prior* is not an auxiliary prior.
    """
    if type(prior) is NoPrior:
        return jnp.asarray(aux_unscaled)
    if type(prior) in (NormalPrior, StudentTPrior):
        return prior.scale * aux_unscaled + prior.mean
    if type(prior) is ExponentialPrior:
        return prior.scale * aux_unscaled
    msg = f"Invalid auxiliary prior {prior!r}."
    raise ModelConfigurationError(msg)


def fold_aux_maximum(values: Iterable[Any]) -> jnp.ndarray:
    """Running maximum of the scaled auxiliary parameters, starting at 1.0.

    The fold never decreases: a value enters the maximum only when it
    exceeds everything seen so far, and with no values the result is
    1.0.  The result scales the decov covariance (``make_theta_L``).
    """
    return functools.reduce(jnp.maximum, values, jnp.asarray(1.0))


# ------------------------------------------------------------------ #
# Coefficient reparameterizer
# ------------------------------------------------------------------ #


def cornish_fisher_t(z: Any, df: Any) -> jnp.ndarray:
    r"""Map a standard-normal primitive to an approximate Student-t quantile.

    Fourth-order Cornish–Fisher expansion of the t quantile in powers
    of ``1/df``:

    .. math::
        t \approx z + \frac{z^3 + z}{4\nu}
          + \frac{5z^5 + 16z^3 + 3z}{96\nu^2}
          + \frac{3z^7 + 19z^5 + 17z^3 - 15z}{384\nu^3}
          + \frac{79z^9 + 776z^7 + 1482z^5 - 1920z^3 - 945z}{92160\nu^4}

    Every correction term vanishes as ``df → ∞``, recovering ``z``.
    """
    z2 = jnp.square(z)
    z3 = z2 * z
    z5 = z2 * z3
    z7 = z2 * z5
    z9 = z2 * z7
    df2 = jnp.square(df)
    df3 = df2 * df
    df4 = df2 * df2
    return (
        z
        + (z3 + z) / (4 * df)
        + (5 * z5 + 16 * z3 + 3 * z) / (96 * df2)
        + (3 * z7 + 19 * z5 + 17 * z3 - 15 * z) / (384 * df3)
        + (79 * z9 + 776 * z7 + 1482 * z5 - 1920 * z3 - 945 * z) / (92160 * df4)
    )


def hs_prior(
    z_beta: jnp.ndarray,
    global_: jnp.ndarray,
    local: jnp.ndarray,
    global_prior_scale: float,
    error_scale: Any,
    c2: Any,
) -> jnp.ndarray:
    """Regularized horseshoe coefficients.

    ``λ = local[0] · sqrt(local[1])`` and
    ``τ = global[0] · sqrt(global[1]) · global_prior_scale · error_scale``
    are half-t scales built from half-normal × inverse-gamma pairs; the
    slab ``c2`` caps the effective local scale
    ``λ̃ = sqrt(c2 λ² / (c2 + τ² λ²))``.
    """
    lam = local[0] * jnp.sqrt(local[1])
    tau = global_[0] * jnp.sqrt(global_[1]) * global_prior_scale * error_scale
    lam2 = jnp.square(lam)
    lam_tilde = jnp.sqrt(c2 * lam2 / (c2 + jnp.square(tau) * lam2))
    return z_beta * lam_tilde * tau


def hsplus_prior(
    z_beta: jnp.ndarray,
    global_: jnp.ndarray,
    local: jnp.ndarray,
    global_prior_scale: float,
    error_scale: Any,
    c2: Any,
) -> jnp.ndarray:
    """Regularized horseshoe+ coefficients.

    As :func:`hs_prior`, with each local scale multiplied by a second
    half-t factor ``η = local[2] · sqrt(local[3])``.
    """
    lam = local[0] * jnp.sqrt(local[1])
    eta = local[2] * jnp.sqrt(local[3])
    tau = global_[0] * jnp.sqrt(global_[1]) * global_prior_scale * error_scale
    lam_eta2 = jnp.square(lam * eta)
    lam_tilde = jnp.sqrt(c2 * lam_eta2 / (c2 + jnp.square(tau) * lam_eta2))
    return z_beta * lam_tilde * tau


def make_beta(
    z_beta: Any,
    prior: Any,
    latent: Mapping[str, Any] | None = None,
    aux: Any = 1.0,
    family: Any = None,
) -> jnp.ndarray:
    """Map standardized primitives to regression coefficients.

    Args:
        z_beta: Primitive coefficients ``(K,)``.
        prior: Coefficient prior specification (see ``priors.py``).
        latent: Latent shrinkage parameters keyed by suffix
            (``"global"``, ``"local"``, ``"caux"``, ``"mix"``,
            ``"ool"``), as declared by
            :func:`~.priors.coefficient_latent_sites`.
        aux: Scaled auxiliary parameter of the submodel.
        family: The submodel's family.  Horseshoe scales are coupled to
            *aux* only when ``family.residual_scale_shrinkage`` is true
            (Gaussian outcomes); otherwise the error scale is 1.0.

    Returns:
        Coefficients with the same shape as *z_beta*.

    Raises:
        ModelConfigurationError: For priors without a transform
            (product-normal) or unrecognised prior classes.
    """
    z_beta = jnp.asarray(z_beta)
    latent = latent or {}
    kind = type(prior)

    if kind is NoPrior:
        return z_beta
    if kind is NormalPrior:
        return z_beta * prior.scale + prior.mean
    if kind is StudentTPrior:
        return prior.mean + prior.scale * cornish_fisher_t(z_beta, prior.df)
    if kind in (HorseshoePrior, HorseshoePlusPrior):
        c2 = prior.slab_scale**2 * latent["caux"]
        couples = family is not None and family.residual_scale_shrinkage
        error_scale = aux if couples else 1.0
        shrink = hsplus_prior if kind is HorseshoePlusPrior else hs_prior
        return shrink(
            z_beta,
            latent["global"],
            latent["local"],
            prior.global_scale,
            error_scale,
            c2,
        )
    if kind is LaplacePrior:
        return prior.mean + prior.scale * jnp.sqrt(2 * latent["mix"]) * z_beta
    if kind is LassoPrior:
        return (
            prior.mean
            + latent["ool"] * prior.scale * jnp.sqrt(2 * latent["mix"]) * z_beta
        )
    msg = f"No coefficient transform for prior {prior!r}."
    raise ModelConfigurationError(msg)
