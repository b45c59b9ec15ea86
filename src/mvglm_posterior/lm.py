r"""Gaussian linear model parameterised by the proportion of variance explained.

The legacy single-outcome variant: ``J`` independent groups, each a
Gaussian linear regression with its own data, no family/link dispatch
and no group-specific terms.  Each group is reduced once to
sufficient statistics from a QR factorisation of its centred design,

.. math::
    X - \bar{x} = QR, \qquad Q^\top Q = I,

so that with coefficients :math:`\theta = R\beta` in Q-space the
exact log-likelihood is

.. math::
    -N\log\sigma - \frac{N}{2}\log 2\pi
    - \frac{\mathrm{SSR} + \lVert\theta - Q^\top y_c\rVert^2
            + N(\bar{y} - \alpha_c)^2}{2\sigma^2}

where :math:`\alpha_c` is the intercept on the centred scale
(:math:`\bar{x}\cdot\beta` for models without an intercept).

Parameters per group:

* ``u_raw_j``: unnormalised direction of :math:`\theta` (``K > 1``);
* ``z_alpha_j``: standardized intercept (with an intercept);
* ``R2_j``: proportion of variance explained in (0, 1), or the
  signed square root of it in (-1, 1) when ``K == 1``;
* ``log_omega_j``: log of the marginal SD relative to ``s_Y``
  (omitted under ``prior_PD``).

With :math:`\Delta_y = s_Y e^{\log\omega}`,
:math:`\theta = u\sqrt{R^2}\sqrt{N-1}\,\Delta_y` and
:math:`\sigma = \Delta_y\sqrt{1 - R^2}`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
import scipy.linalg
from numpyro.distributions import Beta, Normal, constraints
from typing_extensions import Self

from ._compat import as_float_array
from ._results import LinearModelDerived
from ._typing import Params
from .exceptions import ModelConfigurationError
from .layout import ParameterLayout, ParameterSite
from .priors import NoPrior, NormalPrior, StudentTPrior, check_intercept_prior

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Sufficient statistics
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LinearModelGroup:
    """Sufficient statistics of one group.

    Attributes:
        N: Number of observations.
        ybar: Outcome mean.
        x_bar: Predictor means ``(K,)``.
        s_Y: Outcome standard deviation (``ddof=1``).
        Rb: OLS coefficients in Q-space, ``Qᵀ (y - ȳ)``.
        SSR: Residual sum of squares of the OLS fit.
        R_inv: Inverse of the QR factor ``R`` ``(K, K)``.
    """

    N: int
    ybar: float
    x_bar: np.ndarray
    s_Y: float
    Rb: np.ndarray
    SSR: float
    R_inv: np.ndarray

    @property
    def K(self) -> int:
        return self.Rb.shape[0]


def lm_sufficient_statistics(X: Any, y: Any) -> LinearModelGroup:
    """Reduce one group's data to :class:`LinearModelGroup`.

    Raises:
        ValueError: If the shapes disagree, there are not more
            observations than predictors, or the centred design is
            rank deficient.
    """
    X = as_float_array(X, name="X", ndim=2)
    y = as_float_array(y, name="y", ndim=1)
    N, K = X.shape
    if y.shape[0] != N:
        msg = f"'y' has {y.shape[0]} entries but X has {N} rows."
        raise ValueError(msg)
    if K == 0 or N <= K:
        msg = (
            "Need at least one predictor and more observations than "
            f"predictors, got N={N}, K={K}."
        )
        raise ValueError(msg)

    x_bar = X.mean(axis=0)
    Q, R = scipy.linalg.qr(X - x_bar, mode="economic")
    diag = np.abs(np.diag(R))
    if diag.min() <= 1e-10 * max(diag.max(), 1.0):
        msg = "The centred design matrix is rank deficient."
        raise ValueError(msg)
    ybar = float(y.mean())
    y_c = y - ybar
    Rb = Q.T @ y_c
    SSR = float(y_c @ y_c - Rb @ Rb)
    R_inv = scipy.linalg.solve_triangular(R, np.eye(K), lower=False)
    return LinearModelGroup(
        N=N,
        ybar=ybar,
        x_bar=x_bar,
        s_Y=float(np.std(y, ddof=1)),
        Rb=Rb,
        SSR=max(SSR, 0.0),
        R_inv=R_inv,
    )


@dataclass(frozen=True)
class LinearModelData:
    """``J`` groups sharing an intercept convention and priors.

    Attributes:
        groups: Sufficient statistics per group.
        has_intercept: Whether each group has an intercept.
        intercept_prior: Prior of the intercept (none or normal).
        r2_eta: Second shape of the ``Beta(K/2, r2_eta)`` prior on R².
        prior_PD: Draw from the prior only.
    """

    groups: tuple[LinearModelGroup, ...]
    has_intercept: bool = True
    intercept_prior: Any = field(default_factory=NoPrior)
    r2_eta: float = 1.0
    prior_PD: bool = False

    def __post_init__(self) -> None:
        groups = tuple(self.groups)
        if not groups:
            msg = "At least one group is required."
            raise ValueError(msg)
        if self.r2_eta <= 0:
            msg = f"'r2_eta' must be positive, got {self.r2_eta}."
            raise ValueError(msg)
        check_intercept_prior(self.intercept_prior)
        if type(self.intercept_prior) is StudentTPrior:
            msg = "The linear model supports only none and normal intercept priors."
            raise ModelConfigurationError(msg)
        object.__setattr__(self, "groups", groups)

    @classmethod
    def from_arrays(cls, Xs: Any, ys: Any, **kwargs: Any) -> Self:
        """Build from per-group design matrices and outcomes."""
        groups = tuple(
            lm_sufficient_statistics(X, y) for X, y in zip(Xs, ys, strict=True)
        )
        return cls(groups=groups, **kwargs)


# ------------------------------------------------------------------ #
# Posterior
# ------------------------------------------------------------------ #


class LinearModelPosterior:
    """Unnormalised log-posterior of the R²-parameterised linear model."""

    def __init__(self, data: LinearModelData) -> None:
        self.data = data
        self.layout = self._build_layout(data)
        self._value_and_grad = jax.jit(jax.value_and_grad(self.log_density_unconstrained))
        logger.debug(
            "LinearModelPosterior: %d group(s), %d parameter(s).",
            len(data.groups),
            self.layout.size,
        )

    @staticmethod
    def _build_layout(data: LinearModelData) -> ParameterLayout:
        groups = list(enumerate(data.groups, start=1))
        sites = [ParameterSite(f"u_raw_{j}", (g.K,)) for j, g in groups if g.K > 1]
        if data.has_intercept:
            sites += [ParameterSite(f"z_alpha_{j}", ()) for j, _ in groups]
        for j, g in groups:
            if g.K > 1:
                bounds = constraints.unit_interval
            else:
                bounds = constraints.interval(-1.0, 1.0)
            sites.append(ParameterSite(f"R2_{j}", (), bounds))
        if not data.prior_PD:
            sites += [ParameterSite(f"log_omega_{j}", ()) for j, _ in groups]
        return ParameterLayout(sites=tuple(sites))

    @property
    def size(self) -> int:
        return self.layout.size

    def _intercept(self, z_alpha: Any, sigma: Any, group: LinearModelGroup) -> Any:
        prior = self.data.intercept_prior
        if type(prior) is NoPrior:
            return z_alpha
        if np.all(np.asarray(prior.scale) == 0):
            return z_alpha * sigma / jnp.sqrt(group.N) + group.ybar
        return z_alpha * prior.scale + prior.mean

    def transformed_parameters(self, params: Params) -> list[dict[str, Any]]:
        """Per group: ``theta``, ``sigma``, ``beta`` and the centred intercept ``alpha_c``."""
        out = []
        for j, group in enumerate(self.data.groups, start=1):
            if self.data.prior_PD:
                delta_y = jnp.asarray(1.0)
            else:
                delta_y = group.s_Y * jnp.exp(params[f"log_omega_{j}"])
            R2 = params[f"R2_{j}"]
            scale = jnp.sqrt(group.N - 1.0) * delta_y
            if group.K > 1:
                raw = params[f"u_raw_{j}"]
                u = raw / jnp.sqrt(jnp.dot(raw, raw))
                theta = u * jnp.sqrt(R2) * scale
                sigma = delta_y * jnp.sqrt(1.0 - R2)
            else:
                theta = jnp.reshape(R2 * scale, (1,))
                sigma = delta_y * jnp.sqrt(1.0 - jnp.square(R2))
            beta = jnp.asarray(group.R_inv) @ theta
            if self.data.has_intercept:
                alpha_c = self._intercept(params[f"z_alpha_{j}"], sigma, group)
            else:
                alpha_c = jnp.dot(group.x_bar, beta)
            out.append({"theta": theta, "sigma": sigma, "beta": beta, "alpha_c": alpha_c})
        return out

    def log_likelihood(self, params: Params) -> jnp.ndarray:
        total = jnp.zeros(())
        for group, tp in zip(self.data.groups, self.transformed_parameters(params), strict=True):
            sigma = tp["sigma"]
            resid = tp["theta"] - group.Rb
            ss = group.SSR + jnp.dot(resid, resid) + group.N * jnp.square(group.ybar - tp["alpha_c"])
            total = total + (
                -group.N * jnp.log(sigma)
                - 0.5 * group.N * jnp.log(2 * jnp.pi)
                - ss / (2 * jnp.square(sigma))
            )
        return total

    def log_prior(self, params: Params) -> jnp.ndarray:
        """Priors on ``z_alpha``, ``R2`` and the unit-vector adjustment."""
        data = self.data
        informative = type(data.intercept_prior) is NormalPrior
        total = jnp.zeros(())
        for j, group in enumerate(data.groups, start=1):
            if data.has_intercept and informative:
                total = total + Normal(0.0, 1.0).log_prob(params[f"z_alpha_{j}"])
            R2 = params[f"R2_{j}"]
            prior = Beta(0.5 * group.K, data.r2_eta)
            if group.K > 1:
                raw = params[f"u_raw_{j}"]
                total = total - 0.5 * jnp.dot(raw, raw)
                total = total + prior.log_prob(R2)
            else:
                total = total + prior.log_prob(jnp.square(R2)) + jnp.log(jnp.abs(R2))
        return total

    def log_density(self, params: Params) -> jnp.ndarray:
        lp = self.log_prior(params)
        if self.data.prior_PD:
            return lp
        return lp + self.log_likelihood(params)

    def log_density_unconstrained(self, x: Any) -> jnp.ndarray:
        params, log_det = self.layout.constrain_with_jacobian(x)
        return self.log_density(params) + log_det

    def potential_fn(self, x: Any) -> jnp.ndarray:
        return -self.log_density_unconstrained(x)

    def value_and_grad(self, x: Any) -> tuple[jnp.ndarray, jnp.ndarray]:
        return self._value_and_grad(jnp.asarray(x))

    def derived_quantities(self, params: Params) -> LinearModelDerived:
        """Coefficients, uncentred intercepts, σ and R² per group."""
        coefficients, intercepts, sigma, r_squared = [], [], [], []
        for j, (group, tp) in enumerate(
            zip(self.data.groups, self.transformed_parameters(params), strict=True),
            start=1,
        ):
            beta = np.asarray(tp["beta"])
            coefficients.append(beta)
            if self.data.has_intercept:
                intercepts.append(float(tp["alpha_c"]) - float(group.x_bar @ beta))
            else:
                intercepts.append(None)
            sigma.append(float(tp["sigma"]))
            R2 = float(params[f"R2_{j}"])
            r_squared.append(R2 if group.K > 1 else R2**2)
        return LinearModelDerived(
            coefficients=coefficients,
            intercepts=intercepts,
            sigma=sigma,
            r_squared=r_squared,
        )
