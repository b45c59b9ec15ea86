"""Posterior assembler for the multivariate GLM with group-specific terms.

:class:`MvmerPosterior` turns an immutable :class:`~.data.MvmerData`
into the functions a gradient-based sampler needs:

    x (flat, unconstrained)
      → layout.constrain_with_jacobian        params, log|J|
      → transformed_parameters                β, aux, theta_L, b
      → linear_predictors                     eta_m
      → log_likelihood + log_prior            scalar

``log_density_unconstrained(x)`` is the sampler contract (it includes
the log-absolute-Jacobian of every bijection); ``potential_fn`` is its
negation and ``value_and_grad`` its jitted value and gradient.  With
``prior_PD`` the likelihood is skipped.

Every function here is pure.  The data arrays are converted to JAX
arrays once, in the constructor, and the same vector always yields the
same log-density.

Initial values
~~~~~~~~~~~~~~
:meth:`MvmerPosterior.initial_values` offers ``"zero"`` (the origin
of the unconstrained space), ``"random"`` (uniform on (-2, 2), as
Stan does) and ``"model_based"``, which fits each submodel's fixed
effects with a statsmodels GLM and maps the estimates back onto the
primitives.  A failed fit, or a family with no statsmodels counterpart
(a registered custom family, multi-trial binomial), leaves that
submodel at zero and emits a ``UserWarning``.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
import statsmodels.api as sm
from statsmodels.genmod.families import links
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    PerfectSeparationError,
    PerfectSeparationWarning,
    ValueWarning,
)

from ._results import DerivedQuantities
from ._typing import Params
from .covariance import (
    correlation_from_cholesky,
    correlation_from_covariance,
    covariance_from_lkj,
    make_b_matrices_decov,
    make_b_matrix_lkj,
    make_theta_L,
    term_cholesky,
)
from .data import MvmerData
from .densities import aux_lp, coefficient_lp, decov_lp, intercept_lp, lkj_lp
from .families import glm_log_likelihood, prepare_outcome_terms
from .layout import build_parameter_layout
from .predictor import evaluate_eta
from .priors import (
    DecovPrior,
    ExponentialPrior,
    NoPrior,
    NormalPrior,
    StudentTPrior,
)
from .transforms import fold_aux_maximum, make_aux, make_beta

logger = logging.getLogger(__name__)

_LATENT_SUFFIXES = ("global", "local", "mix", "ool", "caux")

INIT_METHODS = ("zero", "random", "model_based")

# ------------------------------------------------------------------ #
# statsmodels counterparts for model-based initial values
# ------------------------------------------------------------------ #

_SM_LINKS = {
    "identity": links.Identity,
    "log": links.Log,
    "inverse": links.InversePower,
    "1/mu^2": links.InverseSquared,
    "logit": links.Logit,
    "probit": links.Probit,
    "cauchit": links.Cauchy,
    "cloglog": links.CLogLog,
    "sqrt": links.Sqrt,
}

_SM_FAMILIES = {
    "gaussian": sm.families.Gaussian,
    "gamma": sm.families.Gamma,
    "inverse_gaussian": sm.families.InverseGaussian,
    "bernoulli": sm.families.Binomial,
    "poisson": sm.families.Poisson,
    "poisson_gamma": sm.families.Poisson,
    "neg_binomial_2": sm.families.NegativeBinomial,
}


def _sm_family(family: Any) -> Any:
    """statsmodels family matching *family*, or ``None`` if there is none."""
    cls = _SM_FAMILIES.get(family.name)
    link = _SM_LINKS.get(family.link)
    if cls is None or link is None:
        return None
    return cls(link=link())


def _invert_location_scale(value: np.ndarray, prior: Any) -> np.ndarray | None:
    """Primitive that a location-scale reparameterisation maps to *value*.

    Student-t priors are inverted as if they were normal; the result
    is only a starting point.  ``None`` when *prior* has no simple
    inverse.
    """
    if type(prior) is NoPrior:
        return value
    if type(prior) in (NormalPrior, StudentTPrior):
        return (value - prior.mean) / prior.scale
    return None


class MvmerPosterior:
    """Unnormalised log-posterior of a multivariate GLM with group-specific terms.

    Args:
        data: The validated model.

    Attributes:
        data: The model.
        layout: :class:`~.layout.ParameterLayout` of the flat vector.
    """

    def __init__(self, data: MvmerData) -> None:
        self.data = data
        self.layout = build_parameter_layout(data)
        self._y = [jnp.asarray(sub.y) for sub in data.submodels]
        self._X = [jnp.asarray(sub.X) for sub in data.submodels]
        self._outcome_terms = [
            prepare_outcome_terms(sub.family, sub.y) for sub in data.submodels
        ]
        self._decov = isinstance(data.covariance_prior, DecovPrior)
        if self._decov:
            self._decov_hyper = data.covariance_prior.resolve(data.decov_layout.p)
        else:
            n_factors = len(data.grouping_factors)
            self._lkj_hyper = [
                data.covariance_prior.resolve(f, n_factors, partition.total)
                for f, partition in enumerate(data.partitions)
            ]
        self._value_and_grad = jax.jit(jax.value_and_grad(self.log_density_unconstrained))
        logger.debug(
            "MvmerPosterior: %d parameter(s), covariance prior %r, prior_PD=%s.",
            self.layout.size,
            data.covariance_prior.name,
            data.prior_PD,
        )

    # ---- Parameter access ------------------------------------------

    @property
    def size(self) -> int:
        """Length of the flat unconstrained vector."""
        return self.layout.size

    @staticmethod
    def _site(params: Params, name: str, shape: tuple[int, ...] = (0,)) -> Any:
        if name in params:
            return params[name]
        return jnp.zeros(shape)

    @staticmethod
    def _latent(params: Params, m: int) -> dict[str, Any]:
        return {
            suffix: params[f"{suffix}_{m}"]
            for suffix in _LATENT_SUFFIXES
            if f"{suffix}_{m}" in params
        }

    # ---- Transformed parameters ------------------------------------

    def transformed_parameters(self, params: Params) -> dict[str, Any]:
        """Interpretable quantities of a constrained parameter dict.

        Returns:
            Dict with ``"beta"`` and ``"aux"`` (lists per submodel,
            ``None`` for absent auxiliaries), ``"aux_maximum"``,
            ``"theta_L"`` (decov only, else ``None``) and
            ``"b_matrices"`` (one ``(groups, bK)`` matrix per grouping
            factor).
        """
        data = self.data
        aux: list[Any] = []
        for m, sub in enumerate(data.submodels, start=1):
            if sub.family.has_aux:
                aux.append(make_aux(params[f"aux_unscaled_{m}"], sub.aux_prior))
            else:
                aux.append(None)
        aux_maximum = fold_aux_maximum(a for a in aux if a is not None)

        beta = []
        for m, sub in enumerate(data.submodels, start=1):
            if sub.n_coefs == 0:
                beta.append(jnp.zeros((0,)))
                continue
            beta.append(
                make_beta(
                    params[f"z_beta_{m}"],
                    sub.coefficient_prior,
                    self._latent(params, m),
                    aux[m - 1] if aux[m - 1] is not None else 1.0,
                    sub.family,
                )
            )

        theta_L = None
        if self._decov:
            decov = data.decov_layout
            theta_L = make_theta_L(
                decov,
                self._site(params, "tau"),
                self._decov_hyper["scale"],
                self._site(params, "zeta"),
                self._site(params, "rho"),
                self._site(params, "z_T"),
                aux_maximum,
            )
            b_matrices = make_b_matrices_decov(
                decov, self._site(params, "z_b"), theta_L
            )
        else:
            b_matrices = [
                make_b_matrix_lkj(
                    params[f"b_sd_{f}"],
                    params[f"z_b_mat_{f}"],
                    params.get(f"b_cholesky_{f}"),
                )
                for f in range(1, len(data.grouping_factors) + 1)
            ]
        return {
            "beta": beta,
            "aux": aux,
            "aux_maximum": aux_maximum,
            "theta_L": theta_L,
            "b_matrices": b_matrices,
        }

    def linear_predictors(
        self,
        params: Params,
        transformed: dict[str, Any] | None = None,
    ) -> list[jnp.ndarray]:
        """Linear predictor ``(n_eta,)`` of every submodel, in order."""
        if transformed is None:
            transformed = self.transformed_parameters(params)
        data = self.data
        etas = []
        for m0, sub in enumerate(data.submodels):
            group_parts = [
                (transformed["b_matrices"][f], data.partitions[f], m0, term)
                for f, term in enumerate(sub.group_terms)
                if term is not None
            ]
            etas.append(
                evaluate_eta(
                    self._X[m0],
                    transformed["beta"][m0],
                    sub.intercept_type,
                    params.get(f"gamma_{m0 + 1}"),
                    group_parts,
                )
            )
        return etas

    # ---- Log-density terms -----------------------------------------

    def log_likelihood(
        self,
        params: Params,
        transformed: dict[str, Any] | None = None,
    ) -> jnp.ndarray:
        """Sum of the submodels' log-likelihoods.

        Raises:
            ModelConfigurationError: For a multi-trial binomial submodel.
        """
        if transformed is None:
            transformed = self.transformed_parameters(params)
        etas = self.linear_predictors(params, transformed)
        total = jnp.zeros(())
        for m0, sub in enumerate(self.data.submodels):
            aux = transformed["aux"][m0]
            total = total + glm_log_likelihood(
                sub.family,
                self._y[m0],
                etas[m0][: sub.n_obs],
                aux if aux is not None else 1.0,
                self._outcome_terms[m0],
            )
        return total

    def log_prior(self, params: Params) -> jnp.ndarray:
        """Sum of all prior terms, evaluated on the primitives."""
        data = self.data
        total = jnp.zeros(())
        for m, sub in enumerate(data.submodels, start=1):
            if sub.intercept_type != "none":
                total = total + intercept_lp(params[f"gamma_{m}"], sub.intercept_prior)
            if sub.n_coefs:
                total = total + coefficient_lp(
                    params[f"z_beta_{m}"],
                    sub.coefficient_prior,
                    self._latent(params, m),
                )
            if sub.family.has_aux:
                total = total + aux_lp(params[f"aux_unscaled_{m}"], sub.aux_prior)

        if self._decov:
            if data.decov_layout.n_terms:
                total = total + decov_lp(
                    data.decov_layout,
                    self._decov_hyper,
                    self._site(params, "z_b"),
                    self._site(params, "z_T"),
                    self._site(params, "rho"),
                    self._site(params, "zeta"),
                    self._site(params, "tau"),
                )
        else:
            for f, hyper in enumerate(self._lkj_hyper, start=1):
                total = total + lkj_lp(
                    params[f"b_sd_{f}"],
                    params[f"z_b_mat_{f}"],
                    params.get(f"b_cholesky_{f}"),
                    hyper,
                )
        return total

    def log_density(self, params: Params) -> jnp.ndarray:
        """Unnormalised log-posterior of constrained parameters (no Jacobian)."""
        lp = self.log_prior(params)
        if self.data.prior_PD:
            return lp
        return lp + self.log_likelihood(params)

    def log_density_unconstrained(self, x: Any) -> jnp.ndarray:
        """Log-posterior of a flat unconstrained vector, including log|J|."""
        params, log_det = self.layout.constrain_with_jacobian(x)
        return self.log_density(params) + log_det

    def potential_fn(self, x: Any) -> jnp.ndarray:
        """Negative log-posterior, the potential energy of HMC."""
        return -self.log_density_unconstrained(x)

    def value_and_grad(self, x: Any) -> tuple[jnp.ndarray, jnp.ndarray]:
        """Jitted log-posterior and its gradient with respect to *x*."""
        return self._value_and_grad(jnp.asarray(x))

    # ---- Derived quantities ----------------------------------------

    def derived_quantities(self, params: Params) -> DerivedQuantities:
        """Reporting quantities of one constrained draw."""
        data = self.data
        transformed = self.transformed_parameters(params)
        beta = [np.asarray(b) for b in transformed["beta"]]

        intercepts: list[float | None] = []
        for m0, sub in enumerate(data.submodels):
            if sub.intercept_type == "none":
                intercepts.append(None)
                continue
            gamma = float(params[f"gamma_{m0 + 1}"])
            intercepts.append(gamma - float(np.dot(sub.x_bar, beta[m0])))

        correlations: list[np.ndarray | float] = []
        covariances: list[np.ndarray] = []
        for f, partition in enumerate(data.partitions):
            if self._decov:
                term = data.decov_layout.terms[f]
                if term.p == 1:
                    sd = transformed["theta_L"][term.theta_L.start]
                    cov = jnp.square(sd).reshape(1, 1)
                    corr: Any = 1.0
                else:
                    T = term_cholesky(transformed["theta_L"], term)
                    cov = T @ T.T
                    corr = np.asarray(correlation_from_covariance(cov))
            else:
                cholesky = params.get(f"b_cholesky_{f + 1}")
                cov = covariance_from_lkj(params[f"b_sd_{f + 1}"], cholesky)
                if partition.total > 1:
                    corr = np.asarray(correlation_from_cholesky(cholesky))
                else:
                    corr = 1.0
            correlations.append(corr)
            covariances.append(np.asarray(cov))

        aux = [None if a is None else float(a) for a in transformed["aux"]]
        return DerivedQuantities(
            intercepts=intercepts,
            coefficients=beta,
            aux=aux,
            correlations=correlations,
            covariances=covariances,
            group_coefficients=[
                np.asarray(b).reshape(-1) for b in transformed["b_matrices"]
            ],
        )

    # ---- Initial values --------------------------------------------

    def initial_values(self, method: str = "random", *, seed: int | None = None) -> np.ndarray:
        """Starting point for the sampler on the unconstrained scale.

        Args:
            method: ``"zero"``, ``"random"`` (uniform on (-2, 2)) or
                ``"model_based"``.
            seed: Seed for ``"random"``.

        Returns:
            Flat vector of length :attr:`size`.

        Raises:
            ValueError: For an unknown *method*.
        """
        if method not in INIT_METHODS:
            msg = f"Unknown init method {method!r}. Choose from: {INIT_METHODS}."
            raise ValueError(msg)
        if method == "zero":
            return np.zeros(self.size)
        if method == "random":
            rng = np.random.default_rng(seed)
            return rng.uniform(-2.0, 2.0, size=self.size)
        return self._model_based_init()

    def _model_based_init(self) -> np.ndarray:
        start = self.layout.constrain(np.zeros(self.size))
        params = {name: np.asarray(value) for name, value in start.items()}
        for m, sub in enumerate(self.data.submodels, start=1):
            has_intercept = sub.intercept_type == "unbounded"
            if sub.n_coefs == 0 and not has_intercept:
                continue
            if _sm_family(sub.family) is None:
                warnings.warn(
                    f"Model-based initial values are not available for submodel {m} "
                    f"(no GLM counterpart for family {sub.family.name!r}); "
                    "using zeros instead.",
                    UserWarning,
                    stacklevel=3,
                )
                continue
            try:
                fit = self._fit_fixed_effects(sub, has_intercept)
            except (ValueError, np.linalg.LinAlgError, PerfectSeparationError) as exc:
                warnings.warn(
                    f"Model-based initial values failed for submodel {m} "
                    f"({exc}); using zeros instead.",
                    UserWarning,
                    stacklevel=3,
                )
                continue
            coefs = np.asarray(fit.params, dtype=np.float64)
            if has_intercept:
                params[f"gamma_{m}"] = coefs[0]
                coefs = coefs[1:]
            if sub.n_coefs:
                z = _invert_location_scale(coefs, sub.coefficient_prior)
                if z is not None:
                    params[f"z_beta_{m}"] = z
            if sub.family.has_aux:
                aux = self._aux_estimate(sub, fit)
                if aux is not None:
                    params[f"aux_unscaled_{m}"] = aux
            logger.debug("Model-based init for submodel %d: %s", m, fit.params)
        return np.asarray(self.layout.unconstrain(params))

    @staticmethod
    def _fit_fixed_effects(sub: Any, has_intercept: bool) -> Any:
        X = np.asarray(sub.X[: sub.n_obs])
        if has_intercept:
            X = np.column_stack([np.ones(sub.n_obs), X])
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=PerfectSeparationWarning)
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            warnings.filterwarnings("ignore", category=ValueWarning)
            return sm.GLM(sub.y, X, family=_sm_family(sub.family)).fit(disp=0)

    @staticmethod
    def _aux_estimate(sub: Any, fit: Any) -> float | None:
        """Unscaled auxiliary implied by a GLM fit, or ``None``."""
        if sub.family.name == "gaussian":
            aux = float(np.sqrt(fit.scale))
        elif sub.family.name in ("gamma", "inverse_gaussian"):
            aux = float(1.0 / fit.scale)
        else:
            return None
        prior = sub.aux_prior
        if type(prior) is ExponentialPrior:
            unscaled = aux / prior.scale
        else:
            inverted = _invert_location_scale(np.asarray(aux), prior)
            if inverted is None:
                return None
            unscaled = float(inverted)
        if not np.isfinite(unscaled) or unscaled <= 0:
            return None
        return unscaled
