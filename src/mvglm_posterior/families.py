"""Outcome families: link inverses and log-likelihoods.

The ``LikelihoodFamily`` protocol defines the interface every outcome
family implements.  It decouples the family/link-specific density
from the posterior assembler in ``posterior.py``, which calls
``family.log_likelihood(...)`` instead of branching on integer family
and link codes.

Each concrete family is a frozen ``@dataclass`` that carries its link
as a field and nothing else mutable.  The ``resolve_family`` helper
maps a user-facing string (``"gaussian"``, ``"poisson"``, ...) plus an
optional link name to the appropriate family instance.

Supported families and links
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
==================  ============================================
Family              Links (first is the default)
==================  ============================================
gaussian            identity, log, inverse
gamma               inverse, identity, log
inverse_gaussian    1/mu^2, inverse, identity, log
bernoulli           logit, probit, cauchit, log, cloglog
binomial            as bernoulli; only one trial is supported
poisson             log, identity, sqrt
poisson_gamma       log, identity, sqrt
neg_binomial_2      log, identity, sqrt
==================  ============================================

Precomputed outcome terms
~~~~~~~~~~~~~~~~~~~~~~~~~
The gamma and inverse-Gaussian densities need ``log(y)``, ``sqrt(y)``
and ``Σ log(y)``.  These depend on the data only, so
:func:`prepare_outcome_terms` computes them once when the model is
built and the densities reuse them on every evaluation.  Families that
do not need them receive ``None`` placeholders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, runtime_checkable

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import gammaln, ndtr
from numpyro.distributions import (
    Bernoulli,
    LogNormal,
    NegativeBinomial2,
    NegativeBinomialLogits,
    Normal,
    Poisson,
)

from .exceptions import ModelConfigurationError

# ------------------------------------------------------------------ #
# Precomputed outcome terms
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class OutcomeTerms:
    """Data-only transforms of an outcome vector.

    Attributes:
        log_y: Elementwise ``log(y)``, or ``None``.
        sqrt_y: Elementwise ``sqrt(y)``, or ``None``.
        sum_log_y: ``Σ log(y)``, or ``None``.
    """

    log_y: Any = None
    sqrt_y: Any = None
    sum_log_y: Any = None


def prepare_outcome_terms(family: LikelihoodFamily, y: Any) -> OutcomeTerms:
    """Compute the outcome transforms *family* needs, once.

    Only families with ``needs_log_outcome`` (gamma, inverse Gaussian)
    get populated terms; every other family gets an empty
    :class:`OutcomeTerms`.
    """
    if not family.needs_log_outcome:
        return OutcomeTerms()
    y = np.asarray(y, dtype=np.float64)
    log_y = np.log(y)
    return OutcomeTerms(
        log_y=jnp.asarray(log_y),
        sqrt_y=jnp.asarray(np.sqrt(y)),
        sum_log_y=float(np.sum(log_y)),
    )


# ------------------------------------------------------------------ #
# LikelihoodFamily protocol
# ------------------------------------------------------------------ #
#
# ``runtime_checkable`` lets register_family() and glm_log_likelihood()
# verify that an object implements the interface before it is used.


@runtime_checkable
class LikelihoodFamily(Protocol):
    """Interface that every outcome family must implement.

    Attributes:
        name: Registry key (e.g. ``"gaussian"``).
        link: Name of the active link function.
        has_aux: Whether the family has an auxiliary parameter
            (residual SD, shape, dispersion) that the sampler moves.
        needs_log_outcome: Whether the density reads the precomputed
            :class:`OutcomeTerms`.
        residual_scale_shrinkage: Whether horseshoe global scales are
            multiplied by the auxiliary parameter (Gaussian outcomes).
    """

    @property
    def name(self) -> str: ...

    @property
    def link(self) -> str: ...

    @property
    def has_aux(self) -> bool: ...

    @property
    def needs_log_outcome(self) -> bool: ...

    @property
    def residual_scale_shrinkage(self) -> bool: ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``ValueError`` if *y* lies outside the family's support."""
        ...

    def log_likelihood(
        self,
        y: Any,
        eta: Any,
        aux: Any,
        terms: OutcomeTerms,
    ) -> Any:
        """Log-density of *y* given the linear predictor *eta*.

        Args:
            y: Outcome vector ``(n_obs,)``.
            eta: Linear predictor ``(n_obs,)``.
            aux: Scaled auxiliary parameter (ignored when the family
                has none).
            terms: Precomputed outcome transforms.

        Returns:
            Scalar log-likelihood.
        """
        ...


def _check_link(family: Any) -> None:
    if family.link not in family.links:
        available = ", ".join(family.links)
        msg = (
            f"Invalid link {family.link!r} for family {family.name!r}. "
            f"Available links: {available}."
        )
        raise ModelConfigurationError(msg)


def _check_positive(y: np.ndarray, family: str) -> None:
    if np.any(y <= 0):
        msg = f"The {family} family requires a strictly positive outcome."
        raise ValueError(msg)


def _check_counts(y: np.ndarray, family: str) -> None:
    if np.any(y < 0) or not np.all(np.equal(np.mod(y, 1), 0)):
        msg = f"The {family} family requires non-negative integer counts."
        raise ValueError(msg)


# ------------------------------------------------------------------ #
# Continuous families
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class GaussianFamily:
    """Normal outcome with residual standard deviation *aux*.

    The link only changes where the normal sits: ``identity`` is
    ``N(y | eta, σ)``, ``log`` is the log-normal ``LN(y | eta, σ)``
    and ``inverse`` is ``N(y | 1/eta, σ)``.
    """

    link: str = "identity"

    name: ClassVar[str] = "gaussian"
    links: ClassVar[tuple[str, ...]] = ("identity", "log", "inverse")
    has_aux: ClassVar[bool] = True
    needs_log_outcome: ClassVar[bool] = False
    residual_scale_shrinkage: ClassVar[bool] = True

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        if self.link == "log":
            _check_positive(y, "log-link gaussian")

    def log_likelihood(self, y, eta, aux, terms):
        if self.link == "log":
            return jnp.sum(LogNormal(eta, aux).log_prob(y))
        mu = 1.0 / eta if self.link == "inverse" else eta
        return jnp.sum(Normal(mu, aux).log_prob(y))


@dataclass(frozen=True)
class GammaFamily:
    r"""Gamma outcome with shape *aux*, parameterised by its mean.

    With shape :math:`\alpha` and mean :math:`\mu` the log-density
    summed over observations is

    .. math::
        N(\alpha\log\alpha - \log\Gamma(\alpha))
        + (\alpha - 1)\sum\log y - \alpha\sum\log\mu
        - \alpha\sum y/\mu

    and each link substitutes its own closed form for the two
    :math:`\mu` sums (``inverse`` uses ``log μ = -log η`` and
    ``y/μ = y η``).
    """

    link: str = "inverse"

    name: ClassVar[str] = "gamma"
    links: ClassVar[tuple[str, ...]] = ("identity", "log", "inverse")
    has_aux: ClassVar[bool] = True
    needs_log_outcome: ClassVar[bool] = True
    residual_scale_shrinkage: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        _check_positive(y, "gamma")

    def log_likelihood(self, y, eta, aux, terms):
        shape = aux
        n = y.shape[0]
        ret = n * (shape * jnp.log(shape) - gammaln(shape))
        ret = ret + (shape - 1) * terms.sum_log_y
        if self.link == "log":
            return ret - shape * jnp.sum(eta) - shape * jnp.sum(y / jnp.exp(eta))
        if self.link == "identity":
            return ret - shape * jnp.sum(jnp.log(eta)) - shape * jnp.sum(y / eta)
        return ret + shape * jnp.sum(jnp.log(eta)) - shape * jnp.dot(eta, y)


@dataclass(frozen=True)
class InverseGaussianFamily:
    r"""Inverse-Gaussian outcome with precision *aux* (:math:`\lambda`).

    .. math::
        \frac{N}{2}\log\frac{\lambda}{2\pi} - \frac{3}{2}\sum\log y
        - \frac{\lambda}{2}\sum\left(\frac{y - \mu}{\mu\sqrt{y}}\right)^2
    """

    link: str = "1/mu^2"

    name: ClassVar[str] = "inverse_gaussian"
    links: ClassVar[tuple[str, ...]] = ("identity", "log", "inverse", "1/mu^2")
    has_aux: ClassVar[bool] = True
    needs_log_outcome: ClassVar[bool] = True
    residual_scale_shrinkage: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        _check_positive(y, "inverse_gaussian")

    def mean(self, eta):
        if self.link == "log":
            return jnp.exp(eta)
        if self.link == "inverse":
            return 1.0 / eta
        if self.link == "1/mu^2":
            return 1.0 / jnp.sqrt(eta)
        return eta

    def log_likelihood(self, y, eta, aux, terms):
        lam = aux
        mu = self.mean(eta)
        n = y.shape[0]
        resid = (y - mu) / (mu * terms.sqrt_y)
        return (
            0.5 * n * jnp.log(lam / (2 * jnp.pi))
            - 1.5 * terms.sum_log_y
            - 0.5 * lam * jnp.dot(resid, resid)
        )


# ------------------------------------------------------------------ #
# Binary families
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class BernoulliFamily:
    """Binary outcome.

    ``logit`` evaluates the Bernoulli on the logit scale directly; the
    other links map ``eta`` to a probability first.
    """

    link: str = "logit"

    name: ClassVar[str] = "bernoulli"
    links: ClassVar[tuple[str, ...]] = ("logit", "probit", "cauchit", "log", "cloglog")
    has_aux: ClassVar[bool] = False
    needs_log_outcome: ClassVar[bool] = False
    residual_scale_shrinkage: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        if not np.all(np.isin(y, [0, 1])):
            msg = "The bernoulli family requires a 0/1 outcome."
            raise ValueError(msg)

    def mean(self, eta):
        if self.link == "logit":
            return 1.0 / (1.0 + jnp.exp(-eta))
        if self.link == "probit":
            return ndtr(eta)
        if self.link == "cauchit":
            return 0.5 + jnp.arctan(eta) / jnp.pi
        if self.link == "log":
            return jnp.exp(eta)
        return 1.0 - jnp.exp(-jnp.exp(eta))

    def log_likelihood(self, y, eta, aux, terms):
        if self.link == "logit":
            return jnp.sum(Bernoulli(logits=eta).log_prob(y))
        return jnp.sum(Bernoulli(probs=self.mean(eta)).log_prob(y))


@dataclass(frozen=True)
class BinomialFamily(BernoulliFamily):
    """Binomial outcome with *trials* trials per observation.

    Only the single-trial case has a density; it resolves to
    :class:`BernoulliFamily` in :func:`resolve_family`.  Evaluating a
    multi-trial binomial is a configuration error.
    """

    trials: int = 2

    name: ClassVar[str] = "binomial"

    def validate_y(self, y: np.ndarray) -> None:
        _check_counts(y, "binomial")

    def log_likelihood(self, y, eta, aux, terms):
        msg = "Binomial with >1 trials not allowed."
        raise ModelConfigurationError(msg)


# ------------------------------------------------------------------ #
# Count families
# ------------------------------------------------------------------ #


def _count_mean(link: str, eta):
    if link == "log":
        return jnp.exp(eta)
    if link == "sqrt":
        return jnp.square(eta)
    return eta


@dataclass(frozen=True)
class PoissonFamily:
    """Poisson outcome; the log link is evaluated on the log-rate scale."""

    link: str = "log"

    name: ClassVar[str] = "poisson"
    links: ClassVar[tuple[str, ...]] = ("log", "identity", "sqrt")
    has_aux: ClassVar[bool] = False
    needs_log_outcome: ClassVar[bool] = False
    residual_scale_shrinkage: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        _check_counts(y, self.name)

    def log_likelihood(self, y, eta, aux, terms):
        if self.link == "log":
            return jnp.sum(y * eta - jnp.exp(eta) - gammaln(y + 1))
        return jnp.sum(Poisson(_count_mean(self.link, eta)).log_prob(y))


@dataclass(frozen=True)
class PoissonGammaFamily(PoissonFamily):
    """Poisson-gamma outcome.

    Shares the Poisson density; the gamma noise is carried by the
    group-specific terms rather than by an auxiliary parameter.
    """

    name: ClassVar[str] = "poisson_gamma"


@dataclass(frozen=True)
class NegBinomial2Family:
    """Negative-binomial outcome with mean ``μ`` and reciprocal dispersion *aux*.

    ``Var(y) = μ + μ² / φ``.  The log link is evaluated on the
    log-mean scale through the logits ``eta - log φ``.
    """

    link: str = "log"

    name: ClassVar[str] = "neg_binomial_2"
    links: ClassVar[tuple[str, ...]] = ("log", "identity", "sqrt")
    has_aux: ClassVar[bool] = True
    needs_log_outcome: ClassVar[bool] = False
    residual_scale_shrinkage: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_link(self)

    def validate_y(self, y: np.ndarray) -> None:
        _check_counts(y, self.name)

    def log_likelihood(self, y, eta, aux, terms):
        phi = aux
        if self.link == "log":
            dist = NegativeBinomialLogits(total_count=phi, logits=eta - jnp.log(phi))
            return jnp.sum(dist.log_prob(y))
        mu = _count_mean(self.link, eta)
        return jnp.sum(NegativeBinomial2(mean=mu, concentration=phi).log_prob(y))


# ------------------------------------------------------------------ #
# Dispatch
# ------------------------------------------------------------------ #


def glm_log_likelihood(
    family: Any,
    y: Any,
    eta: Any,
    aux: Any,
    terms: OutcomeTerms,
) -> Any:
    """Log-likelihood of one submodel.

    Raises:
        ModelConfigurationError: ``"Invalid family."`` if *family*
            does not implement :class:`LikelihoodFamily`, or the
            binomial error for multi-trial binomial outcomes.
    """
    if not isinstance(family, LikelihoodFamily):
        msg = "Invalid family."
        raise ModelConfigurationError(msg)
    return family.log_likelihood(y, eta, aux, terms)


# ------------------------------------------------------------------ #
# Family resolution
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}
"""Registry mapping family name strings to concrete LikelihoodFamily classes."""


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``LikelihoodFamily`` class under *name*.

    Args:
        name: Lookup key (e.g. ``"gaussian"``).
        cls: A class implementing the ``LikelihoodFamily`` protocol
            whose default constructor is valid.

    Raises:
        TypeError: If *cls* does not satisfy the protocol.
    """
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, LikelihoodFamily):
        msg = f"{cls!r} does not implement the LikelihoodFamily protocol."
        raise TypeError(msg)
    _FAMILIES[name] = cls


def resolve_family(
    family: str | LikelihoodFamily,
    link: str | None = None,
    trials: int = 1,
) -> LikelihoodFamily:
    """Resolve a family string or instance to a concrete family.

    Instances are returned as-is.  ``"binomial"`` with a single trial
    resolves to the Bernoulli family with the same link.

    Args:
        family: Family name **or** a ``LikelihoodFamily`` instance.
        link: Link name; ``None`` selects the family's default link.
        trials: Number of binomial trials (binomial only).

    Returns:
        A family instance.

    Raises:
        ModelConfigurationError: ``"Invalid family."`` for unknown
            names, or an invalid-link message for unknown links.
    """
    if isinstance(family, LikelihoodFamily):
        return family
    key = str(family).strip().lower()
    if key not in _FAMILIES:
        msg = "Invalid family."
        raise ModelConfigurationError(msg)
    cls = _FAMILIES[key]
    kwargs: dict[str, Any] = {}
    if link is not None:
        kwargs["link"] = link
    if cls is BinomialFamily:
        if trials <= 1:
            return BernoulliFamily(**kwargs)
        return BinomialFamily(trials=trials, **kwargs)
    return cls(**kwargs)


register_family("gaussian", GaussianFamily)
register_family("gamma", GammaFamily)
register_family("inverse_gaussian", InverseGaussianFamily)
register_family("bernoulli", BernoulliFamily)
register_family("binomial", BinomialFamily)
register_family("poisson", PoissonFamily)
register_family("poisson_gamma", PoissonGammaFamily)
register_family("neg_binomial_2", NegBinomial2Family)
