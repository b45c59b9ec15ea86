"""Prior specifications as closed families of frozen dataclasses.

Every parameter group of the model carries exactly one prior
specification.  Each specification is a small frozen dataclass whose
type *is* the discriminant: the reparameterisation
(``transforms.make_beta``, ``transforms.make_aux``) and the prior
accumulator (``densities.py``) dispatch on the class, and an
unrecognised class is a :class:`~.exceptions.ModelConfigurationError`.

Which specifications are valid where:

==============  ==========================================================
Parameter       Prior classes
==============  ==========================================================
coefficients    NoPrior, NormalPrior, StudentTPrior, HorseshoePrior,
                HorseshoePlusPrior, LaplacePrior, LassoPrior,
                ProductNormalPrior
intercepts      NoPrior, NormalPrior, StudentTPrior
auxiliary       NoPrior, NormalPrior, StudentTPrior, ExponentialPrior
covariance      DecovPrior, LkjPrior
==============  ==========================================================

Tag resolution
~~~~~~~~~~~~~~
Data-preparation code usually ships a tag plus a full, zero-filled
bundle of hyperparameters (mean, scale, df, global scale, ...) for
every parameter group, whether or not the tag uses them.  The
resolvers :func:`coefficient_prior`, :func:`intercept_prior`,
:func:`aux_prior` and :func:`covariance_prior` turn such a bundle into
the matching dataclass and read **only** the hyperparameters the tag
selects, so zero-filled placeholders can never leak into the model.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

import numpy as np
from numpyro.distributions import constraints

from .exceptions import ModelConfigurationError

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _freeze_arrays(obj: Any, *names: str) -> None:
    """Store the named fields of a frozen dataclass as float arrays."""
    for field_name in names:
        value = np.asarray(getattr(obj, field_name), dtype=np.float64)
        object.__setattr__(obj, field_name, value)


def _as_vector(value: Any, size: int, *, name: str) -> np.ndarray:
    """Broadcast a scalar or check a vector against *size*."""
    arr = np.atleast_1d(np.asarray(value, dtype=np.float64))
    if arr.size == 1:
        return np.full(size, float(arr[0]))
    if arr.shape != (size,):
        msg = f"'{name}' must be a scalar or have length {size}, got shape {arr.shape}."
        raise ValueError(msg)
    return arr


# ------------------------------------------------------------------ #
# Shared prior classes
# ------------------------------------------------------------------ #
#
# NoPrior, NormalPrior and StudentTPrior are valid for coefficients
# (vector hyperparameters, one entry per predictor), intercepts and
# auxiliary parameters (scalar hyperparameters).  The fields are kept
# as given; consumers broadcast where they need vectors.


@dataclass(frozen=True)
class NoPrior:
    """Flat (improper) prior; the reparameterisation is the identity."""

    name: ClassVar[str] = "none"


@dataclass(frozen=True)
class NormalPrior:
    """Normal prior with location *mean* and scale *scale*."""

    mean: Any = 0.0
    scale: Any = 1.0

    name: ClassVar[str] = "normal"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "mean", "scale")


@dataclass(frozen=True)
class StudentTPrior:
    """Student-t prior with location *mean*, scale *scale*, *df* degrees of freedom."""

    mean: Any = 0.0
    scale: Any = 1.0
    df: Any = 1.0

    name: ClassVar[str] = "student_t"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "mean", "scale", "df")


# ------------------------------------------------------------------ #
# Coefficient-only priors
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class HorseshoePrior:
    """Regularized horseshoe prior (Piironen & Vehtari, 2017).

    Attributes:
        df: Degrees of freedom of the half-t local scales (scalar or one
            per coefficient).
        global_scale: Scale of the half-t global shrinkage parameter.
        global_df: Degrees of freedom of the global shrinkage parameter.
        slab_scale: Scale of the regularising slab.
        slab_df: Degrees of freedom of the slab.
    """

    df: Any = 1.0
    global_scale: float = 1.0
    global_df: float = 1.0
    slab_scale: float = 2.5
    slab_df: float = 4.0

    name: ClassVar[str] = "hs"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "df")


@dataclass(frozen=True)
class HorseshoePlusPrior(HorseshoePrior):
    """Horseshoe+ prior: a second half-t factor multiplies each local scale.

    Attributes:
        plus_df: Degrees of freedom of the second local component.
    """

    plus_df: Any = 1.0

    name: ClassVar[str] = "hs_plus"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "df", "plus_df")


@dataclass(frozen=True)
class LaplacePrior:
    """Laplace (double-exponential) prior as a scale mixture of normals."""

    mean: Any = 0.0
    scale: Any = 1.0

    name: ClassVar[str] = "laplace"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "mean", "scale")


@dataclass(frozen=True)
class LassoPrior:
    """Bayesian lasso: Laplace prior with a chi-square-distributed 1/λ."""

    mean: Any = 0.0
    scale: Any = 1.0
    df: float = 1.0

    name: ClassVar[str] = "lasso"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "mean", "scale")


@dataclass(frozen=True)
class ProductNormalPrior:
    """Product-of-normals prior.

    Accepted by the tag resolver and by the prior accumulator, but the
    coefficient reparameterisation has no transform for it.
    """

    df: Any = 2.0
    scale: Any = 1.0

    name: ClassVar[str] = "product_normal"

    def __post_init__(self) -> None:
        _freeze_arrays(self, "df", "scale")


# ------------------------------------------------------------------ #
# Auxiliary-only prior
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ExponentialPrior:
    """Exponential prior with mean *scale* (rate ``1 / scale``)."""

    scale: float = 1.0

    name: ClassVar[str] = "exponential"


# ------------------------------------------------------------------ #
# Group-level covariance priors
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DecovPrior:
    """Decomposition-of-covariance prior for the group-level terms.

    The covariance matrix of each term is decomposed into a trace
    (``tau``, Gamma(shape, 1)), a simplex of variance proportions
    (``zeta``, Gamma(concentration, 1) normalised to sum to one) and a
    correlation matrix (onion method, ``rho``/``z_T``, LKJ-equivalent
    with the given regularization).

    Each attribute is a scalar (broadcast) or a sequence:
    ``regularization`` has one entry per term with more than one
    coefficient, ``concentration`` one entry per coefficient of those
    terms, ``shape`` and ``scale`` one entry per term.
    """

    regularization: Any = 1.0
    concentration: Any = 1.0
    shape: Any = 1.0
    scale: Any = 1.0

    name: ClassVar[str] = "decov"

    def resolve(self, p: Sequence[int]) -> dict[str, np.ndarray]:
        """Broadcast the hyperparameters against the term sizes *p*."""
        n_corr_terms = sum(1 for p_i in p if p_i > 1)
        len_concentration = sum(p_i for p_i in p if p_i > 1)
        return {
            "regularization": _as_vector(
                self.regularization, n_corr_terms, name="regularization"
            ),
            "concentration": _as_vector(
                self.concentration, len_concentration, name="concentration"
            ),
            "shape": _as_vector(self.shape, len(p), name="shape"),
            "scale": _as_vector(self.scale, len(p), name="scale"),
        }


@dataclass(frozen=True)
class LkjPrior:
    """LKJ prior on each grouping factor's correlation matrix.

    Standard deviations receive half-t priors with *df* and *scale*;
    the Cholesky factor of the correlation matrix receives an
    ``LKJCholesky(regularization)`` prior.

    ``regularization`` is a scalar or one entry per grouping factor;
    ``df`` and ``scale`` are scalars, or one entry per grouping factor
    where each entry is a scalar or a vector over that factor's
    coefficients.
    """

    regularization: Any = 1.0
    df: Any = 1.0
    scale: Any = 10.0

    name: ClassVar[str] = "lkj"

    def resolve(self, factor: int, n_factors: int, size: int) -> dict[str, Any]:
        """Hyperparameters for grouping factor *factor* (0-based) with *size* coefficients."""
        reg = _as_vector(self.regularization, n_factors, name="regularization")

        def _per_factor(value: Any, name: str) -> np.ndarray:
            if isinstance(value, (list, tuple)):
                if len(value) != n_factors:
                    msg = f"'{name}' must have one entry per grouping factor ({n_factors})."
                    raise ValueError(msg)
                value = value[factor]
            return _as_vector(value, size, name=name)

        return {
            "regularization": float(reg[factor]),
            "df": _per_factor(self.df, "df"),
            "scale": _per_factor(self.scale, "scale"),
        }


COEFFICIENT_PRIORS = (
    NoPrior,
    NormalPrior,
    StudentTPrior,
    HorseshoePrior,
    HorseshoePlusPrior,
    LaplacePrior,
    LassoPrior,
    ProductNormalPrior,
)
INTERCEPT_PRIORS = (NoPrior, NormalPrior, StudentTPrior)
AUX_PRIORS = (NoPrior, NormalPrior, StudentTPrior, ExponentialPrior)
COVARIANCE_PRIORS = (DecovPrior, LkjPrior)


def _check_kind(prior: Any, allowed: tuple[type, ...], what: str) -> None:
    # ``type(prior) in allowed`` rather than isinstance: HorseshoePlusPrior
    # subclasses HorseshoePrior but is its own tag.
    if type(prior) not in allowed:
        names = ", ".join(cls.name for cls in allowed)
        msg = f"Invalid {what} prior {prior!r}. Expected one of: {names}."
        raise ModelConfigurationError(msg)


def check_coefficient_prior(prior: Any) -> None:
    """Raise ``ModelConfigurationError`` unless *prior* is a coefficient prior."""
    _check_kind(prior, COEFFICIENT_PRIORS, "coefficient")


def check_intercept_prior(prior: Any) -> None:
    """Raise ``ModelConfigurationError`` unless *prior* is an intercept prior."""
    _check_kind(prior, INTERCEPT_PRIORS, "intercept")


def check_aux_prior(prior: Any) -> None:
    """Raise ``ModelConfigurationError`` unless *prior* is an auxiliary prior."""
    _check_kind(prior, AUX_PRIORS, "auxiliary")


def check_covariance_prior(prior: Any) -> None:
    """Raise ``ModelConfigurationError`` unless *prior* is a covariance prior."""
    _check_kind(prior, COVARIANCE_PRIORS, "covariance")


# ------------------------------------------------------------------ #
# Latent shrinkage parameters
# ------------------------------------------------------------------ #
#
# Shrinkage priors introduce latent positive parameters next to the
# standardized coefficients.  The layout (``layout.py``) asks for them
# by suffix; the transforms and densities read them back by the same
# suffix.


def coefficient_latent_sites(
    prior: Any,
    n_coefs: int,
) -> list[tuple[str, tuple[int, ...], Any]]:
    """Return ``(suffix, shape, constraint)`` for each latent parameter of *prior*.

    * horseshoe: ``global`` (2,), ``local`` (2, K), ``caux`` ()
    * horseshoe+: ``global`` (2,), ``local`` (4, K), ``caux`` ()
    * laplace: ``mix`` (K,)
    * lasso: ``mix`` (K,), ``ool`` ()

    Every other prior has no latent parameters.  No latent parameter
    is declared when the submodel has no coefficients.
    """
    if n_coefs == 0:
        return []
    positive = constraints.positive
    if type(prior) is HorseshoePlusPrior:
        return [
            ("global", (2,), positive),
            ("local", (4, n_coefs), positive),
            ("caux", (), positive),
        ]
    if type(prior) is HorseshoePrior:
        return [
            ("global", (2,), positive),
            ("local", (2, n_coefs), positive),
            ("caux", (), positive),
        ]
    if type(prior) is LaplacePrior:
        return [("mix", (n_coefs,), positive)]
    if type(prior) is LassoPrior:
        return [("mix", (n_coefs,), positive), ("ool", (), positive)]
    return []


# ------------------------------------------------------------------ #
# Tag resolution
# ------------------------------------------------------------------ #

_COEFFICIENT_TAGS: dict[str, type] = {cls.name: cls for cls in COEFFICIENT_PRIORS}
_INTERCEPT_TAGS: dict[str, type] = {cls.name: cls for cls in INTERCEPT_PRIORS}
_AUX_TAGS: dict[str, type] = {cls.name: cls for cls in AUX_PRIORS}
_COVARIANCE_TAGS: dict[str, type] = {cls.name: cls for cls in COVARIANCE_PRIORS}


def _lookup(tag: str, registry: dict[str, type], what: str) -> type:
    key = tag.strip().lower()
    if key not in registry:
        available = ", ".join(sorted(registry))
        msg = f"Unknown {what} prior {tag!r}. Available priors: {available}."
        raise ModelConfigurationError(msg)
    return registry[key]


def coefficient_prior(
    tag: str,
    *,
    mean: Any = 0.0,
    scale: Any = 1.0,
    df: Any = 1.0,
    global_scale: float = 1.0,
    global_df: float = 1.0,
    slab_scale: float = 2.5,
    slab_df: float = 4.0,
) -> Any:
    """Build a coefficient prior from a tag and a full hyperparameter bundle.

    Only the hyperparameters the tag uses are read.  For ``"hs_plus"``
    the *scale* entry carries the degrees of freedom of the second local
    component.

    Raises:
        ModelConfigurationError: If *tag* is not a coefficient prior.
    """
    cls = _lookup(tag, _COEFFICIENT_TAGS, "coefficient")
    if cls is NoPrior:
        return NoPrior()
    if cls is NormalPrior or cls is LaplacePrior:
        return cls(mean=mean, scale=scale)
    if cls is StudentTPrior:
        return StudentTPrior(mean=mean, scale=scale, df=df)
    if cls is HorseshoePlusPrior:
        return HorseshoePlusPrior(
            df=df,
            global_scale=global_scale,
            global_df=global_df,
            slab_scale=slab_scale,
            slab_df=slab_df,
            plus_df=scale,
        )
    if cls is HorseshoePrior:
        return HorseshoePrior(
            df=df,
            global_scale=global_scale,
            global_df=global_df,
            slab_scale=slab_scale,
            slab_df=slab_df,
        )
    if cls is LassoPrior:
        return LassoPrior(mean=mean, scale=scale, df=float(np.ravel(df)[0]))
    return ProductNormalPrior(df=df, scale=scale)


def intercept_prior(
    tag: str,
    *,
    mean: float = 0.0,
    scale: float = 1.0,
    df: float = 1.0,
) -> Any:
    """Build an intercept prior; only the fields the tag uses are read."""
    cls = _lookup(tag, _INTERCEPT_TAGS, "intercept")
    if cls is NoPrior:
        return NoPrior()
    if cls is NormalPrior:
        return NormalPrior(mean=mean, scale=scale)
    return StudentTPrior(mean=mean, scale=scale, df=df)


def aux_prior(
    tag: str,
    *,
    mean: float = 0.0,
    scale: float = 1.0,
    df: float = 1.0,
) -> Any:
    """Build an auxiliary-parameter prior; only the fields the tag uses are read."""
    cls = _lookup(tag, _AUX_TAGS, "auxiliary")
    if cls is NoPrior:
        return NoPrior()
    if cls is NormalPrior:
        return NormalPrior(mean=mean, scale=scale)
    if cls is StudentTPrior:
        return StudentTPrior(mean=mean, scale=scale, df=df)
    return ExponentialPrior(scale=scale)


def covariance_prior(tag: str, **hyper: Any) -> DecovPrior | LkjPrior:
    """Build the group-level covariance prior (``"decov"`` or ``"lkj"``).

    Keyword arguments not used by the selected strategy are ignored.
    """
    cls = _lookup(tag, _COVARIANCE_TAGS, "covariance")
    if cls is DecovPrior:
        keys = ("regularization", "concentration", "shape", "scale")
        return DecovPrior(**{k: hyper[k] for k in keys if k in hyper})
    keys = ("regularization", "df", "scale")
    return LkjPrior(**{k: hyper[k] for k in keys if k in hyper})
