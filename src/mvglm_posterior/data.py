"""Immutable data model handed to the posterior.

A model consists of one to three :class:`Submodel` objects (one per
outcome) that share zero to two :class:`GroupingFactor` objects, and
exactly one group-level covariance prior.  Each submodel that uses a
grouping factor supplies a :class:`GroupTerm`: the 0-based group of
every linear-predictor row and the submodel-local design columns of
the factor.

All arrays are validated and coerced to float64 / int64 NumPy arrays
at construction (see ``_compat.py``) and marked read-only, so
evaluations can never mutate shared data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ._compat import as_float_array, as_index_array
from .exceptions import ModelConfigurationError
from .families import LikelihoodFamily, resolve_family
from .layout import DecovLayout, FactorPartition
from .predictor import INTERCEPT_TYPES
from .priors import (
    DecovPrior,
    NoPrior,
    ProductNormalPrior,
    check_aux_prior,
    check_coefficient_prior,
    check_covariance_prior,
    check_intercept_prior,
)

logger = logging.getLogger(__name__)

MAX_SUBMODELS = 3
MAX_GROUPING_FACTORS = 2


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class GroupingFactor:
    """A clustering variable shared by the submodels.

    Attributes:
        n_groups: Number of groups (levels).
        name: Optional label used in derived-quantity names.
    """

    n_groups: int
    name: str = ""

    def __post_init__(self) -> None:
        if int(self.n_groups) < 1:
            msg = f"'n_groups' must be at least 1, got {self.n_groups}."
            raise ValueError(msg)
        object.__setattr__(self, "n_groups", int(self.n_groups))


@dataclass(frozen=True)
class GroupTerm:
    """One submodel's use of a grouping factor.

    Attributes:
        group_index: 0-based group of each linear-predictor row ``(n_eta,)``.
        design: Submodel-local design columns ``(n_eta, k)``.
    """

    group_index: Any
    design: Any

    def __post_init__(self) -> None:
        index = as_index_array(self.group_index, name="group_index")
        design = as_float_array(self.design, name="design", ndim=2)
        if design.shape[0] != index.shape[0]:
            msg = (
                f"Group term has {index.shape[0]} group indices but "
                f"{design.shape[0]} design rows."
            )
            raise ValueError(msg)
        object.__setattr__(self, "group_index", _readonly(index))
        object.__setattr__(self, "design", _readonly(design))

    @property
    def n_coefs(self) -> int:
        return self.design.shape[1]


@dataclass(frozen=True)
class Submodel:
    """One outcome with its family, design and priors.

    Attributes:
        y: Outcome ``(n_obs,)``.
        X: Centred design matrix ``(n_eta, K)``.  ``None`` means no
            predictors.
        family: Family name or a ``LikelihoodFamily`` instance.
        link: Link name (only used when *family* is a name).
        trials: Binomial trials (only used for ``"binomial"``).
        x_bar: Predictor means ``(K,)`` used to re-centre the
            intercept; zeros when omitted.
        intercept_type: ``none``, ``unbounded``, ``lower`` or ``upper``.
        coefficient_prior: Prior on the coefficients.
        intercept_prior: Prior on the (centred) intercept.
        aux_prior: Prior on the auxiliary parameter.
        group_terms: One entry per grouping factor of the model
            (``None`` when the submodel does not use the factor).
        n_obs: Rows of the linear predictor that enter the
            likelihood; defaults to ``len(y)``.
    """

    y: Any
    X: Any = None
    family: Any = "gaussian"
    link: str | None = None
    trials: int = 1
    x_bar: Any = None
    intercept_type: str = "unbounded"
    coefficient_prior: Any = field(default_factory=NoPrior)
    intercept_prior: Any = field(default_factory=NoPrior)
    aux_prior: Any = field(default_factory=NoPrior)
    group_terms: tuple[GroupTerm | None, ...] = ()
    n_obs: int | None = None

    def __post_init__(self) -> None:
        family = resolve_family(self.family, link=self.link, trials=self.trials)
        object.__setattr__(self, "family", family)
        object.__setattr__(self, "link", family.link)

        y = as_float_array(self.y, name="y", ndim=1)
        n_obs = y.shape[0] if self.n_obs is None else int(self.n_obs)
        if y.shape[0] != n_obs:
            msg = f"'y' has {y.shape[0]} entries but n_obs is {n_obs}."
            raise ValueError(msg)
        family.validate_y(y)

        if self.X is None:
            X = np.zeros((n_obs, 0))
        else:
            X = as_float_array(self.X, name="X", ndim=2)
        n_eta = X.shape[0]
        if n_obs > n_eta:
            msg = f"n_obs ({n_obs}) cannot exceed the rows of X ({n_eta})."
            raise ValueError(msg)

        K = X.shape[1]
        if self.x_bar is None:
            x_bar = np.zeros(K)
        else:
            x_bar = as_float_array(self.x_bar, name="x_bar", ndim=1)
        if x_bar.shape != (K,):
            msg = f"'x_bar' must have length {K}, got shape {x_bar.shape}."
            raise ValueError(msg)

        if self.intercept_type not in INTERCEPT_TYPES:
            msg = (
                f"Invalid intercept type {self.intercept_type!r}. "
                f"Expected one of: {INTERCEPT_TYPES}."
            )
            raise ModelConfigurationError(msg)
        check_coefficient_prior(self.coefficient_prior)
        if type(self.coefficient_prior) is ProductNormalPrior:
            msg = "The product_normal coefficient prior has no coefficient transform."
            raise ModelConfigurationError(msg)
        check_intercept_prior(self.intercept_prior)
        check_aux_prior(self.aux_prior)

        terms = tuple(self.group_terms)
        for f, term in enumerate(terms, start=1):
            if term is None:
                continue
            if not isinstance(term, GroupTerm):
                msg = f"Group term {f} must be a GroupTerm or None."
                raise TypeError(msg)
            if term.group_index.shape[0] != n_eta:
                msg = (
                    f"Group term {f} has {term.group_index.shape[0]} rows, "
                    f"expected {n_eta} (rows of X)."
                )
                raise ValueError(msg)

        object.__setattr__(self, "y", _readonly(y))
        object.__setattr__(self, "X", _readonly(X))
        object.__setattr__(self, "x_bar", _readonly(x_bar))
        object.__setattr__(self, "n_obs", n_obs)
        object.__setattr__(self, "group_terms", terms)

    @property
    def n_eta(self) -> int:
        return self.X.shape[0]

    @property
    def n_coefs(self) -> int:
        return self.X.shape[1]

    def group_term(self, f: int) -> GroupTerm | None:
        """The submodel's term for grouping factor *f* (0-based), if any."""
        if f < len(self.group_terms):
            return self.group_terms[f]
        return None


@dataclass(frozen=True)
class MvmerData:
    """A complete model: submodels, grouping factors, covariance prior.

    Attributes:
        submodels: One to three submodels, in order.
        grouping_factors: Zero to two grouping factors.
        covariance_prior: :class:`~.priors.DecovPrior` or
            :class:`~.priors.LkjPrior`.
        prior_PD: Draw from the prior only (the likelihood is skipped).
    """

    submodels: tuple[Submodel, ...]
    grouping_factors: tuple[GroupingFactor, ...] = ()
    covariance_prior: Any = field(default_factory=DecovPrior)
    prior_PD: bool = False
    partitions: tuple[FactorPartition, ...] = field(init=False)
    decov_layout: DecovLayout = field(init=False)

    def __post_init__(self) -> None:
        submodels = tuple(self.submodels)
        factors = tuple(self.grouping_factors)
        if not 1 <= len(submodels) <= MAX_SUBMODELS:
            msg = f"Expected 1 to {MAX_SUBMODELS} submodels, got {len(submodels)}."
            raise ValueError(msg)
        if len(factors) > MAX_GROUPING_FACTORS:
            msg = (
                f"At most {MAX_GROUPING_FACTORS} grouping factors are supported, "
                f"got {len(factors)}."
            )
            raise ValueError(msg)
        check_covariance_prior(self.covariance_prior)

        partitions = []
        for f, factor in enumerate(factors):
            sizes = []
            for m, sub in enumerate(submodels, start=1):
                term = sub.group_term(f)
                if term is None:
                    sizes.append(0)
                    continue
                if term.group_index.size and term.group_index.max() >= factor.n_groups:
                    msg = (
                        f"Submodel {m} uses group index {term.group_index.max()} "
                        f"for grouping factor {f + 1}, which has "
                        f"{factor.n_groups} groups."
                    )
                    raise ValueError(msg)
                sizes.append(term.n_coefs)
            partition = FactorPartition(sizes=tuple(sizes))
            if partition.total == 0:
                msg = f"Grouping factor {f + 1} is not used by any submodel."
                raise ValueError(msg)
            partitions.append(partition)
        for m, sub in enumerate(submodels, start=1):
            if len(sub.group_terms) > len(factors):
                msg = (
                    f"Submodel {m} has {len(sub.group_terms)} group terms but the "
                    f"model has {len(factors)} grouping factors."
                )
                raise ValueError(msg)

        object.__setattr__(self, "submodels", submodels)
        object.__setattr__(self, "grouping_factors", factors)
        object.__setattr__(self, "prior_PD", bool(self.prior_PD))
        object.__setattr__(self, "partitions", tuple(partitions))
        object.__setattr__(
            self,
            "decov_layout",
            DecovLayout.from_terms(
                tuple(p.total for p in partitions),
                tuple(f.n_groups for f in factors),
            ),
        )
        logger.debug(
            "Model with %d submodel(s) (%s) and %d grouping factor(s) %s.",
            len(submodels),
            ", ".join(f"{s.family.name}/{s.family.link}" for s in submodels),
            len(factors),
            [p.sizes for p in partitions],
        )

    @property
    def n_submodels(self) -> int:
        return len(self.submodels)

    @property
    def families(self) -> tuple[LikelihoodFamily, ...]:
        return tuple(sub.family for sub in self.submodels)
