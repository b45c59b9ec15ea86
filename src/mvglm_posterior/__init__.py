"""mvglm_posterior: Log-posterior kernel for multivariate GLMs with group-specific terms.

Computes the unnormalised log-posterior density (and, through JAX, its
gradient) of up to three jointly modelled GLM outcomes that share up
to two grouping factors, under rstanarm-style priors: normal,
Student-t, regularized horseshoe and horseshoe+, Laplace and lasso on
the coefficients, and a decov or LKJ prior on the group-level
covariance.  A sampler (numpyro, blackjax, ...) consumes
``MvmerPosterior.potential_fn`` or ``value_and_grad`` on a flat
unconstrained vector whose order is documented by
``MvmerPosterior.layout``.

Public API:
    .. autosummary::
        MvmerPosterior
        MvmerData
        Submodel
        GroupTerm
        GroupingFactor
        LinearModelPosterior
        LinearModelData
        lm_sufficient_statistics
        DerivedQuantities
        LinearModelDerived
        ParameterLayout
        LikelihoodFamily
        resolve_family
        register_family
        NoPrior
        NormalPrior
        StudentTPrior
        HorseshoePrior
        HorseshoePlusPrior
        LaplacePrior
        LassoPrior
        ProductNormalPrior
        ExponentialPrior
        DecovPrior
        LkjPrior
        coefficient_prior
        intercept_prior
        aux_prior
        covariance_prior
        ModelConfigurationError
        get_precision
        set_precision
"""

from ._config import apply_precision, get_precision, set_precision

apply_precision()

from ._results import DerivedQuantities, LinearModelDerived  # noqa: E402
from .data import GroupingFactor, GroupTerm, MvmerData, Submodel  # noqa: E402
from .exceptions import ModelConfigurationError  # noqa: E402
from .families import LikelihoodFamily, register_family, resolve_family  # noqa: E402
from .layout import ParameterLayout  # noqa: E402
from .lm import (  # noqa: E402
    LinearModelData,
    LinearModelPosterior,
    lm_sufficient_statistics,
)
from .posterior import MvmerPosterior  # noqa: E402
from .priors import (  # noqa: E402
    DecovPrior,
    ExponentialPrior,
    HorseshoePlusPrior,
    HorseshoePrior,
    LaplacePrior,
    LassoPrior,
    LkjPrior,
    NoPrior,
    NormalPrior,
    ProductNormalPrior,
    StudentTPrior,
    aux_prior,
    coefficient_prior,
    covariance_prior,
    intercept_prior,
)

__all__ = [
    "MvmerPosterior",
    "MvmerData",
    "Submodel",
    "GroupTerm",
    "GroupingFactor",
    "LinearModelPosterior",
    "LinearModelData",
    "lm_sufficient_statistics",
    "DerivedQuantities",
    "LinearModelDerived",
    "ParameterLayout",
    "LikelihoodFamily",
    "resolve_family",
    "register_family",
    "NoPrior",
    "NormalPrior",
    "StudentTPrior",
    "HorseshoePrior",
    "HorseshoePlusPrior",
    "LaplacePrior",
    "LassoPrior",
    "ProductNormalPrior",
    "ExponentialPrior",
    "DecovPrior",
    "LkjPrior",
    "coefficient_prior",
    "intercept_prior",
    "aux_prior",
    "covariance_prior",
    "ModelConfigurationError",
    "get_precision",
    "set_precision",
]

__version__ = "0.1.0"
