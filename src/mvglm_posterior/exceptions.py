"""Exception classes for the mvglm_posterior package."""


class ModelConfigurationError(ValueError):
    """Raised when the model configuration cannot be evaluated.

    Signals a malformed model rather than a numerical problem: an
    unsupported family (binomial with more than one trial), a family
    or link outside the supported enumeration, or a prior / intercept /
    covariance tag that is not recognised.  A posterior evaluation that
    hits one of these conditions is aborted immediately.
    """
