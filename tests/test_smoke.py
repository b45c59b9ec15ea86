"""Large-n smoke tests for regression detection.

These tests verify that the posterior compiles and evaluates within a
reasonable time bound on a moderately large three-outcome model
(n=5,000 per outcome, two grouping factors), and that a numpyro NUTS
sampler can consume ``potential_fn`` directly.  They catch accidental
Python-level loops over observations and tracing blowups.

All tests are marked ``@pytest.mark.slow`` and excluded from the
default ``pytest`` run.  Run them explicitly::

    pytest -m slow
"""

from __future__ import annotations

import time

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
import pytest
from numpyro.infer import MCMC, NUTS

from mvglm_posterior import (
    GroupingFactor,
    GroupTerm,
    LinearModelData,
    LinearModelPosterior,
    LkjPrior,
    MvmerData,
    MvmerPosterior,
    NormalPrior,
    Submodel,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

N = 5_000
N_SUBJECTS = 250
N_SITES = 10
SEED = 42


def _make_large_model(covariance_prior=None) -> MvmerData:
    rng = np.random.default_rng(SEED)
    subject = rng.integers(0, N_SUBJECTS, size=N)
    site = rng.integers(0, N_SITES, size=N)
    X = pd.DataFrame({"age": rng.standard_normal(N), "dose": rng.standard_normal(N)})
    ones = np.ones((N, 1))
    slope = np.column_stack([ones, X["age"].to_numpy()])

    y_cont = pd.Series(0.5 * X["age"] - 0.2 * X["dose"] + rng.standard_normal(N))
    y_bin = rng.binomial(1, 1 / (1 + np.exp(-0.8 * X["age"].to_numpy())))
    y_count = rng.poisson(np.exp(0.2 + 0.3 * X["dose"].to_numpy()))

    prior = NormalPrior(scale=2.5)
    submodels = (
        Submodel(
            y=y_cont,
            X=X,
            coefficient_prior=prior,
            intercept_prior=NormalPrior(scale=10.0),
            aux_prior=NormalPrior(scale=5.0),
            group_terms=(GroupTerm(subject, slope), GroupTerm(site, ones)),
        ),
        Submodel(
            y=y_bin,
            X=X,
            family="bernoulli",
            coefficient_prior=prior,
            group_terms=(GroupTerm(subject, ones),),
        ),
        Submodel(
            y=y_count,
            X=X[["dose"]],
            family="neg_binomial_2",
            coefficient_prior=prior,
            aux_prior=NormalPrior(scale=5.0),
            group_terms=(None, GroupTerm(site, ones)),
        ),
    )
    kwargs = {} if covariance_prior is None else {"covariance_prior": covariance_prior}
    return MvmerData(
        submodels=submodels,
        grouping_factors=(GroupingFactor(N_SUBJECTS), GroupingFactor(N_SITES)),
        **kwargs,
    )


# ------------------------------------------------------------------ #
# Smoke tests
# ------------------------------------------------------------------ #


@pytest.mark.slow
class TestDecovSmoke:
    """Three outcomes, two grouping factors, decov prior."""

    def test_completes_within_bound(self) -> None:
        post = MvmerPosterior(_make_large_model())
        x = post.initial_values("random", seed=SEED)
        t0 = time.monotonic()
        for _ in range(20):
            value, grad = post.value_and_grad(x)
        elapsed = time.monotonic() - t0
        assert elapsed < 60, f"Decov smoke test took {elapsed:.1f}s (limit 60s)"
        assert np.isfinite(float(value))
        assert np.all(np.isfinite(np.asarray(grad)))

    def test_layout_structure(self) -> None:
        post = MvmerPosterior(_make_large_model())
        decov = post.data.decov_layout
        assert decov.p == (3, 2)
        assert decov.q == 3 * N_SUBJECTS + 2 * N_SITES
        assert post.data.partitions[1].sizes == (1, 0, 1)


@pytest.mark.slow
class TestLkjSmoke:
    """Same model under the LKJ prior."""

    def test_completes_within_bound(self) -> None:
        post = MvmerPosterior(_make_large_model(LkjPrior(scale=2.0)))
        x = post.initial_values("random", seed=SEED)
        t0 = time.monotonic()
        for _ in range(20):
            value, grad = post.value_and_grad(x)
        elapsed = time.monotonic() - t0
        assert elapsed < 60, f"LKJ smoke test took {elapsed:.1f}s (limit 60s)"
        assert np.isfinite(float(value))
        assert np.all(np.isfinite(np.asarray(grad)))


@pytest.mark.slow
class TestSamplerSmoke:
    """numpyro NUTS driven by ``potential_fn`` on the flat vector."""

    def test_nuts_runs(self) -> None:
        rng = np.random.default_rng(SEED)
        n = 200
        X = rng.standard_normal((n, 2))
        y = 1.0 + X @ np.array([0.5, -0.5]) + rng.standard_normal(n)
        data = MvmerData(
            submodels=(
                Submodel(
                    y=y,
                    X=X,
                    coefficient_prior=NormalPrior(scale=2.5),
                    intercept_prior=NormalPrior(scale=10.0),
                    aux_prior=NormalPrior(scale=5.0),
                ),
            )
        )
        post = MvmerPosterior(data)
        mcmc = MCMC(
            NUTS(potential_fn=post.potential_fn),
            num_warmup=200,
            num_samples=200,
            progress_bar=False,
        )
        mcmc.run(
            jax.random.PRNGKey(SEED),
            init_params=jnp.asarray(post.initial_values("model_based")),
        )
        draws = np.asarray(mcmc.get_samples())
        assert draws.shape == (200, post.size)
        params = post.layout.constrain(draws.mean(axis=0))
        assert float(params["gamma_1"]) == pytest.approx(1.0, abs=0.3)

    def test_linear_model_completes(self) -> None:
        rng = np.random.default_rng(SEED)
        Xs = [rng.standard_normal((N, 4)) for _ in range(3)]
        ys = [X @ np.array([1.0, 0.0, -1.0, 0.5]) + rng.standard_normal(N) for X in Xs]
        post = LinearModelPosterior(LinearModelData.from_arrays(Xs, ys))
        value, grad = post.value_and_grad(np.zeros(post.size))
        assert np.isfinite(float(value))
        assert grad.shape == (post.size,)
