"""Tests for the R²-parameterised linear model."""

import jax.numpy as jnp
import numpy as np
import pytest
from scipy import stats

from mvglm_posterior.exceptions import ModelConfigurationError
from mvglm_posterior.lm import (
    LinearModelData,
    LinearModelPosterior,
    lm_sufficient_statistics,
)
from mvglm_posterior.priors import HorseshoePrior, NormalPrior, StudentTPrior


@pytest.fixture
def arrays():
    rng = np.random.default_rng(42)
    n = 40
    X = rng.normal(loc=2.0, size=(n, 3))
    y = 0.5 + X @ np.array([1.0, -0.5, 0.25]) + rng.normal(size=n)
    return X, y


def _params(post, seed=0):
    rng = np.random.default_rng(seed)
    return post.layout.constrain(rng.uniform(-1.0, 1.0, post.size))


class TestSufficientStatistics:
    def test_matches_ols(self, arrays):
        X, y = arrays
        group = lm_sufficient_statistics(X, y)
        design = np.column_stack([np.ones(len(y)), X])
        coef, ssr, *_ = np.linalg.lstsq(design, y, rcond=None)
        np.testing.assert_allclose(group.R_inv @ group.Rb, coef[1:])
        assert group.SSR == pytest.approx(float(ssr[0]))
        assert group.s_Y == pytest.approx(np.std(y, ddof=1))
        np.testing.assert_allclose(group.x_bar, X.mean(axis=0))
        assert group.K == 3

    def test_too_few_observations(self):
        with pytest.raises(ValueError, match="more observations"):
            lm_sufficient_statistics(np.ones((2, 2)), np.ones(2))

    def test_rank_deficient(self):
        X = np.column_stack([np.arange(5.0), 2 * np.arange(5.0)])
        with pytest.raises(ValueError, match="rank deficient"):
            lm_sufficient_statistics(X, np.arange(5.0))

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="entries"):
            lm_sufficient_statistics(np.ones((5, 1)), np.ones(4))


class TestLayout:
    def test_sites(self, arrays):
        X, y = arrays
        data = LinearModelData.from_arrays([X, X[:, :1]], [y, y])
        post = LinearModelPosterior(data)
        assert post.layout.site_names == (
            "u_raw_1",
            "z_alpha_1",
            "z_alpha_2",
            "R2_1",
            "R2_2",
            "log_omega_1",
            "log_omega_2",
        )

    def test_prior_predictive_drops_log_omega(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(
            LinearModelData.from_arrays([X], [y], has_intercept=False, prior_PD=True)
        )
        assert post.layout.site_names == ("u_raw_1", "R2_1")

    def test_rejects_horseshoe_intercept(self, arrays):
        X, y = arrays
        with pytest.raises(ValueError, match="intercept"):
            LinearModelData.from_arrays([X], [y], intercept_prior=HorseshoePrior())

    def test_rejects_student_t_intercept(self, arrays):
        X, y = arrays
        with pytest.raises(ModelConfigurationError, match="none and normal"):
            LinearModelData.from_arrays(
                [X], [y], intercept_prior=StudentTPrior(scale=2.0, df=1.0)
            )


class TestLogLikelihood:
    @pytest.mark.parametrize("has_intercept", [True, False])
    def test_equals_direct_gaussian(self, arrays, has_intercept):
        X, y = arrays
        post = LinearModelPosterior(
            LinearModelData.from_arrays([X], [y], has_intercept=has_intercept)
        )
        params = _params(post)
        (tp,) = post.transformed_parameters(params)
        beta = np.asarray(tp["beta"])
        mean = float(tp["alpha_c"]) + (X - X.mean(axis=0)) @ beta
        expected = stats.norm.logpdf(y, mean, float(tp["sigma"])).sum()
        assert float(post.log_likelihood(params)) == pytest.approx(expected)

    def test_single_predictor(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X[:, :1]], [y]))
        params = _params(post, seed=4)
        (tp,) = post.transformed_parameters(params)
        group = post.data.groups[0]
        delta_y = group.s_Y * np.exp(float(params["log_omega_1"]))
        R = float(params["R2_1"])
        assert float(tp["sigma"]) == pytest.approx(delta_y * np.sqrt(1 - R**2))
        mean = float(tp["alpha_c"]) + (X[:, :1] - X[:, :1].mean()) @ np.asarray(tp["beta"])
        expected = stats.norm.logpdf(y, mean, float(tp["sigma"])).sum()
        assert float(post.log_likelihood(params)) == pytest.approx(expected)


class TestTransformedParameters:
    def test_direction_and_variance_split(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X], [y]))
        params = _params(post, seed=2)
        (tp,) = post.transformed_parameters(params)
        group = post.data.groups[0]
        delta_y = group.s_Y * np.exp(float(params["log_omega_1"]))
        R2 = float(params["R2_1"])
        theta = np.asarray(tp["theta"])
        assert np.linalg.norm(theta) == pytest.approx(np.sqrt(R2 * (group.N - 1)) * delta_y)
        assert float(tp["sigma"]) == pytest.approx(delta_y * np.sqrt(1 - R2))
        np.testing.assert_allclose(tp["beta"], group.R_inv @ theta)

    def test_informative_intercept_is_scaled(self, arrays):
        X, y = arrays
        data = LinearModelData.from_arrays(
            [X], [y], intercept_prior=NormalPrior(mean=1.0, scale=5.0)
        )
        post = LinearModelPosterior(data)
        params = _params(post)
        (tp,) = post.transformed_parameters(params)
        assert float(tp["alpha_c"]) == pytest.approx(float(params["z_alpha_1"]) * 5.0 + 1.0)


class TestLogPrior:
    def test_multiple_predictors(self, arrays):
        X, y = arrays
        data = LinearModelData.from_arrays([X], [y], intercept_prior=NormalPrior(), r2_eta=2.0)
        post = LinearModelPosterior(data)
        params = _params(post, seed=1)
        raw = np.asarray(params["u_raw_1"])
        expected = (
            stats.norm.logpdf(float(params["z_alpha_1"]))
            - 0.5 * raw @ raw
            + stats.beta.logpdf(float(params["R2_1"]), 1.5, 2.0)
        )
        assert float(post.log_prior(params)) == pytest.approx(expected)

    def test_single_predictor_uses_squared_r(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X[:, :1]], [y]))
        params = {"z_alpha_1": 0.0, "R2_1": jnp.asarray(-0.6), "log_omega_1": 0.0}
        expected = stats.beta.logpdf(0.36, 0.5, 1.0) + np.log(0.6)
        assert float(post.log_prior(params)) == pytest.approx(expected)


class TestDensity:
    def test_value_and_grad_finite(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X, X[:, :2]], [y, y]))
        x = np.random.default_rng(0).uniform(-1.0, 1.0, post.size)
        value, grad = post.value_and_grad(x)
        assert float(value) == pytest.approx(float(post.log_density_unconstrained(x)))
        assert float(post.potential_fn(x)) == pytest.approx(-float(value))
        assert np.all(np.isfinite(np.asarray(grad)))

    def test_prior_predictive(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X], [y], prior_PD=True))
        params = _params(post)
        assert float(post.log_density(params)) == pytest.approx(float(post.log_prior(params)))


class TestDerivedQuantities:
    def test_uncentred_intercept_and_r2(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X, X[:, :1]], [y, y]))
        params = _params(post, seed=3)
        derived = post.derived_quantities(params)
        tps = post.transformed_parameters(params)
        for j, (group, tp) in enumerate(zip(post.data.groups, tps, strict=True)):
            beta = np.asarray(tp["beta"])
            np.testing.assert_allclose(derived.coefficients[j], beta)
            assert derived.intercepts[j] == pytest.approx(
                float(tp["alpha_c"]) - group.x_bar @ beta
            )
        assert derived.r_squared[0] == pytest.approx(float(params["R2_1"]))
        assert derived.r_squared[1] == pytest.approx(float(params["R2_2"]) ** 2)
        assert all(s > 0 for s in derived["sigma"])

    def test_no_intercept(self, arrays):
        X, y = arrays
        post = LinearModelPosterior(LinearModelData.from_arrays([X], [y], has_intercept=False))
        derived = post.derived_quantities(_params(post))
        assert derived.intercepts == [None]
