"""Tests for linear-predictor assembly."""

import jax.numpy as jnp
import numpy as np
import pytest

from mvglm_posterior.data import GroupTerm
from mvglm_posterior.exceptions import ModelConfigurationError
from mvglm_posterior.layout import FactorPartition
from mvglm_posterior.predictor import apply_intercept, evaluate_eta, group_contribution


@pytest.fixture
def X():
    rng = np.random.default_rng(42)
    return rng.normal(size=(8, 3))


class TestApplyIntercept:
    def test_none_is_noop(self):
        eta = jnp.asarray([1.0, 2.0])
        np.testing.assert_array_equal(apply_intercept(eta, "none"), eta)

    def test_unbounded_shifts(self):
        out = apply_intercept(jnp.asarray([1.0, 2.0]), "unbounded", 0.5)
        np.testing.assert_allclose(out, [1.5, 2.5])

    def test_lower_pins_maximum(self, X):
        eta = jnp.asarray(X @ np.array([1.0, -2.0, 0.5]))
        out = apply_intercept(eta, "lower", -0.3)
        assert float(jnp.max(out)) == pytest.approx(-0.3, abs=1e-14)

    def test_upper_pins_minimum(self, X):
        eta = jnp.asarray(X @ np.array([1.0, -2.0, 0.5]))
        out = apply_intercept(eta, "upper", 0.7)
        assert float(jnp.min(out)) == pytest.approx(0.7, abs=1e-14)

    def test_invalid_type(self):
        with pytest.raises(ModelConfigurationError, match="Invalid intercept type"):
            apply_intercept(jnp.zeros(2), "both", 0.0)


class TestEvaluateEta:
    def test_no_predictors_gives_intercept(self):
        eta = evaluate_eta(np.zeros((4, 0)), jnp.zeros(0), "unbounded", 1.25)
        np.testing.assert_allclose(eta, np.full(4, 1.25))

    def test_no_predictors_no_intercept_is_zero(self):
        eta = evaluate_eta(np.zeros((3, 0)), jnp.zeros(0), "none")
        np.testing.assert_array_equal(eta, np.zeros(3))

    def test_fixed_part(self, X):
        beta = jnp.asarray([0.5, 1.0, -1.0])
        np.testing.assert_allclose(evaluate_eta(X, beta, "unbounded", 2.0), X @ beta + 2.0)

    def test_group_terms_added_after_bound(self, X):
        beta = jnp.asarray([0.5, 1.0, -1.0])
        groups = np.array([0, 1, 0, 1, 0, 1, 0, 1])
        term = GroupTerm(groups, np.ones((8, 1)))
        b = jnp.asarray([[2.0], [-1.0]])
        eta = evaluate_eta(X, beta, "lower", 0.0, [(b, FactorPartition((1,)), 0, term)])
        fixed = X @ np.asarray(beta)
        expected = fixed - fixed.max() + np.where(groups == 0, 2.0, -1.0)
        np.testing.assert_allclose(eta, expected)


class TestGroupContribution:
    def test_uses_partition_offset(self):
        # Factor shared by two submodels: 2 columns for the first, 1 for the second.
        partition = FactorPartition((2, 1))
        b = jnp.asarray([[1.0, 2.0, 10.0], [3.0, 4.0, 20.0]])
        term = GroupTerm([1, 0, 1], [[1.0], [1.0], [0.5]])
        out = group_contribution(b, partition, 1, term)
        np.testing.assert_allclose(out, [20.0, 10.0, 10.0])

    def test_first_submodel_columns(self):
        partition = FactorPartition((2, 1))
        b = jnp.asarray([[1.0, 2.0, 10.0], [3.0, 4.0, 20.0]])
        term = GroupTerm([0, 1], [[1.0, 1.0], [2.0, 0.0]])
        out = group_contribution(b, partition, 0, term)
        np.testing.assert_allclose(out, [3.0, 6.0])
