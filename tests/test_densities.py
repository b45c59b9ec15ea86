"""Tests for the prior log-densities on the sampler's primitives."""

import jax.numpy as jnp
import numpy as np
import pytest
from numpyro.distributions import LKJCholesky
from numpyro.distributions.transforms import CorrCholeskyTransform
from scipy import stats

from mvglm_posterior.densities import (
    aux_lp,
    coefficient_lp,
    decov_lp,
    intercept_lp,
    lkj_lp,
    onion_beta_shapes,
)
from mvglm_posterior.exceptions import ModelConfigurationError
from mvglm_posterior.layout import DecovLayout
from mvglm_posterior.priors import (
    DecovPrior,
    ExponentialPrior,
    HorseshoePlusPrior,
    HorseshoePrior,
    LaplacePrior,
    LassoPrior,
    NoPrior,
    NormalPrior,
    ProductNormalPrior,
    StudentTPrior,
)


@pytest.fixture
def z():
    return np.random.default_rng(42).normal(size=4)


class TestInterceptLp:
    def test_none(self):
        assert float(intercept_lp(3.0, NoPrior())) == 0.0

    def test_normal(self):
        lp = intercept_lp(0.4, NormalPrior(mean=1.0, scale=2.0))
        assert float(lp) == pytest.approx(stats.norm.logpdf(0.4, 1.0, 2.0))

    def test_student_t(self):
        lp = intercept_lp(0.4, StudentTPrior(mean=1.0, scale=2.0, df=5.0))
        assert float(lp) == pytest.approx(stats.t.logpdf(0.4, 5.0, 1.0, 2.0))

    def test_rejects_horseshoe(self):
        with pytest.raises(ModelConfigurationError):
            intercept_lp(0.0, HorseshoePrior())


class TestAuxLp:
    def test_normal_is_half_normal_kernel(self):
        lp = aux_lp(0.7, NormalPrior(scale=3.0))
        assert float(lp) == pytest.approx(stats.norm.logpdf(0.7))

    def test_student_t(self):
        lp = aux_lp(0.7, StudentTPrior(scale=3.0, df=4.0))
        assert float(lp) == pytest.approx(stats.t.logpdf(0.7, 4.0))

    def test_exponential(self):
        assert float(aux_lp(0.7, ExponentialPrior(scale=3.0))) == pytest.approx(-0.7)

    def test_zero_scale_contributes_nothing(self):
        assert float(aux_lp(0.7, NormalPrior(scale=0.0))) == 0.0

    def test_none(self):
        assert float(aux_lp(0.7, NoPrior())) == 0.0


class TestCoefficientLp:
    def test_none(self, z):
        assert float(coefficient_lp(z, NoPrior())) == 0.0

    def test_no_coefficients(self):
        assert float(coefficient_lp(jnp.zeros(0), NormalPrior())) == 0.0

    @pytest.mark.parametrize("prior", [NormalPrior(), StudentTPrior(), ProductNormalPrior()])
    def test_standard_normal(self, z, prior):
        assert float(coefficient_lp(z, prior)) == pytest.approx(stats.norm.logpdf(z).sum())

    def test_horseshoe(self, z):
        prior = HorseshoePrior(df=3.0, global_df=2.0, slab_df=5.0)
        local = np.array([[0.5, 1.0, 1.5, 2.0], [0.3, 0.6, 0.9, 1.2]])
        global_ = np.array([0.8, 1.1])
        latent = {"local": local, "global": global_, "caux": 0.9}
        expected = (
            stats.norm.logpdf(z).sum()
            + stats.norm.logpdf(local[0]).sum()
            + stats.invgamma.logpdf(local[1], 1.5, scale=1.5).sum()
            + stats.norm.logpdf(global_[0])
            + stats.invgamma.logpdf(global_[1], 1.0, scale=1.0)
            + stats.invgamma.logpdf(0.9, 2.5, scale=2.5)
        )
        assert float(coefficient_lp(z, prior, latent)) == pytest.approx(expected)

    def test_horseshoe_plus_adds_two_rows(self, z):
        prior = HorseshoePlusPrior(df=3.0, plus_df=4.0)
        local = np.tile(np.array([[0.5], [0.6], [0.7], [0.8]]), (1, 4))
        latent = {"local": local, "global": np.array([0.8, 1.1]), "caux": 0.9}
        plain = coefficient_lp(z, HorseshoePrior(df=3.0), {**latent, "local": local[:2]})
        extra = stats.norm.logpdf(local[2]).sum() + stats.invgamma.logpdf(local[3], 2.0, scale=2.0).sum()
        assert float(coefficient_lp(z, prior, latent)) == pytest.approx(float(plain) + extra)

    def test_laplace_and_lasso(self, z):
        mix = np.array([0.5, 1.0, 1.5, 2.0])
        laplace = coefficient_lp(z, LaplacePrior(), {"mix": mix})
        expected = stats.norm.logpdf(z).sum() + stats.expon.logpdf(mix).sum()
        assert float(laplace) == pytest.approx(expected)
        lasso = coefficient_lp(z, LassoPrior(df=3.0), {"mix": mix, "ool": 1.3})
        assert float(lasso) == pytest.approx(expected + stats.chi2.logpdf(1.3, 3.0))


class TestOnionShapes:
    def test_p2(self):
        shape1, shape2 = onion_beta_shapes(2.0, 2)
        np.testing.assert_array_equal(shape1, [2.0])
        np.testing.assert_array_equal(shape2, [2.0])

    def test_p4(self):
        shape1, shape2 = onion_beta_shapes(1.0, 4)
        np.testing.assert_allclose(shape1, [2.0, 1.0, 1.5])
        np.testing.assert_allclose(shape2, [2.0, 1.5, 1.0])


class TestDecovLp:
    def test_matches_scipy(self):
        rng = np.random.default_rng(0)
        layout = DecovLayout.from_terms((3, 1), (2, 4))
        prior = DecovPrior(regularization=2.0, concentration=1.5, shape=2.0, scale=1.0)
        hyper = prior.resolve(layout.p)
        z_b = rng.normal(size=layout.q)
        z_T = rng.normal(size=layout.len_z_T)
        rho = rng.uniform(0.1, 0.9, size=layout.len_rho)
        zeta = rng.gamma(1.0, size=layout.len_concentration)
        tau = rng.gamma(1.0, size=2)
        shape1, shape2 = onion_beta_shapes(2.0, 3)
        expected = (
            stats.norm.logpdf(z_b).sum()
            + stats.norm.logpdf(z_T).sum()
            + stats.beta.logpdf(rho, shape1, shape2).sum()
            + stats.gamma.logpdf(zeta, 1.5).sum()
            + stats.gamma.logpdf(tau, 2.0).sum()
        )
        lp = decov_lp(layout, hyper, z_b, z_T, rho, zeta, tau)
        assert float(lp) == pytest.approx(expected)

    def test_single_p1_term(self):
        layout = DecovLayout.from_terms((1,), (3,))
        hyper = DecovPrior(shape=1.0).resolve(layout.p)
        z_b = np.array([0.1, -0.2, 0.3])
        lp = decov_lp(layout, hyper, z_b, jnp.zeros(0), jnp.zeros(0), jnp.zeros(0), np.array([0.5]))
        expected = stats.norm.logpdf(z_b).sum() + stats.gamma.logpdf(0.5, 1.0)
        assert float(lp) == pytest.approx(expected)


class TestLkjLp:
    def test_single_coefficient(self):
        hyper = {"df": np.array([3.0]), "scale": np.array([2.0]), "regularization": 1.0}
        z_mat = np.array([[0.2, -0.4]])
        lp = lkj_lp(jnp.asarray([0.9]), z_mat, None, hyper)
        expected = stats.t.logpdf(0.9, 3.0, 0.0, 2.0) + stats.norm.logpdf(z_mat).sum()
        assert float(lp) == pytest.approx(expected)

    def test_correlated(self):
        L = CorrCholeskyTransform()(jnp.asarray([0.3, -0.2, 0.5]))
        hyper = {"df": np.array([1.0, 2.0, 3.0]), "scale": np.ones(3), "regularization": 2.0}
        sd = jnp.asarray([0.5, 1.0, 1.5])
        z_mat = np.zeros((3, 2))
        lp = lkj_lp(sd, z_mat, L, hyper)
        expected = (
            stats.t.logpdf(np.asarray(sd), [1.0, 2.0, 3.0]).sum()
            + stats.norm.logpdf(z_mat).sum()
            + float(LKJCholesky(3, concentration=2.0).log_prob(L))
        )
        assert float(lp) == pytest.approx(expected)
