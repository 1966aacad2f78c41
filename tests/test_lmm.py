"""Tests for variance-ratio optimization, REML fits and baseline kinship lists."""

import numpy as np
import pytest

from polyremim.core.errors import FitError
from polyremim.data import Genome, KinshipTensor
from polyremim.lmm import FitResult, KinshipList, fit_variance_components
from polyremim.lmm.likelihood import reml_terms
from polyremim.lmm.optimize import brent_minimize, optimize_lambda

pytestmark = pytest.mark.tier0


def _random_kinship(n: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, n // 2))
    K = A @ A.T / (n // 2)
    return K / np.mean(np.diag(K))


class TestBrent:
    """Tests for bounded scalar minimization."""

    def test_quadratic_minimum(self):
        result = brent_minimize(lambda x: (x - 1.3) ** 2 + 2.0, -5.0, 5.0)
        assert result.converged
        assert result.x == pytest.approx(1.3, abs=1e-4)
        assert result.fx == pytest.approx(2.0, abs=1e-8)

    def test_optimum_inside_bounds(self):
        opt = optimize_lambda(lambda lam: (np.log10(lam) - 1.0) ** 2)
        assert opt.lam == pytest.approx(10.0, rel=1e-3)
        assert opt.logl == pytest.approx(0.0, abs=1e-8)
        assert opt.at_boundary is None

    def test_lower_boundary_flagged(self):
        opt = optimize_lambda(lambda lam: lam)
        assert opt.at_boundary == "lower"
        assert opt.lam == pytest.approx(1e-5, rel=0.05)

    def test_upper_boundary_flagged(self):
        opt = optimize_lambda(lambda lam: -np.log(lam))
        assert opt.at_boundary == "upper"
        assert opt.lam == pytest.approx(1e5, rel=0.05)


class TestFitVarianceComponents:
    """Tests for REML fits with one or several components."""

    def test_single_component_matches_dense_likelihood(self):
        rng = np.random.default_rng(3)
        n = 60
        K = _random_kinship(n, seed=4)
        y = rng.multivariate_normal(np.zeros(n), 0.8 * K + np.eye(n)) + 1.0
        X = np.ones((n, 1))

        fit = fit_variance_components(y, X, [K])
        assert fit.method == "brent"
        assert fit.tau.shape == (1,)

        s2 = fit.sigma2_e
        varcomps = np.array([fit.tau[0] * s2, s2])
        dense = reml_terms(y, X, [K, np.eye(n)], varcomps)
        assert fit.logl == pytest.approx(dense.logl, rel=1e-8)

    def test_single_component_is_a_maximum(self):
        rng = np.random.default_rng(5)
        n = 50
        K = _random_kinship(n, seed=6)
        y = rng.multivariate_normal(np.zeros(n), 1.5 * K + np.eye(n))
        X = np.ones((n, 1))

        fit = fit_variance_components(y, X, [K])
        s2 = fit.sigma2_e
        for factor in (0.5, 2.0):
            varcomps = np.array([factor * fit.tau[0] * s2, s2])
            other = reml_terms(y, X, [K, np.eye(n)], varcomps)
            assert other.logl <= fit.logl + 1e-10

    def test_two_components_use_ai_reml(self):
        rng = np.random.default_rng(7)
        n = 60
        K1 = _random_kinship(n, seed=8)
        K2 = _random_kinship(n, seed=9)
        cov = 0.7 * K1 + 0.4 * K2 + np.eye(n)
        y = rng.multivariate_normal(np.zeros(n), cov)

        fit = fit_variance_components(y, np.ones((n, 1)), [K1, K2])
        assert fit.method == "ai-reml"
        assert fit.tau.shape == (2,)
        assert np.all(fit.tau > 0)
        assert np.isfinite(fit.logl)

    def test_unit_weights_match_unweighted(self):
        rng = np.random.default_rng(10)
        n = 40
        K = _random_kinship(n, seed=11)
        y = rng.standard_normal(n)
        X = np.ones((n, 1))

        plain = fit_variance_components(y, X, [K])
        weighted = fit_variance_components(y, X, [K], weights=np.full(n, 3.0))
        assert weighted.logl == pytest.approx(plain.logl)
        np.testing.assert_allclose(weighted.tau, plain.tau)

    def test_zero_phenotype_raises(self):
        n = 20
        with pytest.raises(FitError):
            fit_variance_components(
                np.zeros(n), np.ones((n, 1)), [_random_kinship(n, seed=1)]
            )

    def test_empty_component_list_raises(self):
        with pytest.raises(ValueError):
            fit_variance_components(np.ones(5), np.ones((5, 1)), [])

    def test_fit_result_defaults(self):
        fit = FitResult(tau=np.ones(1), sigma2_e=1.0, logl=0.0, converged=True)
        assert fit.caveats == ()
        assert fit.method == "brent"


class TestKinshipList:
    """Tests for baseline component lists."""

    @pytest.fixture
    def tensor(self, simulate) -> KinshipTensor:
        data = simulate(lg_sizes=(10,), n_ind=12, n_classes=3, seed=2)
        return KinshipTensor(data.G)

    def test_empty_for_no_positions(self, tensor):
        baseline = KinshipList.for_qtls(tensor, [])
        assert baseline.is_null
        assert len(baseline) == 0

    def test_one_component_per_qtl(self, tensor):
        baseline = KinshipList.for_qtls(tensor, [2, 7])
        assert baseline.names == ("2", "7")
        np.testing.assert_allclose(baseline.matrices[1], tensor[7])

    def test_polygenic_mean(self, tensor):
        baseline = KinshipList.for_qtls(tensor, [2, 7], polygenes=True)
        assert baseline.names == ("polygenic",)
        np.testing.assert_allclose(
            baseline.matrices[0], (tensor[2] + tensor[7]) / 2
        )

    def test_iterates_over_matrices(self, tensor):
        baseline = KinshipList.for_qtls(tensor, [2, 4])
        assert len(baseline) == 2
        assert not baseline.is_null
        np.testing.assert_allclose(list(baseline)[1], tensor[4])


def test_genome_and_tensor_agree_on_positions(simulate):
    data = simulate(lg_sizes=(5, 7), n_ind=10, seed=3)
    assert isinstance(data.genome, Genome)
    assert KinshipTensor(data.G).n_positions == data.genome.n_positions == 12
