"""Tests for the variance-component score test and mixture-χ² tails."""

import numpy as np
import pytest
import scipy.stats

from polyremim.core.errors import ComputationError
from polyremim.lmm import NullModel, mixture_chi2_sf, score_test
from polyremim.lmm.stats import (
    IMHOF_TAIL,
    chi2_sf,
    imhof_sf,
    saddlepoint_sf,
    satterthwaite_sf,
)

pytestmark = pytest.mark.tier0


def _psd(n: int, rank: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, rank))
    return A @ A.T / rank


class TestMixtureTail:
    """Tests for P(Σ λ χ²₁ > x)."""

    def test_single_weight_is_scaled_chi2(self):
        for x in (0.1, 1.0, 7.5):
            expected = scipy.stats.chi2.sf(x / 2.0, 1)
            assert mixture_chi2_sf(x, np.array([2.0])) == pytest.approx(
                expected, rel=1e-6
            )

    def test_chi2_sf_matches_scipy(self):
        assert chi2_sf(3.2, 4.0) == pytest.approx(
            scipy.stats.chi2.sf(3.2, 4), rel=1e-8
        )

    def test_imhof_equal_weights(self):
        lambdas = np.full(4, 0.5)
        for x in (0.5, 2.0, 5.0):
            expected = scipy.stats.chi2.sf(2.0 * x, 4)
            assert imhof_sf(x, lambdas) == pytest.approx(expected, abs=1e-6)

    def test_imhof_accepts_integral_at_subdivision_limit(self):
        # quad can stop at its subdivision limit here with an accurate value
        p = imhof_sf(2.0, np.full(4, 0.5))
        assert p is not None
        assert p == pytest.approx(scipy.stats.chi2.sf(4.0, 4), abs=1e-6)

    def test_imhof_is_primary_for_ordinary_tails(self):
        lambdas = np.array([3.0, 1.0, 0.5, 0.2])
        p = imhof_sf(6.0, lambdas)
        assert p is not None
        assert p > IMHOF_TAIL
        assert mixture_chi2_sf(6.0, lambdas) == p

    def test_satterthwaite_exact_for_equal_weights(self):
        lambdas = np.full(3, 1.5)
        expected = scipy.stats.chi2.sf(4.0 / 1.5, 3)
        assert satterthwaite_sf(4.0, lambdas) == pytest.approx(expected, rel=1e-6)

    def test_saddlepoint_close_in_the_tail(self):
        lambdas = np.full(4, 0.5)
        x = 12.0
        expected = scipy.stats.chi2.sf(2.0 * x, 4)
        assert saddlepoint_sf(x, lambdas) == pytest.approx(expected, rel=0.1)

    def test_unequal_weights_against_simulation(self):
        rng = np.random.default_rng(0)
        lambdas = np.array([3.0, 1.0, 0.5, 0.2])
        draws = rng.chisquare(1, size=(200_000, 4)) @ lambdas
        x = 6.0
        assert mixture_chi2_sf(x, lambdas) == pytest.approx(
            np.mean(draws > x), abs=5e-3
        )

    def test_small_tail_stays_positive(self):
        p = mixture_chi2_sf(80.0, np.array([1.0, 0.8, 0.3]))
        assert 0.0 < p < 1e-10

    @pytest.mark.parametrize("x", [0.0, -1.0])
    def test_non_positive_statistic(self, x):
        assert mixture_chi2_sf(x, np.array([1.0, 2.0])) == 1.0

    def test_no_weights(self):
        assert mixture_chi2_sf(3.0, np.array([])) == 1.0


class TestScoreTest:
    """Tests for NullModel and score_test."""

    @pytest.fixture
    def problem(self):
        rng = np.random.default_rng(42)
        n = 40
        X = np.column_stack([np.ones(n), rng.standard_normal(n)])
        y = rng.standard_normal(n) + 2.0
        return y, X, _psd(n, 10, seed=1), _psd(n, 8, seed=2)

    def test_null_baseline_statistic(self, problem):
        y, X, K, _ = problem
        n, p = X.shape
        P = np.eye(n) - X @ np.linalg.solve(X.T @ X, X.T)
        sigma2 = y @ P @ y / (n - p)
        expected = y @ P @ K @ P @ y / (2.0 * sigma2)

        result = score_test(y, X, [K])
        assert result.stat == pytest.approx(expected, rel=1e-8)
        assert 0.0 < result.pval <= 1.0

    def test_baseline_statistic(self, problem):
        y, X, K0, K = problem
        n, p = X.shape
        tau = 0.7
        Vinv = np.linalg.inv(np.eye(n) + tau * K0)
        P = Vinv - Vinv @ X @ np.linalg.solve(X.T @ Vinv @ X, X.T @ Vinv)
        sigma2 = y @ P @ y / (n - p)
        expected = y @ P @ K @ P @ y / (2.0 * sigma2)

        result = score_test(y, X, [K0, K], tau=[tau])
        assert result.stat == pytest.approx(expected, rel=1e-8)

    def test_null_model_reused_across_candidates(self, problem):
        y, X, K0, K = problem
        null = NullModel(y, X, [K0], [0.3])
        assert null.test(K) == score_test(y, X, [K0, K], tau=[0.3])

    def test_signal_gives_small_pvalue(self):
        rng = np.random.default_rng(5)
        n = 120
        groups = rng.integers(4, size=n)
        K = (groups[:, None] == groups[None, :]).astype(float)
        y = 2.0 * np.array([-1.5, 0.0, 0.5, 1.0])[groups] + rng.standard_normal(n)
        result = score_test(y, np.ones((n, 1)), [K])
        assert result.pval < 1e-6

    def test_zero_candidate_gives_one(self, problem):
        y, X, _, _ = problem
        result = score_test(y, X, [np.zeros((len(y), len(y)))])
        assert result.pval == 1.0

    def test_negative_definite_candidate_raises(self, problem):
        y, X, _, _ = problem
        with pytest.raises(ComputationError):
            score_test(y, X, [-np.eye(len(y))])

    def test_non_positive_definite_baseline_raises(self, problem):
        y, X, K0, K = problem
        with pytest.raises(ComputationError):
            NullModel(y, X, [-np.eye(len(y))], [2.0])

    def test_too_few_individuals_raises(self):
        with pytest.raises(ComputationError):
            NullModel(np.ones(2), np.ones((2, 2)))

    def test_mismatched_ratios_raise(self, problem):
        y, X, K0, _ = problem
        with pytest.raises(ValueError):
            NullModel(y, X, [K0], [])


class TestImhofOnScans:
    """Imhof on the mixtures met when scanning a simulated population."""

    def test_every_position_integrates(self, simulate):
        data = simulate(lg_sizes=(60,), n_ind=120, qtls=[(30, 1.0)], seed=21)
        trait = data.trait(0)
        null = NullModel(trait.y, trait.X)

        for m in range(data.nmrk):
            K = trait.kinship[m]
            lambdas = np.linalg.eigvalsh(0.5 * (null.B.T @ K @ null.B))
            lambdas = lambdas[lambdas > 1e-8 * lambdas.max()]
            if len(lambdas) < 2:
                continue
            stat = null.test(K).stat
            p = imhof_sf(stat, lambdas)
            assert p is not None, f"position {m}"
            assert 0.0 <= p <= 1.0
            if p >= IMHOF_TAIL:
                assert null.test(K).pval == p
