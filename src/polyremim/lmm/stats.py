"""Variance-component score test for one candidate kinship matrix.

Null model: y = Xb + Σ g_k + e with Var(y) = σ² V0, V0 = I + Σ tau_k K_k,
where the baseline ratios tau_k are held fixed. The candidate adds a random
effect with covariance K. The score statistic is

    Q = y'PKPy / (2 σ̂²),   σ̂² = y'Py / (n - p)

with P the REML projection under V0. Under the null, Q is distributed as a
mixture Σ λ_i χ²₁ where λ are the eigenvalues of ½ B'KB and B spans the
projected space (P = BB'). The tail is computed by Imhof's numerical
inversion, with a Kuonen saddlepoint for small tails and a Satterthwaite
scaled χ² as the last resort.

The χ² tails use JAX; call polyremim.core.configure_jax() first so they are
computed in double precision (remim() does this).

Reference: Imhof (1961) Biometrika 48:419; Kuonen (1999) Biometrika 86:929.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np
from jax.scipy.stats import chi2
from scipy import integrate
from scipy.linalg import cholesky, solve_triangular
from scipy.optimize import brentq
from scipy.stats import norm

from polyremim.core.errors import ComputationError


# Imhof loses relative accuracy below this
IMHOF_TAIL = 1e-5
# Largest accepted quadrature error on the probability scale
IMHOF_ABSERR = 1e-6
IMHOF_LIMIT = 1000


class ScoreResult(NamedTuple):
    stat: float
    pval: float


def chi2_sf(x: float, df: float) -> float:
    """χ² survival function P(X > x) computed with JAX in double precision."""
    return float(chi2.sf(x, df))


# =============================================================================
# Mixture-of-χ² tail probabilities
# =============================================================================


def imhof_sf(x: float, lambdas: np.ndarray) -> float | None:
    """P(Σ λ_i χ²₁ > x) by Imhof's numerical inversion.

    The integral over [0, inf) is accepted on its error estimate. quad may
    stop at its subdivision limit on the slowly decaying oscillatory tail and
    still hold an accurate value.

    Returns None when the error bound exceeds IMHOF_ABSERR or the result
    falls outside [0, 1] beyond that bound.
    """

    def integrand(u: float) -> float:
        if u == 0.0:
            return 0.5 * (np.sum(lambdas) - x)
        theta = 0.5 * np.sum(np.arctan(lambdas * u)) - 0.5 * x * u
        rho = np.prod((1.0 + (lambdas * u) ** 2) ** 0.25)
        return np.sin(theta) / (u * rho)

    # full_output keeps quad from emitting IntegrationWarning
    value, abserr = integrate.quad(
        integrand,
        0.0,
        np.inf,
        limit=IMHOF_LIMIT,
        epsabs=1e-10,
        epsrel=1e-8,
        full_output=1,
    )[:2]
    tol = abserr / np.pi
    if not np.isfinite(value) or not tol < IMHOF_ABSERR:
        return None
    p = 0.5 + value / np.pi
    if p < -tol or p > 1.0 + tol:
        return None
    return float(min(max(p, 0.0), 1.0))


def saddlepoint_sf(x: float, lambdas: np.ndarray) -> float:
    """P(Σ λ_i χ²₁ > x) by Kuonen's saddlepoint approximation.

    Returns NaN when the saddlepoint equation cannot be solved or lies too
    close to zero for the approximation to hold.
    """
    d = np.max(lambdas)
    lam = lambdas / d
    x = x / d
    n = len(lam)

    def k0(zeta: float) -> float:
        return -0.5 * np.sum(np.log(1.0 - 2.0 * zeta * lam))

    def k1(zeta: float) -> float:
        return np.sum(lam / (1.0 - 2.0 * zeta * lam))

    def k2(zeta: float) -> float:
        return 2.0 * np.sum(lam**2 / (1.0 - 2.0 * zeta * lam) ** 2)

    lmin = -0.01 if x > np.sum(lam) else -n / (2.0 * x)
    lmax = np.min(1.0 / (2.0 * lam[lam > 0.0])) * 0.99999

    try:
        zeta = brentq(lambda z: k1(z) - x, lmin, lmax, maxiter=1000)
    except (ValueError, RuntimeError):
        return float("nan")

    if abs(zeta) < 1e-4:
        return float("nan")
    w = np.sign(zeta) * np.sqrt(2.0 * (zeta * x - k0(zeta)))
    v = zeta * np.sqrt(k2(zeta))
    return float(norm.sf(w + np.log(v / w) / w))


def satterthwaite_sf(x: float, lambdas: np.ndarray) -> float:
    """P(Σ λ_i χ²₁ > x) by a moment-matched scaled χ²."""
    s1 = np.sum(lambdas)
    s2 = np.sum(lambdas**2)
    scale = s2 / s1
    df = s1**2 / s2
    return chi2_sf(x / scale, df)


def mixture_chi2_sf(x: float, lambdas: np.ndarray) -> float:
    """Upper tail of a positive mixture of χ²₁ variables.

    Args:
        x: Observed statistic
        lambdas: Positive mixture weights

    Returns:
        P(Σ λ_i χ²₁ > x)

    Raises:
        ComputationError: If no method yields a finite probability.
    """
    if x <= 0.0 or len(lambdas) == 0:
        return 1.0
    if len(lambdas) == 1:
        return chi2_sf(x / lambdas[0], 1.0)

    p = imhof_sf(x, lambdas)
    if p is None or p < IMHOF_TAIL:
        p_saddle = saddlepoint_sf(x, lambdas)
        if np.isfinite(p_saddle):
            return min(max(p_saddle, 0.0), 1.0)
    if p is not None:
        return p

    p = satterthwaite_sf(x, lambdas)
    if not np.isfinite(p):
        raise ComputationError(f"No p-value method converged for statistic {x:.4g}")
    return p


# =============================================================================
# Score test
# =============================================================================


class NullModel:
    """Baseline quantities shared by every candidate of one scan.

    Args:
        y: Phenotype vector (n,)
        X: Fixed-effect design (n, p)
        K_list: Baseline relationship matrices (may be empty)
        tau: Baseline variance ratios, one per matrix

    Raises:
        ComputationError: If V0 is not positive definite or the residual
            variance vanishes.
    """

    def __init__(
        self,
        y: np.ndarray,
        X: np.ndarray,
        K_list: Sequence[np.ndarray] = (),
        tau: Sequence[float] = (),
    ) -> None:
        if len(K_list) != len(tau):
            raise ValueError(
                f"Got {len(K_list)} baseline matrices but {len(tau)} ratios"
            )
        n, p = X.shape
        if n <= p:
            raise ComputationError(f"Need more than {p} individuals, got {n}")

        V0 = np.eye(n)
        for t, K in zip(tau, K_list):
            V0 += t * K
        try:
            L = cholesky(V0, lower=True)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ComputationError(
                f"Baseline covariance is not positive definite: {e}"
            ) from e

        y_t = solve_triangular(L, y, lower=True)
        X_t = solve_triangular(L, X, lower=True)
        Q, _ = np.linalg.qr(X_t, mode="complete")
        U = Q[:, p:]

        r = U.T @ y_t
        self.sigma2 = float(r @ r) / (n - p)
        if not (np.isfinite(self.sigma2) and self.sigma2 > 0):
            raise ComputationError(f"Residual variance is {self.sigma2}")

        # P = B B'
        self.B = solve_triangular(L.T, U, lower=False)
        self.Py = self.B @ r
        self.n = n
        self.p = p

    def test(self, K: np.ndarray) -> ScoreResult:
        """Score statistic and p-value for candidate matrix `K`.

        Raises:
            ComputationError: If K is clearly not positive semi-definite or
                the result is not finite.
        """
        stat = float(self.Py @ K @ self.Py) / (2.0 * self.sigma2)

        M = 0.5 * (self.B.T @ K @ self.B)
        lambdas = np.linalg.eigvalsh(M)
        scale = np.max(np.abs(lambdas)) if lambdas.size else 0.0
        if scale == 0.0:
            return ScoreResult(max(stat, 0.0), 1.0)
        if lambdas.min() < -1e-6 * scale:
            raise ComputationError(
                f"Candidate matrix is not positive semi-definite "
                f"(eigenvalue {lambdas.min():.3g})"
            )
        lambdas = lambdas[lambdas > 1e-8 * scale]

        pval = mixture_chi2_sf(stat, lambdas)
        if not (np.isfinite(stat) and np.isfinite(pval)):
            raise ComputationError("Score test produced a non-finite result")
        return ScoreResult(stat, pval)


def score_test(
    y: np.ndarray,
    X: np.ndarray,
    K_list: Sequence[np.ndarray],
    tau: Sequence[float] = (),
) -> ScoreResult:
    """Score test of the last matrix in `K_list` given the others as baseline.

    Args:
        y: Phenotype vector (n,)
        X: Fixed-effect design (n, p)
        K_list: Baseline matrices followed by the candidate matrix
        tau: Variance ratios of the baseline matrices

    Returns:
        ScoreResult (statistic, p-value)
    """
    if len(K_list) == 0:
        raise ValueError("score_test needs a candidate matrix")
    return NullModel(y, X, K_list[:-1], tau).test(K_list[-1])
