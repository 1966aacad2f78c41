"""REML log-likelihood for weighted variance-component models.

Model: y = Xb + Σ g_k + e with Var(g_k) = σ²_k K_k and Var(e) = σ²_e W⁻¹,
W = diag(weights). Everything here works on whitened data (y, X and the
K_k premultiplied by W^½), where the residual covariance is σ²_e I.

Two evaluation paths:
- One component: eigendecomposition of K, σ²_e profiled out, likelihood as
  a function of the ratio lambda = σ²_1 / σ²_e only.
- Several components: dense V, gradient and average-information matrix for
  AI-REML Newton steps.

Both return the same REML log-likelihood (up to the weight Jacobian that
fit_variance_components adds), including the 2π constant.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np
from scipy.linalg import cho_factor, cho_solve

_LOG_2PI = np.log(2.0 * np.pi)


def whiten(
    y: np.ndarray,
    X: np.ndarray,
    K_list: Sequence[np.ndarray],
    weights: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, list[np.ndarray]]:
    """Premultiply data by W^½ so the residual covariance becomes identity.

    Args:
        y: Phenotype vector (n,)
        X: Fixed-effect design (n, p)
        K_list: Relationship matrices (n, n)
        weights: Positive per-individual weights (n,)

    Returns:
        Tuple of (y_w, X_w, K_w_list)
    """
    d = np.sqrt(weights)
    y_w = d * y
    X_w = d[:, None] * X
    K_w = [K * np.outer(d, d) for K in K_list]
    return y_w, X_w, K_w


# =============================================================================
# Single component (eigenbasis)
# =============================================================================


class Eigenbasis(NamedTuple):
    """Rotated single-component problem.

    Attributes:
        eigenvalues: Eigenvalues of K (n,), clipped at zero.
        Uty: U'y (n,)
        UtX: U'X (n, p)
    """

    eigenvalues: np.ndarray
    Uty: np.ndarray
    UtX: np.ndarray


def rotate(y: np.ndarray, X: np.ndarray, K: np.ndarray) -> Eigenbasis:
    """Eigendecompose K and rotate y and X into its eigenbasis.

    Raises:
        numpy.linalg.LinAlgError: If the eigendecomposition fails.
    """
    eigenvalues, U = np.linalg.eigh(K)
    eigenvalues = np.clip(eigenvalues, 0.0, None)
    return Eigenbasis(eigenvalues, U.T @ y, U.T @ X)


def _projected_quantities(
    lam: float, basis: Eigenbasis
) -> tuple[float, float, float]:
    """y'P_H y, Σ log H and log|X'H⁻¹X| for H = lam * S + I."""
    H = lam * basis.eigenvalues + 1.0
    Hinv = 1.0 / H
    XtHX = basis.UtX.T @ (Hinv[:, None] * basis.UtX)
    XtHy = basis.UtX.T @ (Hinv * basis.Uty)
    yHy = basis.Uty @ (Hinv * basis.Uty)
    beta = np.linalg.solve(XtHX, XtHy)
    yPy = float(yHy - XtHy @ beta)
    _, logdet_xhx = np.linalg.slogdet(XtHX)
    return yPy, float(np.sum(np.log(H))), float(logdet_xhx)


def reml_log_likelihood(lam: float, basis: Eigenbasis) -> float:
    """REML log-likelihood at variance ratio `lam` with σ²_e profiled out.

    Args:
        lam: Variance ratio σ²_1 / σ²_e
        basis: Rotated problem from rotate()

    Returns:
        REML log-likelihood (positive orientation, larger is better)
    """
    n, p = basis.UtX.shape
    df = n - p
    yPy, logdet_h, logdet_xhx = _projected_quantities(lam, basis)
    if yPy <= 0:
        return -np.inf
    sigma2 = yPy / df
    return -0.5 * (
        df * np.log(sigma2) + logdet_h + logdet_xhx + df + df * _LOG_2PI
    )


def residual_variance(lam: float, basis: Eigenbasis) -> float:
    """REML estimate of σ²_e at variance ratio `lam`."""
    n, p = basis.UtX.shape
    yPy, _, _ = _projected_quantities(lam, basis)
    return yPy / (n - p)


# =============================================================================
# Several components (dense AI-REML)
# =============================================================================


class RemlTerms(NamedTuple):
    """REML log-likelihood, gradient and average information at one point.

    Attributes:
        logl: REML log-likelihood.
        grad: Gradient w.r.t. (σ²_1, ..., σ²_k, σ²_e).
        ai: Average-information matrix (same ordering).
    """

    logl: float
    grad: np.ndarray
    ai: np.ndarray


def reml_terms(
    y: np.ndarray,
    X: np.ndarray,
    mats: Sequence[np.ndarray],
    varcomps: np.ndarray,
) -> RemlTerms:
    """Evaluate REML ingredients at `varcomps` for V = Σ varcomps_i mats_i.

    `mats` includes the residual matrix (identity on whitened data) as its
    last entry.

    Raises:
        numpy.linalg.LinAlgError: If V or X'V⁻¹X is singular.
    """
    n, p = X.shape
    V = sum(v * M for v, M in zip(varcomps, mats))
    c = cho_factor(V, lower=True)
    Vinv_X = cho_solve(c, X)
    Vinv_y = cho_solve(c, y)
    XtVinvX = X.T @ Vinv_X

    P = cho_solve(c, np.eye(n)) - Vinv_X @ np.linalg.solve(XtVinvX, Vinv_X.T)
    Py = P @ y

    logdet_V = 2.0 * np.sum(np.log(np.diag(c[0])))
    sign, logdet_xvx = np.linalg.slogdet(XtVinvX)
    if sign <= 0:
        raise np.linalg.LinAlgError("X'V^-1X is not positive definite")
    Xt_Vinv_y = X.T @ Vinv_y
    yPy = float(y @ Vinv_y - Xt_Vinv_y @ np.linalg.solve(XtVinvX, Xt_Vinv_y))
    logl = -0.5 * (logdet_V + logdet_xvx + yPy + (n - p) * _LOG_2PI)

    MPy = [M @ Py for M in mats]
    grad = -0.5 * np.array(
        [np.sum(P * M) - Py @ mpy for M, mpy in zip(mats, MPy)]
    )
    k = len(mats)
    ai = np.empty((k, k))
    for i in range(k):
        P_mpy_i = P @ MPy[i]
        for j in range(i, k):
            ai[i, j] = ai[j, i] = 0.5 * MPy[j] @ P_mpy_i

    return RemlTerms(float(logl), grad, ai)


class AiRemlResult(NamedTuple):
    varcomps: np.ndarray
    logl: float
    converged: bool
    n_iter: int


def ai_reml(
    y: np.ndarray,
    X: np.ndarray,
    K_list: Sequence[np.ndarray],
    max_iter: int = 100,
    tol: float = 1e-4,
) -> AiRemlResult:
    """Estimate variance components by average-information REML.

    Starts from an equal split of var(y). Non-positive updates are clamped
    to var(y) * 1e-5. Returns the best point visited when the iteration cap
    is hit.

    Args:
        y: Whitened phenotype (n,)
        X: Whitened fixed-effect design (n, p)
        K_list: Whitened relationship matrices
        max_iter: Iteration cap
        tol: Convergence tolerance on the log-likelihood change

    Returns:
        AiRemlResult with (σ²_1, ..., σ²_k, σ²_e)

    Raises:
        numpy.linalg.LinAlgError: If V or the AI matrix is singular.
    """
    n = len(y)
    mats = [*K_list, np.eye(n)]
    yvar = float(np.var(y))
    floor = yvar * 1e-5
    varcomps = np.full(len(mats), yvar / len(mats))

    best_logl, best_varcomps = -np.inf, varcomps.copy()
    prev_logl = -np.inf

    for it in range(1, max_iter + 1):
        terms = reml_terms(y, X, mats, varcomps)
        if terms.logl > best_logl:
            best_logl, best_varcomps = terms.logl, varcomps.copy()
        if abs(terms.logl - prev_logl) < tol:
            return AiRemlResult(varcomps, terms.logl, True, it)
        prev_logl = terms.logl

        varcomps = varcomps + np.linalg.solve(terms.ai, terms.grad)
        varcomps[varcomps <= 0.0] = floor

    return AiRemlResult(best_varcomps, best_logl, False, max_iter)
