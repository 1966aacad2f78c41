"""Variance-component fit for a baseline kinship list.

fit_variance_components() estimates the REML variance ratios
tau_k = σ²_k / σ²_e of the model

    y = Xb + Σ g_k + e,  Var(g_k) = σ²_k K_k,  Var(e) = σ²_e diag(1/w)

where w are the per-individual weights. One component is fitted on the
eigenbasis of K with Brent's method over the ratio; several components use
AI-REML. Convergence caveats travel with the FitResult.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np
from loguru import logger

from polyremim.core.errors import FitError
from polyremim.lmm.likelihood import (
    ai_reml,
    reml_log_likelihood,
    residual_variance,
    rotate,
    whiten,
)
from polyremim.lmm.optimize import optimize_lambda

CAVEAT_ITERATION_CAP = "iteration cap reached"
CAVEAT_LOWER_BOUND = "variance ratio at lower bound"
CAVEAT_UPPER_BOUND = "variance ratio at upper bound"


@dataclass(frozen=True)
class FitResult:
    """REML estimates for one baseline.

    Attributes:
        tau: Variance ratios σ²_k / σ²_e, one per component.
        sigma2_e: Residual variance σ²_e.
        logl: REML log-likelihood at the estimates.
        converged: Whether the optimiser met its tolerance.
        caveats: Convergence caveats (boundary optimum, iteration cap).
        method: "brent" (one component) or "ai-reml".
    """

    tau: np.ndarray
    sigma2_e: float
    logl: float
    converged: bool
    caveats: tuple[str, ...] = ()
    method: str = "brent"


VarianceFitter = Callable[..., FitResult]


def fit_variance_components(
    y: np.ndarray,
    X: np.ndarray,
    K_list: Sequence[np.ndarray],
    weights: np.ndarray | None = None,
    l_min: float = 1e-5,
    l_max: float = 1e5,
    max_iter: int = 100,
) -> FitResult:
    """Fit REML variance ratios for the components in `K_list`.

    Args:
        y: Phenotype vector (n,)
        X: Fixed-effect design (n, p)
        K_list: One or more relationship matrices (n, n)
        weights: Optional positive weights (n,); rescaled by their maximum
        l_min: Lower bound of the single-component variance ratio
        l_max: Upper bound of the single-component variance ratio
        max_iter: AI-REML iteration cap

    Returns:
        FitResult

    Raises:
        ValueError: If K_list is empty.
        FitError: On a singular system, non-finite estimates or a vanishing
            residual variance.
    """
    if len(K_list) == 0:
        raise ValueError("fit_variance_components needs at least one component")

    n = len(y)
    w = np.ones(n) if weights is None else np.asarray(weights, dtype=np.float64)
    w = w / w.max()
    y_w, X_w, K_w = whiten(y, X, K_list, w)

    try:
        if len(K_w) == 1:
            result = _fit_single(y_w, X_w, K_w[0], l_min, l_max)
        else:
            result = _fit_multi(y_w, X_w, K_w, max_iter)
    except np.linalg.LinAlgError as e:
        raise FitError(f"Variance-component fit failed: {e}") from e

    if not (np.isfinite(result.sigma2_e) and result.sigma2_e > 0):
        raise FitError(f"Residual variance is not positive ({result.sigma2_e})")
    if not (np.all(np.isfinite(result.tau)) and np.isfinite(result.logl)):
        raise FitError("Variance-component fit produced non-finite estimates")

    # Jacobian of the W^½ transform
    logl = result.logl + 0.5 * float(np.sum(np.log(w)))
    if result.caveats:
        logger.debug(f"Fit caveats ({result.method}): {', '.join(result.caveats)}")
    return FitResult(
        tau=result.tau,
        sigma2_e=result.sigma2_e,
        logl=logl,
        converged=result.converged,
        caveats=result.caveats,
        method=result.method,
    )


def _fit_single(
    y: np.ndarray, X: np.ndarray, K: np.ndarray, l_min: float, l_max: float
) -> FitResult:
    basis = rotate(y, X, K)

    def neg_reml(lam: float) -> float:
        return -reml_log_likelihood(lam, basis)

    opt = optimize_lambda(neg_reml, l_min=l_min, l_max=l_max)
    caveats = []
    if not opt.converged:
        caveats.append(CAVEAT_ITERATION_CAP)
    if opt.at_boundary == "lower":
        caveats.append(CAVEAT_LOWER_BOUND)
    elif opt.at_boundary == "upper":
        caveats.append(CAVEAT_UPPER_BOUND)

    return FitResult(
        tau=np.array([opt.lam]),
        sigma2_e=float(residual_variance(opt.lam, basis)),
        logl=opt.logl,
        converged=opt.converged,
        caveats=tuple(caveats),
        method="brent",
    )


def _fit_multi(
    y: np.ndarray, X: np.ndarray, K_list: Sequence[np.ndarray], max_iter: int
) -> FitResult:
    res = ai_reml(y, X, K_list, max_iter=max_iter)
    sigma2_e = float(res.varcomps[-1])
    floor = float(np.var(y)) * 1e-5

    caveats = []
    if not res.converged:
        caveats.append(CAVEAT_ITERATION_CAP)
    if np.any(res.varcomps[:-1] <= floor * (1.0 + 1e-8)):
        caveats.append(CAVEAT_LOWER_BOUND)

    return FitResult(
        tau=res.varcomps[:-1] / sigma2_e,
        sigma2_e=sigma2_e,
        logl=res.logl,
        converged=res.converged,
        caveats=tuple(caveats),
        method="ai-reml",
    )
