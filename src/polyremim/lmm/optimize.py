"""Variance-ratio optimization via Brent's method.

Bounded scalar minimization of the negative REML log-likelihood in the
single-component model. The search runs on log10(lambda) so that ratios
spanning several orders of magnitude are covered evenly.

Failure to converge and optima on a bound are reported on the returned
LambdaOptimum rather than through warnings, so calls from worker threads
stay free of shared global state.

Reference: Brent, R.P. (1973) "Algorithms for Minimization without Derivatives"
"""

from __future__ import annotations

from collections.abc import Callable
from typing import NamedTuple

import numpy as np


class BrentResult(NamedTuple):
    x: float
    fx: float
    converged: bool


class LambdaOptimum(NamedTuple):
    """Outcome of a variance-ratio search.

    Attributes:
        lam: Optimal variance ratio (component variance / residual variance).
        logl: Maximized REML log-likelihood.
        converged: Whether Brent's method met its tolerance.
        at_boundary: "lower", "upper" or None.
    """

    lam: float
    logl: float
    converged: bool
    at_boundary: str | None


def brent_minimize(
    func: Callable[[float], float],
    a: float,
    b: float,
    tol: float = 1e-5,
    maxiter: int = 500,
) -> BrentResult:
    """Minimize a scalar function using Brent's method.

    Combines golden section search with parabolic interpolation for
    efficient bounded minimization without derivatives.

    Args:
        func: Scalar function to minimize
        a: Lower bound of search interval
        b: Upper bound of search interval
        tol: Relative convergence tolerance
        maxiter: Maximum iterations

    Returns:
        BrentResult with the minimizer, minimum value and convergence flag
    """
    golden = 0.5 * (3.0 - np.sqrt(5.0))

    if a > b:
        a, b = b, a

    # x is current best, w second best, v previous w
    x = w = v = a + golden * (b - a)
    fx = fw = fv = func(x)

    d = 0.0
    e = 0.0

    for _ in range(maxiter):
        midpoint = 0.5 * (a + b)
        tol1 = tol * abs(x) + 1e-10
        tol2 = 2.0 * tol1

        if abs(x - midpoint) <= (tol2 - 0.5 * (b - a)):
            return BrentResult(x, fx, True)

        if abs(e) > tol1:
            # Parabola through x, w, v
            r = (x - w) * (fx - fv)
            q = (x - v) * (fx - fw)
            p = (x - v) * q - (x - w) * r
            q = 2.0 * (q - r)

            if q > 0:
                p = -p
            else:
                q = -q

            r = e
            e = d

            if abs(p) < abs(0.5 * q * r) and p > q * (a - x) and p < q * (b - x):
                d = p / q
                u = x + d
                if (u - a) < tol2 or (b - u) < tol2:
                    d = tol1 if x < midpoint else -tol1
            else:
                e = (b if x < midpoint else a) - x
                d = golden * e
        else:
            e = (b if x < midpoint else a) - x
            d = golden * e

        if abs(d) >= tol1:
            u = x + d
        else:
            u = x + (tol1 if d > 0 else -tol1)

        fu = func(u)

        if fu <= fx:
            if u < x:
                b = x
            else:
                a = x
            v, w, x = w, x, u
            fv, fw, fx = fw, fx, fu
        else:
            if u < x:
                a = u
            else:
                b = u
            if fu <= fw or w == x:
                v, w = w, u
                fv, fw = fw, fu
            elif fu <= fv or v == x or v == w:
                v = u
                fv = fu

    return BrentResult(x, fx, False)


def optimize_lambda(
    neg_logl_func: Callable[[float], float],
    l_min: float = 1e-5,
    l_max: float = 1e5,
    tol: float = 1e-6,
) -> LambdaOptimum:
    """Find the variance ratio maximizing the REML log-likelihood.

    Brent's method runs on log10(lambda). Both bounds are evaluated as
    well, since the likelihood can peak at the boundary when a component
    explains no (or all) of the variance.

    Args:
        neg_logl_func: Function taking lambda and returning the negative
            log-likelihood.
        l_min: Lower bound for lambda
        l_max: Upper bound for lambda
        tol: Convergence tolerance on log10(lambda)

    Returns:
        LambdaOptimum with positive log-likelihood
    """
    lo, hi = np.log10(l_min), np.log10(l_max)

    def on_log_scale(t: float) -> float:
        return neg_logl_func(10.0**t)

    inner = brent_minimize(on_log_scale, lo, hi, tol=tol)
    candidates = [
        (inner.x, inner.fx),
        (lo, on_log_scale(lo)),
        (hi, on_log_scale(hi)),
    ]
    best_t, best_neg = min(candidates, key=lambda c: c[1])

    # Within ~2% of a bound on the lambda scale
    at_boundary = None
    if best_t <= lo + 0.01:
        at_boundary = "lower"
    elif best_t >= hi - 0.01:
        at_boundary = "upper"

    return LambdaOptimum(
        lam=float(10.0**best_t),
        logl=float(-best_neg),
        converged=inner.converged,
        at_boundary=at_boundary,
    )
