"""Mixed-model machinery: score test, variance-component fit, baselines.

- kinship: KinshipList baselines built from QTL positions
- stats: NullModel and the variance-component score test
- fit: REML variance ratios (Brent for one component, AI-REML otherwise)
- likelihood: REML log-likelihood evaluation
- optimize: Brent's method over the variance ratio
"""

from polyremim.lmm.fit import FitResult, fit_variance_components
from polyremim.lmm.kinship import KinshipList
from polyremim.lmm.stats import NullModel, ScoreResult, mixture_chi2_sf, score_test

__all__ = [
    "FitResult",
    "KinshipList",
    "NullModel",
    "ScoreResult",
    "fit_variance_components",
    "mixture_chi2_sf",
    "score_test",
]
