"""Pytest fixtures for the polyremim test suite."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np
import pytest

from polyremim.core import configure_jax
from polyremim.core.errors import NoCandidateError
from polyremim.data import Genome, QTLData
from polyremim.lmm.fit import FitResult
from polyremim.lmm.stats import ScoreResult
from polyremim.search.scanner import GenomeScanner, ScanResult

# =============================================================================
# Test Tier System
# =============================================================================
#
# tier0 - Fast Unit Tests (<5s each)
#   - Pure computation on small matrices, scripted scanners for the engine
#   - Run: pytest -m tier0
#
# tier1 - Search Scenarios (<60s each)
#   - Full REMIM runs on simulated populations with real score tests
#   - Run: pytest -m tier1
#
# Quick reference:
#   pytest -m tier0             # Fast tests only
#   pytest -m "not tier1"       # Skip simulated-population scenarios
#   pytest                      # All tests
# =============================================================================


def simulate_population(
    lg_sizes: Sequence[int] = (100,),
    n_ind: int = 150,
    n_classes: int = 6,
    switch: float = 0.05,
    qtls: Sequence[tuple[int, float]] = (),
    noise_sd: float = 1.0,
    n_traits: int = 1,
    seed: int = 0,
) -> QTLData:
    """Simulate a mapping population with class-sharing relationship matrices.

    Every individual carries one of `n_classes` genotype classes at each
    position; along a linkage group the class is kept with probability
    1 - switch and redrawn otherwise. The relationship matrix at a position
    is 1 for pairs sharing a class and 0 otherwise. Each QTL (global
    position, effect scale) adds a random class effect at that position.

    Returns:
        QTLData with 1 cM spacing and `n_traits` identical-design traits
        (independent noise).
    """
    rng = np.random.default_rng(seed)
    n_pos = sum(lg_sizes)
    classes = np.empty((n_ind, n_pos), dtype=np.int64)
    start = 0
    for size in lg_sizes:
        current = rng.integers(n_classes, size=n_ind)
        for m in range(start, start + size):
            redraw = rng.random(n_ind) < switch
            current = np.where(redraw, rng.integers(n_classes, size=n_ind), current)
            classes[:, m] = current
        start += size

    G = (classes[:, None, :] == classes[None, :, :]).astype(np.float64)

    genetic = np.zeros(n_ind)
    for position, scale in qtls:
        effects = scale * rng.standard_normal(n_classes)
        genetic += effects[classes[:, position]]
    pheno = genetic[:, None] + noise_sd * rng.standard_normal((n_ind, n_traits))

    genome = Genome([np.arange(size, dtype=np.float64) for size in lg_sizes])
    return QTLData(ploidy=4, pheno=pheno, G=G, genome=genome)


@pytest.fixture(scope="session", autouse=True)
def jax_x64():
    """Run every test with 64-bit JAX, as remim() does."""
    configure_jax(enable_x64=True)


@pytest.fixture
def small_data() -> QTLData:
    """Two linkage groups of 30 positions, 40 individuals, no QTL."""
    return simulate_population(lg_sizes=(30, 30), n_ind=40, n_classes=4, seed=7)


def fake_fit(y, X, K_list, weights=None) -> FitResult:
    """Variance fit stand-in returning unit ratios."""
    return FitResult(
        tau=np.ones(len(K_list)), sigma2_e=1.0, logl=0.0, converged=True
    )


class ScriptedScanner(GenomeScanner):
    """Scanner whose results come from a function of (baseline names, positions, m).

    Records every call as (baseline names, positions).
    """

    def __init__(
        self,
        respond: Callable[[tuple[str, ...], list[int], int], tuple[float, float]],
    ) -> None:
        super().__init__()
        self.respond = respond
        self.calls: list[tuple[tuple[str, ...], tuple[int, ...]]] = []

    def scan(self, trait, baseline, tau, positions, desc=""):
        positions = [int(m) for m in positions]
        if not positions:
            raise NoCandidateError("no positions")
        self.calls.append((baseline.names, tuple(positions)))
        results = {
            m: ScoreResult(*self.respond(baseline.names, positions, m))
            for m in positions
        }
        return ScanResult(results, len(positions))


@pytest.fixture
def simulate() -> Callable[..., QTLData]:
    """The simulate_population helper."""
    return simulate_population


@pytest.fixture
def fake_fitter() -> Callable[..., FitResult]:
    return fake_fit


@pytest.fixture
def scripted_scanner() -> type[ScriptedScanner]:
    return ScriptedScanner
