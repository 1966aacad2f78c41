"""Genome-wide significance thresholds from resampled score scans.

A ScoreNull holds, for every resampled genome scan, the p-value at the
position with the largest score statistic. Forward and backward
significance levels then become quantiles of that distribution instead of
pointwise levels.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
from loguru import logger

from polyremim.data.dataset import Trait
from polyremim.lmm.kinship import KinshipList
from polyremim.search.scanner import GenomeScanner, ScanResult


@dataclass(frozen=True)
class ScoreNull:
    """Distribution of genome-wide minimum p-values under no QTL.

    Attributes:
        min_pvl: One p-value per resampled scan.
    """

    min_pvl: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.min_pvl, dtype=np.float64).ravel()
        if arr.size == 0:
            raise ValueError("ScoreNull needs at least one resampled p-value")
        if np.any(np.isnan(arr)) or np.any((arr < 0) | (arr > 1)):
            raise ValueError("Resampled p-values must lie in [0, 1]")
        object.__setattr__(self, "min_pvl", np.sort(arr))

    def __len__(self) -> int:
        return len(self.min_pvl)

    def quantile(self, level: float) -> float:
        """Linearly interpolated quantile of the minimum p-values."""
        return float(np.quantile(self.min_pvl, level))

    @classmethod
    def from_scans(cls, scans: Iterable[ScanResult]) -> ScoreNull:
        """Build from full-genome null scans; empty scans are skipped."""
        pvals = []
        for scan in scans:
            best = scan.best()
            if best is not None:
                pvals.append(scan[best].pval)
        return cls(np.array(pvals))

    @classmethod
    def from_permutations(
        cls,
        trait: Trait,
        scanner: GenomeScanner,
        n_perm: int = 1000,
        seed: int | None = None,
    ) -> ScoreNull:
        """Resample by permuting the phenotype and scanning the genome.

        Args:
            trait: Trait whose phenotype is permuted
            scanner: Scanner used for the null scans
            n_perm: Number of permutations
            seed: Seed for numpy's default generator

        Returns:
            ScoreNull with one entry per permutation that produced a result
        """
        if n_perm < 1:
            raise ValueError(f"n_perm must be >= 1, got {n_perm}")
        rng = np.random.default_rng(seed)
        positions = np.arange(trait.kinship.n_positions)
        logger.info(f"Resampling {n_perm} null scans for trait {trait.name!r}")

        def scans() -> Iterable[ScanResult]:
            for _ in range(n_perm):
                order = rng.permutation(trait.n)
                permuted = dataclasses.replace(
                    trait, y=trait.y[order], weights=trait.weights[order]
                )
                yield scanner.scan(permuted, KinshipList(), (), positions)

        return cls.from_scans(scans())


def resolve_thresholds(
    sig_fwd: float, sig_bwd: float, score_null: ScoreNull | None
) -> tuple[float, float]:
    """Pointwise levels, or quantiles of `score_null` when supplied."""
    if score_null is None:
        return sig_fwd, sig_bwd
    fwd, bwd = score_null.quantile(sig_fwd), score_null.quantile(sig_bwd)
    logger.debug(
        f"Thresholds from {len(score_null)} resampled scans: "
        f"forward {fwd:.3e}, backward {bwd:.3e}"
    )
    return fwd, bwd
