"""Score-test scans over sets of candidate positions.

A scan fixes one baseline (kinship list and variance ratios), factorises
it once in a NullModel and then tests every requested position against
it. Positions are independent, so they are fanned out over a shared
thread pool; the LAPACK work inside each test releases the GIL.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import Executor

import numpy as np
from loguru import logger

from polyremim.core.errors import ComputationError, NoCandidateError
from polyremim.core.progress import progress_iterator
from polyremim.data.dataset import Trait
from polyremim.lmm.kinship import KinshipList
from polyremim.lmm.stats import NullModel, ScoreResult

# Scans shorter than this never show a progress bar
_PROGRESS_MIN_POSITIONS = 50


class ScanResult(Mapping[int, ScoreResult]):
    """Statistic and p-value per successfully tested position.

    Positions whose test failed are absent.
    """

    def __init__(self, results: dict[int, ScoreResult], n_requested: int) -> None:
        self._results = results
        self.n_requested = n_requested

    def __getitem__(self, position: int) -> ScoreResult:
        return self._results[position]

    def __iter__(self) -> Iterator[int]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def n_failed(self) -> int:
        return self.n_requested - len(self._results)

    def best(self) -> int | None:
        """Position with the largest statistic (lowest index on ties)."""
        if not self._results:
            return None
        return min(self._results, key=lambda m: (-self._results[m].stat, m))

    def __repr__(self) -> str:
        return f"ScanResult(n={len(self)}, failed={self.n_failed})"


class GenomeScanner:
    """Runs score-test scans for one trait at a time.

    Args:
        executor: Shared pool for per-position tests. None runs them in the
            calling thread.
        verbose: Show a progress bar for long scans.
    """

    def __init__(self, executor: Executor | None = None, verbose: bool = False) -> None:
        self.executor = executor
        self.verbose = verbose

    def scan(
        self,
        trait: Trait,
        baseline: KinshipList,
        tau: Sequence[float],
        positions: Sequence[int],
        desc: str = "",
    ) -> ScanResult:
        """Score-test every position in `positions` against `baseline`.

        Args:
            trait: Trait to scan
            baseline: Baseline components (empty for the null model)
            tau: Variance ratios of the baseline components
            positions: Global indices to test
            desc: Progress bar label

        Returns:
            ScanResult; empty if the baseline cannot be factorised

        Raises:
            NoCandidateError: If `positions` is empty.
        """
        positions = [int(m) for m in positions]
        if not positions:
            raise NoCandidateError(f"No positions to scan for trait {trait.name!r}")

        try:
            null = NullModel(trait.y, trait.X, list(baseline), list(tau))
        except ComputationError as e:
            logger.warning(f"Baseline for trait {trait.name!r} unusable: {e}")
            return ScanResult({}, len(positions))

        def test_position(m: int) -> tuple[int, ScoreResult | None]:
            try:
                return m, null.test(trait.kinship[m])
            except (ComputationError, np.linalg.LinAlgError) as e:
                logger.debug(f"Score test failed at position {m}: {e}")
                return m, None

        if self.executor is None:
            outcomes = map(test_position, positions)
        else:
            outcomes = self.executor.map(test_position, positions)
        if self.verbose and len(positions) >= _PROGRESS_MIN_POSITIONS:
            outcomes = progress_iterator(outcomes, total=len(positions), desc=desc)

        results = {m: res for m, res in outcomes if res is not None}
        scan = ScanResult(results, len(positions))
        if scan.n_failed:
            logger.debug(
                f"{scan.n_failed} of {len(positions)} score tests failed "
                f"for trait {trait.name!r}"
            )
        return scan
