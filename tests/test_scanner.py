"""Tests for GenomeScanner and ScanResult."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import numpy as np
import pytest

from polyremim.core.errors import NoCandidateError
from polyremim.data import Genome, QTLData
from polyremim.lmm import KinshipList, ScoreResult
from polyremim.search import GenomeScanner, ScanResult

pytestmark = pytest.mark.tier0


class TestScanResult:
    """Tests for the position -> ScoreResult mapping."""

    def test_best_is_largest_statistic(self):
        results = {
            3: ScoreResult(1.0, 0.3),
            5: ScoreResult(4.0, 0.01),
            9: ScoreResult(2.0, 0.1),
        }
        scan = ScanResult(results, n_requested=3)
        assert scan.best() == 5

    def test_ties_go_to_lowest_position(self):
        scan = ScanResult(
            {9: ScoreResult(4.0, 0.01), 2: ScoreResult(4.0, 0.01)}, n_requested=2
        )
        assert scan.best() == 2

    def test_empty_has_no_best(self):
        scan = ScanResult({}, n_requested=4)
        assert scan.best() is None
        assert scan.n_failed == 4

    def test_mapping_protocol(self):
        scan = ScanResult({1: ScoreResult(1.0, 0.5)}, n_requested=2)
        assert len(scan) == 1
        assert list(scan) == [1]
        assert scan[1].pval == 0.5
        assert scan.n_failed == 1


class TestGenomeScanner:
    """Tests for score-test scans over position subsets."""

    def test_empty_positions_raise(self, small_data):
        trait = small_data.trait(0)
        with pytest.raises(NoCandidateError):
            GenomeScanner().scan(trait, KinshipList(), (), [])

    def test_scans_requested_positions_only(self, small_data):
        trait = small_data.trait(0)
        scan = GenomeScanner().scan(trait, KinshipList(), (), [4, 10, 33])
        assert sorted(scan) == [4, 10, 33]
        for res in scan.values():
            assert 0.0 <= res.pval <= 1.0

    def test_failed_position_is_absent(self):
        rng = np.random.default_rng(0)
        n = 20
        A = rng.standard_normal((n, n))
        G = np.stack([A @ A.T / n, -np.eye(n), A @ A.T / n], axis=2)
        data = QTLData(
            ploidy=2,
            pheno=rng.standard_normal(n),
            G=G,
            genome=Genome([[0.0, 1.0, 2.0]]),
        )
        scan = GenomeScanner().scan(data.trait(0), KinshipList(), (), [0, 1, 2])
        assert sorted(scan) == [0, 2]
        assert scan.n_failed == 1

    def test_unusable_baseline_gives_empty_result(self, small_data):
        trait = small_data.trait(0)
        bad = KinshipList(("0",), (-np.eye(trait.n),))
        scan = GenomeScanner().scan(trait, bad, [2.0], [1, 2, 3])
        assert len(scan) == 0
        assert scan.n_requested == 3

    def test_executor_matches_sequential(self, small_data):
        trait = small_data.trait(0)
        baseline = KinshipList.for_qtls(trait.kinship, [12])
        positions = list(range(30, 60))
        sequential = GenomeScanner().scan(trait, baseline, [0.5], positions)
        with ThreadPoolExecutor(max_workers=3) as pool:
            pooled = GenomeScanner(executor=pool).scan(
                trait, baseline, [0.5], positions
            )
        assert dict(sequential) == dict(pooled)

    def test_progress_bar_for_long_scans(self, small_data):
        trait = small_data.trait(0)
        with patch("polyremim.search.scanner.progress_iterator") as mock_progress:
            mock_progress.side_effect = lambda it, total, desc="": it
            GenomeScanner(verbose=True).scan(
                trait, KinshipList(), (), range(60), desc="null"
            )
        mock_progress.assert_called_once()
        assert mock_progress.call_args.kwargs["total"] == 60
