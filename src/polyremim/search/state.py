"""Mutable per-trait search state.

SearchState owns the genome-wide statistic and p-value vectors. Scans merge
into them position by position; a vector entry always reflects the most
recent scan that included that position, and entries never scanned stay NaN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from polyremim.search.scanner import ScanResult


@dataclass
class QTLCandidate:
    """An accepted QTL; position and test values change during refinement."""

    position: int
    lg: int
    cm: float
    stat: float
    pval: float


@dataclass(frozen=True)
class SearchStep:
    """Snapshot taken after one scan, for external plotting.

    Attributes:
        kind: "scan", "forward", "refine" or "profile".
        round: Search round counter at the time of the scan.
        threshold: Significance level in force for the step.
        qtls: QTL positions after the step.
        logp: -log10(p) over all positions (NaN where never scanned).
    """

    kind: str
    round: int
    threshold: float
    qtls: tuple[int, ...]
    logp: np.ndarray = field(repr=False)


@dataclass
class SearchState:
    """Statistic/p-value vectors and QTL list of one trait.

    Attributes:
        stat: Score statistic per position (NaN = never scanned).
        pval: P-value per position (NaN = never scanned).
        qtls: Accepted QTL in acceptance order.
        round: Number of QTL accepted by forward search so far.
        prev_rejected: Rejected-position signature of the previous round.
        steps: Step trace, populated when recording is enabled.
    """

    stat: np.ndarray
    pval: np.ndarray
    qtls: list[QTLCandidate] = field(default_factory=list)
    round: int = 0
    prev_rejected: tuple[int, ...] | None = None
    steps: list[SearchStep] = field(default_factory=list)
    record_steps: bool = False

    @classmethod
    def empty(cls, n_positions: int, record_steps: bool = False) -> SearchState:
        return cls(
            stat=np.full(n_positions, np.nan),
            pval=np.full(n_positions, np.nan),
            record_steps=record_steps,
        )

    @property
    def positions(self) -> list[int]:
        return [q.position for q in self.qtls]

    def has_qtl_at(self, position: int) -> bool:
        return any(q.position == position for q in self.qtls)

    def merge(self, scan: ScanResult) -> None:
        """Write the scanned positions into the genome-wide vectors."""
        for position, (stat, pval) in scan.items():
            self.stat[position] = stat
            self.pval[position] = pval

    def neg_log10_pval(self) -> np.ndarray:
        with np.errstate(divide="ignore"):
            return -np.log10(self.pval)

    def record(self, kind: str, threshold: float) -> None:
        """Append a SearchStep when recording is enabled."""
        if not self.record_steps:
            return
        self.steps.append(
            SearchStep(
                kind=kind,
                round=self.round,
                threshold=threshold,
                qtls=tuple(self.positions),
                logp=self.neg_log10_pval(),
            )
        )
