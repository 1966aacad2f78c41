"""Result containers for a REMIM run.

A TraitResult carries the final genome-wide statistic/p-value vectors and up
to three QTL tables (peaks, lower and upper support-interval bounds). All
tables list QTL in the order they were accepted.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

from polyremim.data.genome import Genome
from polyremim.search.state import SearchStep

PVALUE_FLOOR = float(np.finfo(np.float64).eps)
PVALUE_FLOOR_TEXT = f"<{PVALUE_FLOOR:.2e}"

COLUMNS = ("LG", "Pos", "Nmrk", "Mrk", "Score", "Pval")


def format_pvalue(p: float) -> str:
    """Format a p-value as %.2e, flooring at double-precision epsilon."""
    if np.isnan(p):
        return "NA"
    if p < PVALUE_FLOOR:
        return PVALUE_FLOOR_TEXT
    return f"{p:.2e}"


@dataclass(frozen=True)
class QTLRecord:
    """One table row.

    Attributes:
        lg: Linkage group, 1-based.
        pos: Position in cM, rounded to 2 decimals.
        nmrk: Global position index.
        mrk: Marker (position) name.
        score: Score statistic, rounded to 2 decimals.
        pval: Formatted p-value.
        pval_raw: Unformatted p-value.
    """

    lg: int
    pos: float
    nmrk: int
    mrk: str
    score: float
    pval: str
    pval_raw: float

    def values(self) -> tuple:
        return (self.lg, self.pos, self.nmrk, self.mrk, self.score, self.pval)


@dataclass(frozen=True)
class QTLTable:
    """QTL rows with optional column suffix ("_lower" / "_upper")."""

    rows: tuple[QTLRecord, ...]
    suffix: str = ""

    @property
    def columns(self) -> tuple[str, ...]:
        # LG is shared by peak and bound tables
        return tuple(c if c == "LG" else f"{c}{self.suffix}" for c in COLUMNS)

    @property
    def positions(self) -> list[int]:
        return [r.nmrk for r in self.rows]

    @property
    def pvalues(self) -> np.ndarray:
        return np.array([r.pval_raw for r in self.rows])

    def to_records(self) -> list[dict]:
        return [dict(zip(self.columns, r.values())) for r in self.rows]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[QTLRecord]:
        return iter(self.rows)

    def __getitem__(self, i: int) -> QTLRecord:
        return self.rows[i]


def build_table(
    genome: Genome,
    positions: Sequence[int],
    stat: np.ndarray,
    pval: np.ndarray,
    suffix: str = "",
) -> QTLTable:
    rows = []
    for m in positions:
        lg = genome.lg_of(m)
        rows.append(
            QTLRecord(
                lg=lg + 1,
                pos=round(genome.position_cm(m), 2),
                nmrk=int(m),
                mrk=genome.marker_names[m],
                score=round(float(stat[m]), 2),
                pval=format_pvalue(float(pval[m])),
                pval_raw=float(pval[m]),
            )
        )
    return QTLTable(tuple(rows), suffix)


def assemble_tables(
    genome: Genome,
    stat: np.ndarray,
    pval: np.ndarray,
    qtl_positions: Sequence[int],
    lower: Sequence[int] | None,
    upper: Sequence[int] | None,
) -> tuple[QTLTable | None, QTLTable | None, QTLTable | None]:
    """Peak, lower-bound and upper-bound tables for the accepted QTL.

    Args:
        genome: Position layout
        stat: Final statistic vector
        pval: Final p-value vector
        qtl_positions: QTL positions in accepted order
        lower: Lower support bounds aligned with qtl_positions, or None
        upper: Upper support bounds aligned with qtl_positions, or None

    Returns:
        (qtls, lower, upper); all None when there are no QTL, lower and upper
        None when support intervals were not computed
    """
    if len(qtl_positions) == 0:
        return None, None, None
    qtls = build_table(genome, qtl_positions, stat, pval)
    if lower is None or upper is None:
        return qtls, None, None
    return (
        qtls,
        build_table(genome, lower, stat, pval, suffix="_lower"),
        build_table(genome, upper, stat, pval, suffix="_upper"),
    )


@dataclass
class TraitResult:
    """Outcome of the search for one trait.

    Attributes:
        pheno_col: Column index of the trait.
        name: Trait name.
        stat: Final score statistics (NaN where never scanned).
        pval: Final p-values (NaN where never scanned).
        qtls: Peak table, None if no QTL were found.
        lower: Lower support-interval table, or None.
        upper: Upper support-interval table, or None.
        steps: Per-scan trace when recording was enabled.
        error: Message of the error that aborted this trait, if any.
    """

    pheno_col: int
    name: str
    stat: np.ndarray | None = None
    pval: np.ndarray | None = None
    qtls: QTLTable | None = None
    lower: QTLTable | None = None
    upper: QTLTable | None = None
    steps: list[SearchStep] = field(default_factory=list)
    error: str | None = None

    @property
    def n_qtl(self) -> int:
        return 0 if self.qtls is None else len(self.qtls)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RemimModel:
    """Results of a REMIM run across traits.

    Attributes:
        pheno_cols: Column indices that were analysed.
        w_size: Window size in cM.
        sig_fwd: Forward significance level as given.
        sig_bwd: Backward significance level as given.
        min_pvl: Resampled minimum p-values, or None.
        polygenes: Whether QTL entered the baseline as one polygenic term.
        d_sint: Support-interval drop, or None.
        results: Trait name -> TraitResult, in pheno_cols order.
    """

    pheno_cols: list[int]
    w_size: float
    sig_fwd: float
    sig_bwd: float
    min_pvl: np.ndarray | None
    polygenes: bool
    d_sint: float | None
    results: dict[str, TraitResult] = field(default_factory=dict)

    def __getitem__(self, name: str) -> TraitResult:
        return self.results[name]

    def __len__(self) -> int:
        return len(self.results)
