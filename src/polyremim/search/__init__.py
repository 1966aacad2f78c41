"""REMIM search: scans, state, interval arithmetic, engine and results."""

from polyremim.search.engine import RemimEngine
from polyremim.search.results import (
    QTLRecord,
    QTLTable,
    RemimModel,
    TraitResult,
    format_pvalue,
)
from polyremim.search.scanner import GenomeScanner, ScanResult
from polyremim.search.state import QTLCandidate, SearchState, SearchStep
from polyremim.search.thresholds import ScoreNull, resolve_thresholds

__all__ = [
    "GenomeScanner",
    "QTLCandidate",
    "QTLRecord",
    "QTLTable",
    "RemimEngine",
    "RemimModel",
    "ScanResult",
    "ScoreNull",
    "SearchState",
    "SearchStep",
    "TraitResult",
    "format_pvalue",
    "resolve_thresholds",
]
