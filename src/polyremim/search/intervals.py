"""Window and interval arithmetic on the global position index.

All functions take global 0-based position indices and consult the Genome
for linkage-group boundaries, so nothing here ever crosses a group.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from polyremim.data.genome import Genome


def exclusion_mask(
    genome: Genome, qtl_positions: Sequence[int], half_width: float
) -> np.ndarray:
    """Boolean mask of positions inside the window of any QTL.

    Position i is inside the window of QTL m when both are on the same
    linkage group and |i - m| <= half_width.
    """
    mask = np.zeros(genome.n_positions, dtype=bool)
    for m in qtl_positions:
        first, last = genome.lg_bounds(genome.lg_of(m))
        lo = max(first, int(np.ceil(m - half_width)))
        hi = min(last, int(np.floor(m + half_width)))
        mask[lo : hi + 1] = True
    return mask


def positions_outside_windows(
    genome: Genome, qtl_positions: Sequence[int], half_width: float
) -> np.ndarray:
    """Global indices not covered by any QTL window."""
    return np.flatnonzero(~exclusion_mask(genome, qtl_positions, half_width))


def carved_bounds(
    genome: Genome, qtl_positions: Sequence[int], qtl: int
) -> tuple[int, int]:
    """Inclusive bounds of the linkage-group segment owned by `qtl`.

    The linkage group of `qtl` is split at the floor midpoints between
    consecutive QTL on it: the left QTL keeps floor(mid), the right QTL
    starts at floor(mid) + 1.
    """
    lg = genome.lg_of(qtl)
    lo, hi = genome.lg_bounds(lg)
    for other in qtl_positions:
        if other == qtl or genome.lg_of(other) != lg:
            continue
        mid = (other + qtl) // 2
        if other < qtl:
            lo = max(lo, mid + 1)
        else:
            hi = min(hi, mid)
    return lo, hi


def local_interval(
    genome: Genome,
    qtl_positions: Sequence[int],
    qtl: int,
    half_width: float | None = None,
) -> np.ndarray:
    """Positions over which `qtl` may be re-located or profiled.

    Args:
        genome: Position layout
        qtl_positions: All current QTL positions (including `qtl`)
        qtl: Position of the QTL whose interval is wanted
        half_width: If given, positions inside the windows of the other
            same-group QTL are removed, so a refined QTL can never move
            closer than the window to a neighbour

    Returns:
        Sorted global indices
    """
    lo, hi = carved_bounds(genome, qtl_positions, qtl)
    interval = np.arange(lo, hi + 1)
    if half_width is None:
        return interval
    others = [m for m in qtl_positions if m != qtl]
    blocked = exclusion_mask(genome, others, half_width)
    return interval[~blocked[interval]]


def support_interval(
    interval: np.ndarray, logp: np.ndarray, qtl: int, d_sint: float
) -> tuple[int, int]:
    """Support interval of `qtl` within its profiled interval.

    The interval is the maximal contiguous run of positions around `qtl`
    whose -log10(p) is at least the QTL's own value minus `d_sint`. A
    position without a value ends the run.

    Args:
        interval: Sorted, contiguous global indices that were profiled
        logp: Genome-wide -log10(p) vector
        qtl: QTL position (must lie in `interval`)
        d_sint: Allowed drop in -log10(p)

    Returns:
        (lower, upper) global indices, inclusive
    """
    peak = logp[qtl]
    if np.isnan(peak):
        return qtl, qtl
    cutoff = peak - d_sint
    first, last = int(interval[0]), int(interval[-1])

    lower = qtl
    while lower - 1 >= first and logp[lower - 1] >= cutoff:
        lower -= 1
    upper = qtl
    while upper + 1 <= last and logp[upper + 1] >= cutoff:
        upper += 1
    return lower, upper
