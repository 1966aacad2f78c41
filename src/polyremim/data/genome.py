"""Linkage-group layout of the candidate position grid.

Positions from all linkage groups are concatenated into one global index
(0-based). `cum_nmrk` stores the cumulative marker counts at linkage-group
boundaries, so the group of any position and the index range of any group
are O(1) lookups.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


class Genome:
    """Ordered linkage groups of candidate positions.

    Args:
        lgs: One array of genetic positions (cM) per linkage group, ordered
            by distance within the group.
        marker_names: Optional names for every position in global order.
            Defaults to "LG<g>_<cM>".

    Raises:
        ValueError: If a group is empty, positions are not monotone, or the
            number of names does not match the number of positions.
    """

    def __init__(
        self,
        lgs: Sequence[Sequence[float]],
        marker_names: Sequence[str] | None = None,
    ) -> None:
        if len(lgs) == 0:
            raise ValueError("Genome needs at least one linkage group")

        self.lgs: list[np.ndarray] = []
        for g, lg in enumerate(lgs):
            arr = np.asarray(lg, dtype=np.float64).ravel()
            if arr.size == 0:
                raise ValueError(f"Linkage group {g + 1} has no positions")
            if np.any(np.diff(arr) < 0):
                raise ValueError(
                    f"Positions on linkage group {g + 1} are not ordered by cM"
                )
            self.lgs.append(arr)

        sizes = [len(lg) for lg in self.lgs]
        self.cum_nmrk = np.concatenate([[0], np.cumsum(sizes)]).astype(np.int64)
        self.cm = np.concatenate(self.lgs)

        if marker_names is None:
            marker_names = [
                f"LG{g + 1}_{pos:.2f}" for g, lg in enumerate(self.lgs) for pos in lg
            ]
        if len(marker_names) != self.n_positions:
            raise ValueError(
                f"Got {len(marker_names)} marker names for "
                f"{self.n_positions} positions"
            )
        self.marker_names = list(marker_names)

    @property
    def n_positions(self) -> int:
        return int(self.cum_nmrk[-1])

    @property
    def n_lgs(self) -> int:
        return len(self.lgs)

    def lg_of(self, index: int) -> int:
        """Linkage group (0-based) holding global position `index`."""
        if not 0 <= index < self.n_positions:
            raise IndexError(f"Position {index} outside 0..{self.n_positions - 1}")
        return int(np.searchsorted(self.cum_nmrk, index, side="right") - 1)

    def lg_range(self, lg: int) -> range:
        """Global indices of every position on linkage group `lg`."""
        return range(int(self.cum_nmrk[lg]), int(self.cum_nmrk[lg + 1]))

    def lg_bounds(self, lg: int) -> tuple[int, int]:
        """First and last global index (inclusive) of linkage group `lg`."""
        return int(self.cum_nmrk[lg]), int(self.cum_nmrk[lg + 1]) - 1

    def position_cm(self, index: int) -> float:
        return float(self.cm[index])

    def __repr__(self) -> str:
        return f"Genome(n_lgs={self.n_lgs}, n_positions={self.n_positions})"
