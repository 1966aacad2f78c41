"""Baseline relationship-matrix lists for the score test and the fit."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

from polyremim.data.dataset import KinshipTensor


@dataclass(frozen=True)
class KinshipList:
    """Ordered, named random-effect components.

    Names are the global position indices the components come from, or
    "polygenic" for the mean of several QTL matrices.
    """

    names: tuple[str, ...] = ()
    matrices: tuple[np.ndarray, ...] = field(default=(), repr=False)

    def __len__(self) -> int:
        return len(self.matrices)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.matrices)

    @property
    def is_null(self) -> bool:
        return len(self.matrices) == 0

    @classmethod
    def for_qtls(
        cls,
        tensor: KinshipTensor,
        positions: Sequence[int],
        polygenes: bool = False,
    ) -> KinshipList:
        """Baseline for the QTL at `positions`.

        Args:
            tensor: Relationship tensor of the trait
            positions: Global indices of the QTL
            polygenes: Collapse all QTL into one component equal to the
                elementwise mean of their matrices

        Returns:
            KinshipList; empty for no positions (null baseline)
        """
        if len(positions) == 0:
            return cls()
        if polygenes:
            return cls(("polygenic",), (tensor.mean_matrix(positions),))
        return cls(
            tuple(str(m) for m in positions),
            tuple(tensor[m] for m in positions),
        )
