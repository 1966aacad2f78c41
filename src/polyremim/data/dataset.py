"""Prepared mapping data: phenotypes, relationship tensor and genome grid.

QTLData is built upstream (genotype probabilities → IBD relationship matrices)
and is read-only to the search. Trait extracts one phenotype column with its
non-missing individuals and a KinshipTensor view restricted to them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from polyremim.data.genome import Genome


class KinshipTensor:
    """Read-only per-position relationship matrices for a set of individuals.

    `tensor[m]` materialises only position m's sub-matrix and scales it so
    its diagonal mean is 1.

    Args:
        G: Relationship tensor (individuals × individuals × positions).
        individuals: Row/column indices of the individuals to keep, or None
            for all.
    """

    def __init__(self, G: np.ndarray, individuals: np.ndarray | None = None) -> None:
        self._G = G
        n_all = G.shape[0]
        if individuals is None or (
            len(individuals) == n_all
            and np.array_equal(individuals, np.arange(n_all))
        ):
            self._idx = None
            diag = np.diagonal(G, axis1=0, axis2=1)  # (positions, individuals)
        else:
            self._idx = np.asarray(individuals, dtype=np.int64)
            diag = G[self._idx, self._idx, :].T
        scale = diag.mean(axis=1)
        self._scale = np.where(scale > 0, scale, 1.0)

    @property
    def n_individuals(self) -> int:
        return self._G.shape[0] if self._idx is None else len(self._idx)

    @property
    def n_positions(self) -> int:
        return self._G.shape[2]

    def __len__(self) -> int:
        return self.n_positions

    def __getitem__(self, m: int) -> np.ndarray:
        K = self._G[:, :, m]
        if self._idx is not None:
            K = K[np.ix_(self._idx, self._idx)]
        return K / self._scale[m]

    def mean_matrix(self, positions: Sequence[int]) -> np.ndarray:
        """Elementwise mean of the normalised matrices at `positions`."""
        if len(positions) == 0:
            raise ValueError("mean_matrix needs at least one position")
        acc = np.zeros((self.n_individuals, self.n_individuals))
        for m in positions:
            acc += self[m]
        return acc / len(positions)


@dataclass(frozen=True)
class Trait:
    """One phenotype column restricted to individuals with observed values.

    Attributes:
        name: Phenotype name.
        col: Column index in QTLData.pheno.
        y: Observed phenotype values.
        weights: Per-individual weights scaled so the largest is 1.
        individuals: Row indices (into QTLData.pheno) of the observations.
        kinship: Relationship tensor restricted to `individuals`.
    """

    name: str
    col: int
    y: np.ndarray
    weights: np.ndarray
    individuals: np.ndarray
    kinship: KinshipTensor = field(repr=False)

    @property
    def n(self) -> int:
        return len(self.y)

    @property
    def X(self) -> np.ndarray:
        """Fixed-effect design: intercept only."""
        return np.ones((self.n, 1))


@dataclass
class QTLData:
    """Prepared data object consumed by the REMIM search.

    Attributes:
        ploidy: Ploidy level (passed through, unused by the search).
        pheno: Phenotype matrix (individuals × traits), NaN for missing.
        G: Relationship tensor (individuals × individuals × positions).
        genome: Linkage-group layout of the positions.
        pheno_names: Trait names; defaults to "T1", "T2", ...
        step: Grid step in cM used when interpolating positions.
        weights: Optional per-individual weights (individuals × traits).
    """

    ploidy: int
    pheno: np.ndarray
    G: np.ndarray
    genome: Genome
    pheno_names: list[str] | None = None
    step: float = 1.0
    weights: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.pheno = np.asarray(self.pheno, dtype=np.float64)
        if self.pheno.ndim == 1:
            self.pheno = self.pheno[:, None]
        n_ind, n_traits = self.pheno.shape

        if self.G.ndim != 3 or self.G.shape[0] != self.G.shape[1]:
            raise ValueError(
                f"G must be individuals × individuals × positions, got {self.G.shape}"
            )
        if self.G.shape[0] != n_ind:
            raise ValueError(
                f"G has {self.G.shape[0]} individuals but pheno has {n_ind}"
            )
        if self.G.shape[2] != self.genome.n_positions:
            raise ValueError(
                f"G has {self.G.shape[2]} positions but genome has "
                f"{self.genome.n_positions}"
            )
        if self.pheno_names is None:
            self.pheno_names = [f"T{j + 1}" for j in range(n_traits)]
        elif len(self.pheno_names) != n_traits:
            raise ValueError(
                f"Got {len(self.pheno_names)} phenotype names for {n_traits} traits"
            )
        if self.weights is not None:
            self.weights = np.asarray(self.weights, dtype=np.float64)
            if self.weights.ndim == 1:
                self.weights = self.weights[:, None]
            if self.weights.shape != self.pheno.shape:
                raise ValueError(
                    f"weights shape {self.weights.shape} does not match "
                    f"pheno shape {self.pheno.shape}"
                )
        if self.step <= 0:
            raise ValueError(f"step must be positive, got {self.step}")

    @property
    def n_individuals(self) -> int:
        return self.pheno.shape[0]

    @property
    def n_traits(self) -> int:
        return self.pheno.shape[1]

    @property
    def nmrk(self) -> int:
        return self.genome.n_positions

    def trait(self, col: int) -> Trait:
        """Extract phenotype column `col` with its observed individuals.

        Raises:
            IndexError: If col is out of range.
            ValueError: If fewer than three individuals are observed or the
                weights of observed individuals are not positive.
        """
        if not 0 <= col < self.n_traits:
            raise IndexError(f"Phenotype column {col} outside 0..{self.n_traits - 1}")
        values = self.pheno[:, col]
        individuals = np.flatnonzero(~np.isnan(values))
        if len(individuals) < 3:
            raise ValueError(
                f"Trait {self.pheno_names[col]!r} has only "
                f"{len(individuals)} observed individuals"
            )

        if self.weights is not None:
            w = self.weights[individuals, col]
            if np.any(~np.isfinite(w)) or np.any(w <= 0):
                raise ValueError(
                    f"Weights for trait {self.pheno_names[col]!r} must be positive"
                )
            w = w / w.max()
        else:
            w = np.ones(len(individuals))

        return Trait(
            name=self.pheno_names[col],
            col=col,
            y=values[individuals].copy(),
            weights=w,
            individuals=individuals,
            kinship=KinshipTensor(self.G, individuals),
        )
