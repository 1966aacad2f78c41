"""Configuration dataclasses for polyremim.

RemimConfig collects the search options recognised by the REMIM engine and
validates them once, before any trait is processed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class RemimConfig:
    """Options controlling a REMIM search.

    Attributes:
        w_size: Window (cM) excluded on either side of each accepted QTL
            when searching for a new one.
        sig_fwd: Significance level for forward search. Interpreted as a
            quantile of the resampled minimum p-values when a null
            distribution is supplied.
        sig_bwd: Significance level for backward elimination (same
            interpretation rules as sig_fwd).
        d_sint: Drop in -log10(p) defining support intervals; None disables
            support intervals.
        polygenes: If True, accepted QTL enter the background as a single
            averaged component instead of one component each.
        n_rounds: Cap on search rounds; None means unbounded.
        n_clusters: Worker threads for position scans; None resolves from the
            environment / physical core count.
        trait_workers: Traits processed concurrently (1 = sequential).
        verbose: Log search progress at INFO level and show progress bars.
        record_steps: Keep a per-scan trace of -log10(p) profiles.
    """

    w_size: float = 15.0
    sig_fwd: float = 0.01
    sig_bwd: float = 1e-4
    d_sint: float | None = 1.5
    polygenes: bool = False
    n_rounds: int | None = None
    n_clusters: int | None = None
    trait_workers: int = 1
    verbose: bool = True
    record_steps: bool = False

    def __post_init__(self) -> None:
        if not (self.w_size >= 0 and math.isfinite(self.w_size)):
            raise ValueError(f"w_size must be a finite value >= 0, got {self.w_size}")
        for name in ("sig_fwd", "sig_bwd"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.d_sint is not None and self.d_sint < 0:
            raise ValueError(f"d_sint must be >= 0 or None, got {self.d_sint}")
        if self.n_rounds is not None and self.n_rounds < 1:
            raise ValueError(f"n_rounds must be >= 1 or None, got {self.n_rounds}")
        if self.n_clusters is not None and self.n_clusters < 1:
            raise ValueError(
                f"n_clusters must be >= 1 or None, got {self.n_clusters}"
            )
        if self.trait_workers < 1:
            raise ValueError(
                f"trait_workers must be >= 1, got {self.trait_workers}"
            )

    @property
    def max_rounds(self) -> float:
        """Round cap as a number (inf when unbounded)."""
        return math.inf if self.n_rounds is None else self.n_rounds

    def window_half_width(self, step: float) -> float:
        """Window half-width in position units for a grid of the given step.

        Positions are interpolated every `step` cM; w_size is only divided
        down when the grid is coarser than 1 cM.
        """
        return self.w_size / step if step > 1 else self.w_size
