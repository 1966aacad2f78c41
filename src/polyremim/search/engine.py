"""REMIM search: forward search, backward refinement and profiling.

Per trait the engine runs

    initial scan → [forward search → refinement → profile] × rounds

Forward search accepts the best position while its p-value passes the
forward threshold, each time excluding a window around it and rescanning the
rest with the accepted QTL as baseline. Refinement re-locates every QTL
within its own stretch of linkage group given the others, dropping those no
longer significant. Profile rescans each QTL's stretch for support intervals
and completes the genome-wide vectors. After the first round the forward
threshold tightens to the backward one.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
from loguru import logger

from polyremim.core.config import RemimConfig
from polyremim.core.errors import (
    ComputationError,
    FitError,
    NoCandidateError,
    RemimError,
)
from polyremim.data.dataset import QTLData, Trait
from polyremim.data.genome import Genome
from polyremim.lmm.fit import VarianceFitter, fit_variance_components
from polyremim.lmm.kinship import KinshipList
from polyremim.search.intervals import (
    local_interval,
    positions_outside_windows,
    support_interval,
)
from polyremim.search.results import TraitResult, assemble_tables
from polyremim.search.scanner import GenomeScanner, ScanResult
from polyremim.search.state import QTLCandidate, SearchState
from polyremim.search.thresholds import ScoreNull, resolve_thresholds


@dataclass
class _TraitSearch:
    """Everything one trait's search reads and mutates."""

    trait: Trait
    genome: Genome
    state: SearchState
    half_width: float
    sig_fwd: float
    sig_bwd: float
    lower: list[int] | None = None
    upper: list[int] | None = None
    # vectors touched since the last profile
    stale: bool = False


class RemimEngine:
    """Runs the REMIM search for the traits of a QTLData object.

    Args:
        config: Search options
        scanner: Scanner used for every score-test scan. Defaults to a
            sequential scanner.
        fitter: Variance-component fit with the signature of
            fit_variance_components.
    """

    def __init__(
        self,
        config: RemimConfig,
        scanner: GenomeScanner | None = None,
        fitter: VarianceFitter = fit_variance_components,
    ) -> None:
        self.config = config
        self.scanner = scanner if scanner is not None else GenomeScanner()
        self.fitter = fitter

    def _log(self, message: str) -> None:
        logger.log("INFO" if self.config.verbose else "DEBUG", message)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self,
        data: QTLData,
        pheno_cols: Sequence[int],
        score_null: ScoreNull | None = None,
    ) -> dict[str, TraitResult]:
        """Search every trait in `pheno_cols`.

        Thresholds are resolved once for the whole run. Traits run on a pool
        of `config.trait_workers` threads; results keep `pheno_cols` order.
        """
        sig_fwd, sig_bwd = resolve_thresholds(
            self.config.sig_fwd, self.config.sig_bwd, score_null
        )

        def run_one(col: int) -> TraitResult:
            return self.run_trait(data, col, sig_fwd, sig_bwd)

        if self.config.trait_workers > 1 and len(pheno_cols) > 1:
            with ThreadPoolExecutor(max_workers=self.config.trait_workers) as pool:
                trait_results = list(pool.map(run_one, pheno_cols))
        else:
            trait_results = [run_one(col) for col in pheno_cols]
        return {r.name: r for r in trait_results}

    def run_trait(
        self, data: QTLData, col: int, sig_fwd: float, sig_bwd: float
    ) -> TraitResult:
        """Search one trait; fatal errors are recorded on the result."""
        name = data.pheno_names[col]
        try:
            return self._search(data, col, sig_fwd, sig_bwd)
        except (RemimError, ValueError) as e:
            logger.error(f"REMIM failed for trait {col} {name!r}: {e}")
            return TraitResult(pheno_col=col, name=name, error=str(e))

    def _search(
        self, data: QTLData, col: int, sig_fwd: float, sig_bwd: float
    ) -> TraitResult:
        t_start = time.perf_counter()
        trait = data.trait(col)
        self._log(f"REMIM for trait {col} {trait.name!r}")

        state = SearchState.empty(data.nmrk, record_steps=self.config.record_steps)
        ctx = _TraitSearch(
            trait=trait,
            genome=data.genome,
            state=state,
            half_width=self.config.window_half_width(data.step),
            sig_fwd=sig_fwd,
            sig_bwd=sig_bwd,
        )

        scan = self._run_scan(
            ctx, KinshipList(), (), np.arange(data.nmrk), "Initial scan"
        )
        if len(scan) == 0:
            raise NoCandidateError(f"Every score test failed for trait {trait.name!r}")
        state.merge(scan)
        state.record("scan", ctx.sig_fwd)

        while True:
            if self._forward(ctx, scan) == 0:
                break
            rejected = self._refine(ctx)
            self._profile(ctx)
            ctx.sig_fwd = ctx.sig_bwd

            if rejected and rejected == state.prev_rejected:
                logger.debug(f"Rejections {rejected} repeat the previous round")
                break
            state.prev_rejected = rejected
            if state.round >= self.config.max_rounds:
                break

            scan = self._conditional_scan(ctx)
            if scan is None:
                break

        if ctx.stale:
            self._profile(ctx)

        qtls, lower, upper = assemble_tables(
            ctx.genome, state.stat, state.pval, state.positions, ctx.lower, ctx.upper
        )
        self._log(
            f"Calculation took {time.perf_counter() - t_start:.2f} seconds"
        )
        return TraitResult(
            pheno_col=col,
            name=trait.name,
            stat=state.stat,
            pval=state.pval,
            qtls=qtls,
            lower=lower,
            upper=upper,
            steps=state.steps,
        )

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def _run_scan(
        self,
        ctx: _TraitSearch,
        baseline: KinshipList,
        tau: Sequence[float],
        positions: Sequence[int],
        desc: str,
    ) -> ScanResult:
        """Scan through the scanner; a failed scan counts as all positions failing."""
        try:
            return self.scanner.scan(ctx.trait, baseline, tau, positions, desc=desc)
        except ComputationError as e:
            logger.warning(f"{desc or 'Scan'} failed for trait {ctx.trait.name!r}: {e}")
            return ScanResult({}, len(positions))

    def _scan_given(
        self,
        ctx: _TraitSearch,
        qtl_positions: Sequence[int],
        positions: Sequence[int],
        desc: str = "",
    ) -> ScanResult:
        """Scan `positions` with the QTL at `qtl_positions` as baseline.

        Raises:
            FitError: If the baseline variance components cannot be fitted.
        """
        baseline = KinshipList.for_qtls(
            ctx.trait.kinship, qtl_positions, polygenes=self.config.polygenes
        )
        tau: Sequence[float] = ()
        if not baseline.is_null:
            fit = self.fitter(
                ctx.trait.y, ctx.trait.X, list(baseline), ctx.trait.weights
            )
            tau = fit.tau
        return self._run_scan(ctx, baseline, tau, positions, desc)

    def _conditional_scan(self, ctx: _TraitSearch) -> ScanResult | None:
        """Scan everything outside the QTL windows given all QTL."""
        state = ctx.state
        positions = positions_outside_windows(
            ctx.genome, state.positions, ctx.half_width
        )
        if len(positions) == 0:
            logger.debug("No positions left outside QTL windows")
            return None
        try:
            scan = self._scan_given(ctx, state.positions, positions, desc="Search")
        except FitError as e:
            logger.warning(f"Stopping search for trait {ctx.trait.name!r}: {e}")
            return None
        state.merge(scan)
        state.record("forward", ctx.sig_fwd)
        ctx.stale = True
        return scan

    # ------------------------------------------------------------------
    # Forward search
    # ------------------------------------------------------------------

    def _describe(self, ctx: _TraitSearch, position: int) -> str:
        lg = ctx.genome.lg_of(position)
        return (
            f"LG {lg + 1} at {ctx.genome.position_cm(position):.2f} cM "
            f"(position number {position})"
        )

    def _forward(self, ctx: _TraitSearch, scan: ScanResult) -> int:
        """Accept QTL from `scan` and its successors; returns the number accepted."""
        state = ctx.state
        accepted = 0
        while True:
            best = scan.best()
            if best is None:
                break
            res = scan[best]
            if res.pval > ctx.sig_fwd:
                prefix = "No more QTL were found" if state.qtls else "No QTL were found"
                self._log(
                    f"{prefix}. A putative QTL on {self._describe(ctx, best)} did "
                    f"not reach the threshold; its p-value was {res.pval:.5g}"
                )
                break
            if state.round >= self.config.max_rounds:
                logger.debug(f"Round cap {self.config.n_rounds} reached")
                break
            if state.has_qtl_at(best):
                logger.debug(f"Best position {best} is already a QTL")
                break

            state.qtls.append(
                QTLCandidate(
                    position=best,
                    lg=ctx.genome.lg_of(best),
                    cm=ctx.genome.position_cm(best),
                    stat=res.stat,
                    pval=res.pval,
                )
            )
            state.round += 1
            accepted += 1
            self._log(f"QTL was found on {self._describe(ctx, best)}")
            if state.round >= self.config.max_rounds:
                break

            positions = positions_outside_windows(
                ctx.genome, state.positions, ctx.half_width
            )
            if len(positions) == 0:
                logger.debug("No positions left outside QTL windows")
                break
            try:
                scan = self._scan_given(ctx, state.positions, positions, desc="Search")
            except FitError as e:
                logger.warning(
                    f"Forward search stopped for trait {ctx.trait.name!r}: {e}"
                )
                break
            state.merge(scan)
            state.record("forward", ctx.sig_fwd)
            ctx.stale = True
        return accepted

    # ------------------------------------------------------------------
    # Backward refinement
    # ------------------------------------------------------------------

    def _refine(self, ctx: _TraitSearch) -> tuple[int, ...]:
        """Repeat refinement passes to a fixed point.

        Returns:
            Sorted positions rejected by the last pass that rejected any
        """
        state = ctx.state
        round_rejected: tuple[int, ...] = ()
        prev_pass_rejected: tuple[int, ...] | None = None
        seen: set[tuple[int, ...]] = set()

        while state.qtls:
            start = tuple(state.positions)
            if start in seen:
                logger.debug(f"QTL configuration {start} repeats, stopping refinement")
                break
            seen.add(start)

            rejected = self._refine_pass(ctx)
            if rejected:
                round_rejected = rejected
                if rejected == prev_pass_rejected:
                    break
                prev_pass_rejected = rejected
                continue

            moved = any(
                abs(a - b) > ctx.half_width for a, b in zip(start, state.positions)
            )
            if not moved:
                break
        return round_rejected

    def _refine_pass(self, ctx: _TraitSearch) -> tuple[int, ...]:
        """Re-locate or reject each QTL once; returns rejected positions."""
        state = ctx.state
        self._log(
            "Refining QTL positions ... "
            + " ... ".join(str(m) for m in state.positions)
        )
        dropped: set[int] = set()

        for i, qtl in enumerate(state.qtls):
            current = [q.position for j, q in enumerate(state.qtls) if j not in dropped]
            others = [m for m in current if m != qtl.position]
            interval = local_interval(ctx.genome, current, qtl.position, ctx.half_width)
            if len(interval) == 0:
                continue
            try:
                scan = self._scan_given(ctx, others, interval, desc="Refine")
            except FitError as e:
                logger.warning(f"Keeping QTL at {qtl.position}: {e}")
                continue
            state.merge(scan)

            best = scan.best()
            if best is not None:
                res = scan[best]
                if res.pval > ctx.sig_bwd:
                    dropped.add(i)
                else:
                    qtl.position = best
                    qtl.lg = ctx.genome.lg_of(best)
                    qtl.cm = ctx.genome.position_cm(best)
                    qtl.stat, qtl.pval = res.stat, res.pval
            state.record("refine", ctx.sig_bwd)

        rejected = tuple(sorted(state.qtls[i].position for i in dropped))
        if rejected:
            self._log(
                "Excluding non-significant QTL ... "
                + " ... ".join(str(m) for m in rejected)
            )
            state.qtls = [q for i, q in enumerate(state.qtls) if i not in dropped]
        return rejected

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def _profile(self, ctx: _TraitSearch) -> None:
        """Rescan each QTL's interval, derive support intervals, complete the genome.

        QTL positions and the accepted set are left unchanged.
        """
        state = ctx.state
        genome = ctx.genome
        positions = state.positions
        d_sint = self.config.d_sint
        lower: list[int] = []
        upper: list[int] = []
        covered = np.zeros(genome.n_positions, dtype=bool)

        if positions:
            self._log(
                "Profiling QTL ... " + " ... ".join(str(m) for m in positions)
            )
        for qtl in state.qtls:
            interval = local_interval(genome, positions, qtl.position)
            covered[interval] = True
            others = [m for m in positions if m != qtl.position]
            logp = np.full(genome.n_positions, np.nan)
            try:
                scan = self._scan_given(ctx, others, interval, desc="Profile")
            except FitError as e:
                logger.warning(f"Profile of QTL at {qtl.position} skipped: {e}")
            else:
                state.merge(scan)
                state.record("profile", ctx.sig_bwd)
                for m, res in scan.items():
                    logp[m] = -np.log10(res.pval) if res.pval > 0 else np.inf
                if qtl.position in scan:
                    qtl.stat, qtl.pval = scan[qtl.position]
            if d_sint is not None:
                lo, up = support_interval(interval, logp, qtl.position, d_sint)
                lower.append(lo)
                upper.append(up)

        rest = np.flatnonzero(~covered)
        if len(rest) > 0:
            try:
                scan = self._scan_given(ctx, positions, rest, desc="Complete genome")
            except FitError as e:
                logger.warning(f"Completing genome skipped: {e}")
            else:
                state.merge(scan)
                state.record("profile", ctx.sig_bwd)

        ctx.lower = lower if d_sint is not None else None
        ctx.upper = upper if d_sint is not None else None
        ctx.stale = False
