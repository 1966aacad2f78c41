"""Top-level REMIM API.

Example:
    >>> from polyremim import remim
    >>> model = remim(data, pheno_cols=[0], w_size=15, sig_fwd=0.01, sig_bwd=1e-4)
    >>> model.results["T1"].qtls.to_records()
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from loguru import logger

from polyremim.core.config import RemimConfig
from polyremim.core.jax_config import configure_jax
from polyremim.core.threading import blas_threads, get_worker_count
from polyremim.data.dataset import QTLData
from polyremim.search.engine import RemimEngine
from polyremim.search.results import RemimModel
from polyremim.search.scanner import GenomeScanner
from polyremim.search.thresholds import ScoreNull
from polyremim.utils.logging import log_rss_memory


def remim(
    data: QTLData,
    pheno_cols: Sequence[int] | None = None,
    w_size: float = 15,
    sig_fwd: float = 0.01,
    sig_bwd: float = 1e-4,
    score_null: ScoreNull | None = None,
    d_sint: float | None = 1.5,
    polygenes: bool = False,
    n_clusters: int | None = None,
    n_rounds: int | None = None,
    verbose: bool = True,
    record_steps: bool = False,
    trait_workers: int = 1,
) -> RemimModel:
    """Map QTL by random-effect multiple interval mapping.

    Args:
        data: Prepared mapping data.
        pheno_cols: Phenotype columns to analyse (0-based); None for all.
        w_size: Window (cM) around each QTL excluded from forward search.
        sig_fwd: Forward-search significance level, or quantile of
            `score_null` when given.
        sig_bwd: Backward-elimination significance level, or quantile of
            `score_null` when given.
        score_null: Resampled minimum p-values for genome-wide thresholds.
        d_sint: -log10(p) drop for support intervals; None disables them.
        polygenes: Collapse accepted QTL into one averaged baseline component.
        n_clusters: Scan worker threads; None resolves automatically.
        n_rounds: Cap on search rounds; None for no cap.
        verbose: Log search progress at INFO level and show progress bars.
        record_steps: Keep a per-scan -log10(p) trace on each trait result.
        trait_workers: Traits analysed concurrently.

    Returns:
        RemimModel with one TraitResult per analysed trait.

    Raises:
        ValueError: On invalid options or out-of-range phenotype columns.
    """
    config = RemimConfig(
        w_size=w_size,
        sig_fwd=sig_fwd,
        sig_bwd=sig_bwd,
        d_sint=d_sint,
        polygenes=polygenes,
        n_rounds=n_rounds,
        n_clusters=n_clusters,
        trait_workers=trait_workers,
        verbose=verbose,
        record_steps=record_steps,
    )
    if pheno_cols is None:
        pheno_cols = list(range(data.n_traits))
    pheno_cols = [int(c) for c in pheno_cols]
    bad = [c for c in pheno_cols if not 0 <= c < data.n_traits]
    if bad:
        raise ValueError(f"Phenotype columns out of range: {bad}")

    configure_jax()
    n_workers = get_worker_count(config.n_clusters)
    t_start = time.perf_counter()
    log_rss_memory("remim", "start")
    logger.debug(
        f"REMIM on {len(pheno_cols)} trait(s), {data.nmrk} positions, "
        f"{n_workers} scan worker(s)"
    )

    with ThreadPoolExecutor(max_workers=n_workers) as pool:
        # One BLAS thread per worker while the pool is busy
        with blas_threads(1 if n_workers > 1 else None):
            scanner = GenomeScanner(
                executor=pool,
                verbose=config.verbose and config.trait_workers == 1,
            )
            engine = RemimEngine(config, scanner=scanner)
            results = engine.run(data, pheno_cols, score_null)

    log_rss_memory("remim", "end")
    logger.debug(f"REMIM complete in {time.perf_counter() - t_start:.1f}s")

    return RemimModel(
        pheno_cols=pheno_cols,
        w_size=config.w_size,
        sig_fwd=sig_fwd,
        sig_bwd=sig_bwd,
        min_pvl=None if score_null is None else score_null.min_pvl,
        polygenes=polygenes,
        d_sint=d_sint,
        results=results,
    )
