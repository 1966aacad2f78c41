"""Worker pool sizing and BLAS thread management.

Position scans run on a thread pool: each score test spends its time in
LAPACK (Cholesky, eigh), which releases the GIL. Letting every worker also
spawn a full set of BLAS threads oversubscribes the machine, so while a
multi-worker pool is active BLAS is pinned to a single thread.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

import psutil
from loguru import logger
from threadpoolctl import threadpool_limits


def get_worker_count(n_clusters: int | None = None) -> int:
    """Determine the number of scan workers.

    Priority:
    1. Explicit n_clusters argument
    2. POLYREMIM_N_CLUSTERS env var
    3. Physical core count via psutil (avoids hyperthreading oversubscription)

    Returns:
        Positive integer worker count, capped at os.cpu_count().
    """
    max_threads = os.cpu_count() or 64

    if n_clusters is not None:
        return max(1, min(int(n_clusters), max_threads))

    env_override = os.environ.get("POLYREMIM_N_CLUSTERS")
    if env_override is not None:
        try:
            n = int(env_override)
        except ValueError:
            logger.warning(
                f"POLYREMIM_N_CLUSTERS={env_override!r} is not a valid integer, "
                "falling back to physical core count"
            )
        else:
            n = max(1, min(n, max_threads))
            logger.debug(f"Scan workers from POLYREMIM_N_CLUSTERS: {n}")
            return n

    n = psutil.cpu_count(logical=False) or max_threads
    n = max(1, min(n, max_threads))
    logger.debug(f"Scan workers from physical core count: {n}")
    return n


@contextmanager
def blas_threads(n_threads: int | None = None) -> Generator[None, None, None]:
    """Context manager for scoped BLAS thread control.

    Args:
        n_threads: Number of BLAS threads. None leaves the BLAS default
            untouched.

    Example:
        >>> with blas_threads(1):
        ...     eigenvalues = np.linalg.eigvalsh(K)
    """
    if n_threads is None:
        yield
        return

    with threadpool_limits(limits=n_threads, user_api="blas"):
        yield
