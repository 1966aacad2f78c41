"""Core infrastructure for polyremim.

- config: Search configuration dataclass
- errors: Exception hierarchy
- jax_config: JAX precision configuration
- progress: Progress bar helper
- threading: Worker pool sizing and BLAS thread control
"""

from polyremim.core.config import RemimConfig
from polyremim.core.errors import (
    ComputationError,
    FitError,
    NoCandidateError,
    RemimError,
)
from polyremim.core.jax_config import configure_jax, get_jax_info
from polyremim.core.threading import blas_threads, get_worker_count

__all__ = [
    "RemimConfig",
    "RemimError",
    "ComputationError",
    "FitError",
    "NoCandidateError",
    "configure_jax",
    "get_jax_info",
    "blas_threads",
    "get_worker_count",
]
