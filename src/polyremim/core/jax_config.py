"""JAX configuration utilities for polyremim.

JAX supplies the chi-squared tail probabilities used by the score test.
Default JAX uses 32-bit floats, which truncates small p-values, so
configure_jax() enables x64 mode before any JAX computation.
"""

from __future__ import annotations

from typing import Any

import jax
from loguru import logger


def configure_jax(enable_x64: bool = True, platform: str | None = None) -> None:
    """Configure JAX for polyremim computations.

    Args:
        enable_x64: Enable 64-bit floating point precision. Defaults to True.
        platform: Optional platform name ("cpu", "gpu", "tpu"). If None,
            JAX auto-selects the best available platform.

    Example:
        >>> configure_jax()  # Enable x64, auto-select platform
        >>> configure_jax(platform="cpu")  # Force CPU backend
    """
    if enable_x64:
        jax.config.update("jax_enable_x64", True)

    if platform is not None:
        jax.config.update("jax_platform_name", platform)
        logger.debug(f"JAX platform set to: {platform}")

    info = get_jax_info()
    logger.debug(
        f"JAX configured: version={info['version']}, "
        f"backend={info['backend']}, x64={info['x64_enabled']}"
    )


def get_jax_info() -> dict[str, Any]:
    """Get information about the current JAX configuration.

    Returns:
        Dictionary with keys:
            - version: JAX version string
            - backend: Current default backend name (cpu/gpu/tpu)
            - x64_enabled: Whether 64-bit precision is enabled
    """
    return {
        "version": jax.__version__,
        "backend": jax.default_backend(),
        "x64_enabled": bool(jax.config.jax_enable_x64),
    }
