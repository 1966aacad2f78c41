"""Utilities: logging setup."""

from polyremim.utils.logging import log_rss_memory, setup_logging

__all__ = ["log_rss_memory", "setup_logging"]
