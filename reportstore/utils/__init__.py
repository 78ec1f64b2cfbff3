"""
Utilities package for reportstore.

Exports shared helpers for logging and timing.
Keep this package lightweight and free of domain-specific logic.
"""

from reportstore.utils.logging import configure_logging, get_logger
from reportstore.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
