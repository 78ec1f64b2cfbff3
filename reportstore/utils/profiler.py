"""
Timing utilities for reportstore.

Batch operations report how long they took; ``profile_block`` measures the
wall-clock duration of a block and records it even when the block raises.

Usage:
    from reportstore.utils.profiler import profile_block

    with profile_block("insert_reporting") as stats:
        store_rows()

    print(stats.duration_seconds)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator


@dataclass
class ProfileStats:
    """
    Container for timing measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return int(self.duration_seconds * 1000)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager measuring wall-clock duration (perf_counter) of a block.
    """
    stats = ProfileStats(label=label)
    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts


__all__ = ["ProfileStats", "profile_block"]
