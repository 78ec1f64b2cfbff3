"""
reportstore - optional PostgreSQL persistence for reporting aggregates.

Stores pre-aggregated average values at minute, hour and day granularity
plus user snapshots, reads recent points back, and purges rows past their
retention window. Storage is optional: without a ``db.properties`` file, or
when the database cannot be reached at startup, every operation quietly
does nothing.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from reportstore.config import DatabaseSettings, Settings, get_settings, load_properties
from reportstore.domain.models import (
    AggregationKey,
    AggregationValue,
    GraphType,
    PinType,
    ReportingPoint,
    User,
)
from reportstore.errors import (
    BatchExecutionFailedError,
    ConnectionUnavailableError,
    PoolExhaustedError,
    ReportStoreError,
    StorageDisabledError,
)
from reportstore.infrastructure.pool import PoolManager, get_pool_manager
from reportstore.store import BatchResult, PurgeResult, ReportingStore
from reportstore.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "DatabaseSettings",
    "Settings",
    "get_settings",
    "load_properties",
    # Domain
    "AggregationKey",
    "AggregationValue",
    "GraphType",
    "PinType",
    "ReportingPoint",
    "User",
    # Errors
    "BatchExecutionFailedError",
    "ConnectionUnavailableError",
    "PoolExhaustedError",
    "ReportStoreError",
    "StorageDisabledError",
    # Storage
    "PoolManager",
    "get_pool_manager",
    "ReportingStore",
    "BatchResult",
    "PurgeResult",
    # Logging
    "configure_logging",
    "get_logger",
]
