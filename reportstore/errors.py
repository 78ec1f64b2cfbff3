"""
Error taxonomy for reportstore.

A missing configuration source is deliberately absent from this list: it is
represented by a disabled ``PoolManager``, not by an exception.
"""

from __future__ import annotations


class ReportStoreError(Exception):
    """Base class for storage errors raised by reportstore."""


class ConnectionUnavailableError(ReportStoreError):
    """A connection could not be acquired from the pool."""


class StorageDisabledError(ConnectionUnavailableError):
    """Acquisition was attempted on a manager that owns no pool."""


class PoolExhaustedError(ConnectionUnavailableError):
    """All pooled connections stayed checked out past the acquisition timeout."""


class BatchExecutionFailedError(ReportStoreError):
    """The driver failed while preparing, executing or committing a batch."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


__all__ = [
    "BatchExecutionFailedError",
    "ConnectionUnavailableError",
    "PoolExhaustedError",
    "ReportStoreError",
    "StorageDisabledError",
]
