"""
Infrastructure package for reportstore.

Centralizes database connectivity concerns (pool construction, scoped
acquisition, shutdown). Keep this layer focused on I/O and resource
management, decoupled from the batch operations built on top of it.
"""

from reportstore.infrastructure.pool import PoolManager, get_pool_manager

__all__ = [
    "PoolManager",
    "get_pool_manager",
]
