"""
Connection pool lifecycle for reportstore.

A ``PoolManager`` either owns one bounded psycopg ``ConnectionPool`` or owns
nothing at all. Which of the two is decided once, at construction: a missing
configuration source or a database that cannot be reached leaves the manager
permanently disabled instead of raising, so the host process keeps running
without separate DB storage.

Opening the pool is retried with tenacity for transient connection failures.
"""

from __future__ import annotations

import atexit
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Generator, Mapping, Optional, Union

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool, PoolClosed, PoolTimeout
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from reportstore.config import DatabaseSettings, Settings, get_settings, load_properties
from reportstore.errors import (
    ConnectionUnavailableError,
    PoolExhaustedError,
    StorageDisabledError,
)
from reportstore.utils.logging import get_logger

log = get_logger(__name__)

UNLIMITED_LIFETIME = float("inf")


@dataclass(frozen=True)
class Disabled:
    """No pool: every operation is a no-op."""


@dataclass(frozen=True)
class Enabled:
    pool: ConnectionPool
    settings: DatabaseSettings


PoolState = Union[Disabled, Enabled]


def _liveness_probe(query: str):
    """Build a pool ``check`` callback that runs ``query`` outside any transaction."""

    def check(conn: Connection) -> None:
        autocommit = conn.autocommit
        conn.autocommit = True
        try:
            conn.execute(query)
        finally:
            conn.autocommit = autocommit

    return check


class PoolManager:
    """
    Owner of the bounded connection pool, or of nothing when disabled.

    Parameters
    ----------
    source : Mapping[str, str] | None
        Database configuration keyed as in ``db.properties``. ``None`` or an
        empty mapping disables storage.
    connect_attempts : int
        How many times to try opening the pool before giving up.
    connect_backoff : float
        Exponential backoff multiplier (seconds) between open attempts.
    """

    def __init__(
        self,
        source: Optional[Mapping[str, str]],
        *,
        connect_attempts: int = 1,
        connect_backoff: float = 1.0,
    ) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self._state: PoolState = self._build_state(source, connect_attempts, connect_backoff)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PoolManager":
        """Create a manager from the properties file named in ``Settings``."""
        settings = settings or get_settings()
        source = load_properties(Path(settings.db_properties_file))
        return cls(
            source,
            connect_attempts=settings.db_connect_attempts,
            connect_backoff=settings.db_connect_backoff_seconds,
        )

    @staticmethod
    def _build_state(
        source: Optional[Mapping[str, str]],
        connect_attempts: int,
        connect_backoff: float,
    ) -> PoolState:
        db_settings = DatabaseSettings.from_source(source)
        if db_settings is None:
            return Disabled()

        log.info("DB url : %s", db_settings.url)
        log.info("DB user : %s", db_settings.user)
        log.info("Connecting to DB...")

        try:
            pool = _open_pool(db_settings, connect_attempts, connect_backoff)
        except Exception as exc:  # noqa: BLE001 - construction must never raise
            log.error(
                "Not able connect to DB. Skipping.",
                exc_info=exc,
                extra={"error_type": type(exc).__name__},
            )
            return Disabled()

        log.info("Connected to database successfully.", extra={"pool_size": db_settings.pool_size})
        return Enabled(pool=pool, settings=db_settings)

    @property
    def settings(self) -> Optional[DatabaseSettings]:
        state = self._state
        return state.settings if isinstance(state, Enabled) else None

    def is_enabled(self) -> bool:
        return isinstance(self._state, Enabled)

    @contextmanager
    def connection(self) -> Generator[Connection, None, None]:
        """
        Check out one connection for the duration of the block.

        The connection goes back to the pool on every exit path; a block that
        raises has its open transaction rolled back first.

        Raises
        ------
        StorageDisabledError
            The manager owns no pool.
        ConnectionUnavailableError
            The pool has been closed.
        PoolExhaustedError
            No connection became free within the configured timeout.
        """
        state = self._state
        if not isinstance(state, Enabled):
            raise StorageDisabledError("Separate DB storage is disabled.")

        timeout = state.settings.connection_timeout
        try:
            conn = state.pool.getconn(timeout=timeout)
        except PoolClosed as exc:
            raise ConnectionUnavailableError("Connection pool is closed.") from exc
        except PoolTimeout as exc:
            raise PoolExhaustedError(
                f"No connection available after {timeout:g}s "
                f"(pool size {state.settings.pool_size})."
            ) from exc

        try:
            yield conn
        except BaseException:
            _rollback_quietly(conn)
            raise
        finally:
            state.pool.putconn(conn)

    def close(self) -> None:
        """
        Close the pool and release its connections. Idempotent.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            state = self._state
            if isinstance(state, Enabled):
                state.pool.close()
                log.info("DB connection pool closed.")

    def __enter__(self) -> "PoolManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _open_pool(db_settings: DatabaseSettings, attempts: int, backoff: float) -> ConnectionPool:
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff, min=0, max=10),
        retry=retry_if_exception_type((psycopg.OperationalError, PoolTimeout)),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            return _open_pool_once(db_settings)
    raise AssertionError("unreachable")  # pragma: no cover


def _open_pool_once(db_settings: DatabaseSettings) -> ConnectionPool:
    max_lifetime = db_settings.max_lifetime or UNLIMITED_LIFETIME
    pool = ConnectionPool(
        conninfo=db_settings.conninfo(),
        min_size=db_settings.pool_size,
        max_size=db_settings.pool_size,
        timeout=db_settings.connection_timeout,
        max_lifetime=max_lifetime,
        kwargs={"autocommit": False},
        check=_liveness_probe(db_settings.connection_test_query),
        name="reportstore",
        open=False,
    )
    try:
        # Pre-warm: fails here, not on first use, when the DB is unreachable.
        pool.open(wait=True, timeout=db_settings.connection_timeout)
    except BaseException:
        pool.close()
        raise
    return pool


def _rollback_quietly(conn: Connection) -> None:
    if conn.closed:
        return
    try:
        conn.rollback()
    except psycopg.Error as exc:
        log.debug("Rollback failed on returned connection: %s", exc)


@lru_cache(maxsize=1)
def get_pool_manager() -> PoolManager:
    """
    Process-wide manager built from ``Settings``; closed automatically on exit.
    """
    manager = PoolManager.from_settings()
    atexit.register(manager.close)
    return manager


__all__ = [
    "Disabled",
    "Enabled",
    "PoolManager",
    "PoolState",
    "get_pool_manager",
]
