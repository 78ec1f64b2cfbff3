"""
Pytest configuration for reportstore.

Provides fixtures for:
- An in-memory fake of the psycopg connection pool and database, so pool
  lifecycle and batch semantics can be tested without a server
- Database settings and a real PostgreSQL connection for integration tests
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, ClassVar, Generator, Iterable, Optional, Sequence

import psycopg
import psycopg.errors
import pytest
from psycopg.conninfo import make_conninfo
from psycopg_pool import PoolClosed, PoolTimeout

from reportstore.infrastructure import pool as pool_module
from reportstore.infrastructure.pool import PoolManager
from reportstore.statements import REPORTING_TABLES, UPSERT_USER
from reportstore.store import ReportingStore

_RAW_VERBS = ("SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "TRUNCATE", "VACUUM", "ANALYZE")


class FakeDatabase:
    """
    Committed state shared by every fake connection.

    Writes are staged per connection and only land here on commit.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.tables: dict[str, list[tuple]] = {table.name: [] for table in REPORTING_TABLES.values()}
        self.users: dict[str, str] = {}
        self.raw_statements: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on: Optional[str] = None
        self.fail_after_rows: Optional[int] = None
        self.execute_delay = 0.0

    def seed(self, table: str, rows: Iterable[tuple]) -> None:
        with self.lock:
            self.tables[table].extend(rows)

    def apply(self, staged: list[tuple]) -> None:
        with self.lock:
            for op in staged:
                kind = op[0]
                if kind == "upsert":
                    _, name, snapshot = op
                    self.users[name] = snapshot
                elif kind == "insert":
                    _, table, row = op
                    self.tables[table].append(tuple(row))
                elif kind == "delete":
                    _, table, cutoff = op
                    self.tables[table] = [r for r in self.tables[table] if r[4] > cutoff]
                elif kind == "raw":
                    self.raw_statements.append(op[1])
            self.commits += 1


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._db = conn.db
        self.rowcount = -1
        self._rows: list[tuple] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    def _check(self, sql: str) -> None:
        if self._db.fail_on is not None and self._db.fail_on in sql:
            raise psycopg.OperationalError(f"server closed the connection unexpectedly ({sql[:30]})")

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> "FakeCursor":
        self._check(sql)
        for table in REPORTING_TABLES.values():
            if sql == table.select_sql:
                since, limit = params
                with self._db.lock:
                    rows = [r for r in self._db.tables[table.name] if r[4] > since]
                rows.sort(key=lambda r: r[4], reverse=True)
                self._rows = [(r[4], r[5]) for r in rows[:limit]]
                self.rowcount = len(self._rows)
                return self
            if sql == table.delete_sql:
                (cutoff,) = params
                with self._db.lock:
                    self.rowcount = sum(1 for r in self._db.tables[table.name] if r[4] <= cutoff)
                self._conn.staged.append(("delete", table.name, cutoff))
                return self
        self._conn.execute_raw(sql)
        return self

    def executemany(self, sql: str, params_seq: Iterable[Sequence[Any]]) -> None:
        self._check(sql)
        if self._db.execute_delay:
            time.sleep(self._db.execute_delay)
        for index, params in enumerate(params_seq):
            if self._db.fail_after_rows is not None and index >= self._db.fail_after_rows:
                raise psycopg.errors.UniqueViolation("duplicate key value violates unique constraint")
            if sql == UPSERT_USER:
                name, snapshot = params
                self._conn.staged.append(("upsert", name, snapshot))
                continue
            table = next((t for t in REPORTING_TABLES.values() if t.insert_sql == sql), None)
            if table is None:
                raise psycopg.errors.SyntaxError(f"unexpected batch statement: {sql}")
            self._conn.staged.append(("insert", table.name, tuple(params)))

    def fetchall(self) -> list[tuple]:
        rows, self._rows = self._rows, []
        return rows


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.autocommit = False
        self.closed = False
        self.staged: list[tuple] = []

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> FakeCursor:
        return self.cursor().execute(sql, params)

    def execute_raw(self, sql: str) -> None:
        if not sql.strip().upper().startswith(_RAW_VERBS):
            first = sql.split()[0] if sql.split() else sql
            raise psycopg.errors.SyntaxError(f'syntax error at or near "{first}"')
        self.staged.append(("raw", sql))

    def commit(self) -> None:
        staged, self.staged = self.staged, []
        self.db.apply(staged)

    def rollback(self) -> None:
        self.staged = []
        with self.db.lock:
            self.db.rollbacks += 1


class FakeConnectionPool:
    """Bounded stand-in for ``psycopg_pool.ConnectionPool``."""

    db: ClassVar[FakeDatabase]
    fail_open: ClassVar[bool] = False
    instances: ClassVar[list["FakeConnectionPool"]] = []

    def __init__(
        self,
        conninfo: str,
        min_size: int,
        max_size: int,
        timeout: float,
        max_lifetime: float,
        kwargs: dict,
        check: Callable[[Any], None],
        name: str,
        open: bool,
    ) -> None:
        self.conninfo = conninfo
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.max_lifetime = max_lifetime
        self.kwargs = kwargs
        self.check = check
        self.name = name
        self.closed = True
        self.open_calls = 0
        self.close_calls = 0
        self.checked_out = 0
        self.max_checked_out = 0
        self._slots = threading.BoundedSemaphore(max_size)
        self._count_lock = threading.Lock()
        type(self).instances.append(self)

    def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        self.open_calls += 1
        if type(self).fail_open:
            raise PoolTimeout(f"pool initialization incomplete after {timeout} sec")
        self.closed = False

    def getconn(self, timeout: Optional[float] = None) -> FakeConnection:
        if self.closed:
            raise PoolClosed(f"the pool {self.name!r} is already closed")
        if not self._slots.acquire(timeout=timeout):
            raise PoolTimeout(f"couldn't get a connection after {timeout:.2f} sec")
        with self._count_lock:
            self.checked_out += 1
            self.max_checked_out = max(self.max_checked_out, self.checked_out)
        return FakeConnection(type(self).db)

    def putconn(self, conn: FakeConnection) -> None:
        with self._count_lock:
            self.checked_out -= 1
        self._slots.release()

    def close(self, timeout: float = 5.0) -> None:
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_pool_cls(monkeypatch, fake_db: FakeDatabase) -> type[FakeConnectionPool]:
    """
    Patch the pool class used by ``PoolManager`` with a fake bound to ``fake_db``.
    """

    class _BoundFakePool(FakeConnectionPool):
        db = fake_db
        fail_open = False
        instances: ClassVar[list[FakeConnectionPool]] = []

    monkeypatch.setattr(pool_module, "ConnectionPool", _BoundFakePool)
    return _BoundFakePool


@pytest.fixture
def db_source() -> dict[str, str]:
    return {
        "jdbc.url": "jdbc:postgresql://localhost:5432/reporting",
        "user": "test",
        "password": "secret",
        "connection.timeout": "2",
    }


@pytest.fixture
def pool_manager(fake_pool_cls, db_source) -> Generator[PoolManager, None, None]:
    manager = PoolManager(db_source)
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def store(pool_manager: PoolManager) -> ReportingStore:
    return ReportingStore(pool_manager)


@pytest.fixture
def disabled_store() -> ReportingStore:
    return ReportingStore(PoolManager(None))


# ---------------------------------------------------------------------------
# Integration fixtures (real PostgreSQL)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def integration_source() -> dict[str, str]:
    """
    Database configuration for integration tests.

    Can be overridden via environment variables in CI or local testing.
    """
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "reportstore_test")
    return {
        "jdbc.url": f"jdbc:postgresql://{host}:{port}/{name}",
        "user": os.getenv("DB_USER", "postgres"),
        "password": os.getenv("DB_PASSWORD", "postgres"),
        "connection.timeout": "5",
    }


@pytest.fixture(scope="session")
def test_dsn(integration_source: dict[str, str]) -> str:
    url = integration_source["jdbc.url"].removeprefix("jdbc:")
    return make_conninfo(
        url,
        user=integration_source["user"],
        password=integration_source["password"],
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection with the schema applied.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        init_sql_path = Path(__file__).parent.parent / "db" / "init.sql"
        with conn.cursor() as cur:
            cur.execute(init_sql_path.read_text(encoding="utf-8"))
        conn.commit()
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection) -> Generator[None, None, None]:
    """
    Empty all reportstore tables before and after each test function.
    """
    tables = ", ".join(["users", *(t.name for t in REPORTING_TABLES.values())])

    def _truncate() -> None:
        with db_connection.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {tables};")
        db_connection.commit()

    _truncate()
    yield
    _truncate()
