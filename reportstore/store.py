"""
Batch persistence operations for reporting aggregates and user snapshots.

Every operation follows the same shape: skip when storage is disabled or
there is nothing to write, check out one pooled connection, run one batch on
one cursor, commit once, and hand the connection back.

Failure policy is chosen per call:

- ``"tolerant"`` (default for everything but raw SQL): failures are logged
  with their traceback and the operation returns a result whose ``error`` is
  set and ``rows`` is 0. Storage is auxiliary; it must not break the caller.
- ``"strict"``: failures propagate. Used by ``execute_sql`` because it is
  operator-invoked maintenance where silent failure would hide mistakes.

Usage:
    from reportstore.infrastructure.pool import PoolManager
    from reportstore.store import ReportingStore

    store = ReportingStore(PoolManager(load_properties("db.properties")))
    store.insert_reporting(minute_aggregates, GraphType.MINUTE)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Mapping, Optional, Sequence, TypedDict, TypeVar

import psycopg
from psycopg import Connection

from reportstore.domain.models import (
    AggregationKey,
    Averageable,
    GraphType,
    ReportingPoint,
    User,
    to_reporting_row,
)
from reportstore.errors import BatchExecutionFailedError, ReportStoreError
from reportstore.infrastructure.pool import PoolManager
from reportstore.statements import REPORTING_TABLES, UPSERT_USER, reporting_table
from reportstore.utils.logging import get_logger
from reportstore.utils.profiler import profile_block

log = get_logger(__name__)

FailurePolicy = Literal["tolerant", "strict"]

T = TypeVar("T")


class BatchResult(TypedDict, total=False):
    """
    Outcome of one batch operation.

    ``rows`` counts rows written (or removed, for purges); it is 0 whenever
    the batch was skipped or failed.
    """

    operation: str
    rows: int
    duration_seconds: float
    skipped: bool
    error: Optional[str]
    extra: Dict[str, object]


class PurgeResult(BatchResult, total=False):
    removed: Dict[str, int]


def _epoch_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class ReportingStore:
    """
    Batch writes, range reads and retention purges over a ``PoolManager``.

    Operations are independent of each other and safe to call from several
    threads; the pool is the only thing they share.
    """

    def __init__(self, pool: PoolManager) -> None:
        self._pool = pool

    @property
    def pool(self) -> PoolManager:
        return self._pool

    def is_enabled(self) -> bool:
        return self._pool.is_enabled()

    def close(self) -> None:
        self._pool.close()

    # ------------------------------------------------------------------ core

    def _skipped(self, operation: str) -> BatchResult:
        return BatchResult(operation=operation, rows=0, duration_seconds=0.0, skipped=True, error=None)

    def _run_batch(
        self,
        operation: str,
        attempted: int,
        work: Callable[[Connection], T],
        failure_policy: FailurePolicy,
        extra: Optional[Dict[str, object]] = None,
    ) -> tuple[BatchResult, Optional[T]]:
        """
        Run ``work`` on one pooled connection and commit.

        Returns the result summary and whatever ``work`` returned (``None`` on
        a tolerated failure).
        """
        extra = dict(extra or {})
        outcome: Optional[T] = None
        error: Optional[BaseException] = None

        with profile_block(operation) as stats:
            try:
                with self._pool.connection() as conn:
                    outcome = work(conn)
                    conn.commit()
            except ReportStoreError as exc:
                error = exc
            except psycopg.Error as exc:
                error = BatchExecutionFailedError(operation, str(exc))
                error.__cause__ = exc
            except Exception as exc:  # noqa: BLE001 - tolerant policy absorbs everything
                error = exc

        result = BatchResult(
            operation=operation,
            rows=0 if error else attempted,
            duration_seconds=stats.duration_seconds,
            skipped=False,
            error=str(error) if error else None,
            extra=extra,
        )

        if error is None:
            return result, outcome

        if failure_policy == "strict":
            log.error(
                "%s failed. Time %d ms.",
                operation,
                stats.duration_ms,
                extra={"operation": operation, "error_type": type(error).__name__},
            )
            if isinstance(error, BatchExecutionFailedError):
                raise error from error.__cause__
            raise error

        log.error(
            "Error in %s. Time %d ms. Records attempted %d.",
            operation,
            stats.duration_ms,
            attempted,
            exc_info=error,
            extra={
                "operation": operation,
                "attempted": attempted,
                "error_type": type(error).__name__,
                **extra,
            },
        )
        result["extra"]["error_type"] = type(error).__name__
        return result, None

    # ------------------------------------------------------------ operations

    def save_users(
        self, users: Sequence[User], failure_policy: FailurePolicy = "tolerant"
    ) -> BatchResult:
        """
        Upsert user snapshots keyed by name; the incoming snapshot wins.
        """
        operation = "save_users"
        if not self.is_enabled() or not users:
            return self._skipped(operation)

        log.info("Storing users...")

        def work(conn: Connection) -> None:
            params = [(user.name, user.snapshot) for user in users]
            with conn.cursor() as cur:
                cur.executemany(UPSERT_USER, params)

        result, _ = self._run_batch(operation, len(users), work, failure_policy)
        if not result.get("error"):
            log.info(
                "Storing users finished. Time %d ms. Users saved %d",
                int(result["duration_seconds"] * 1000),
                result["rows"],
                extra={
                    "operation": operation,
                    "rows": result["rows"],
                    "duration_seconds": result["duration_seconds"],
                },
            )
        return result

    def insert_reporting(
        self,
        entries: Mapping[AggregationKey, Averageable],
        graph_type: GraphType,
        failure_policy: FailurePolicy = "tolerant",
    ) -> BatchResult:
        """
        Write one averaged row per aggregation entry into the granularity's table.

        Stored timestamps are ``key.ts * graph_type.period``; the whole mapping
        goes out as a single executemany and a single commit.
        """
        operation = "insert_reporting"
        graph_type = GraphType(graph_type)
        if not self.is_enabled() or not entries:
            return self._skipped(operation)

        table = reporting_table(graph_type)
        log.info("Storing %s reporting...", graph_type.name)

        def work(conn: Connection) -> None:
            rows = [to_reporting_row(key, value, graph_type) for key, value in entries.items()]
            with conn.cursor() as cur:
                cur.executemany(table.insert_sql, rows)

        result, _ = self._run_batch(
            operation,
            len(entries),
            work,
            failure_policy,
            extra={"graph_type": graph_type.name, "table": table.name},
        )
        if not result.get("error"):
            log.info(
                "Storing %s reporting finished. Time %d ms. Records saved %d",
                graph_type.name,
                int(result["duration_seconds"] * 1000),
                result["rows"],
                extra={
                    "operation": operation,
                    "graph_type": graph_type.name,
                    "rows": result["rows"],
                    "duration_seconds": result["duration_seconds"],
                },
            )
        return result

    def select_reporting(
        self,
        since_ts: int,
        limit: int,
        graph_type: GraphType,
        failure_policy: FailurePolicy = "tolerant",
    ) -> List[ReportingPoint]:
        """
        Most recent points with ``ts > since_ts``, newest first, at most ``limit``.
        """
        operation = "select_reporting"
        graph_type = GraphType(graph_type)
        if not self.is_enabled() or limit <= 0:
            return []

        table = reporting_table(graph_type)

        def work(conn: Connection) -> List[ReportingPoint]:
            with conn.cursor() as cur:
                cur.execute(table.select_sql, (since_ts, limit))
                return [ReportingPoint(int(ts), float(value)) for ts, value in cur.fetchall()]

        _, points = self._run_batch(
            operation, 0, work, failure_policy, extra={"graph_type": graph_type.name}
        )
        return points or []

    def clean_old_reporting_records(
        self, now: Optional[datetime] = None, failure_policy: FailurePolicy = "tolerant"
    ) -> PurgeResult:
        """
        Delete rows past each table's retention window in one transaction.

        Tables without a retention window (daily) are left untouched.
        """
        operation = "clean_old_reporting_records"
        if not self.is_enabled():
            return PurgeResult(**self._skipped(operation), removed={})

        now = now or datetime.now(timezone.utc)
        cutoffs = {
            table.name: (table.delete_sql, _epoch_millis(now - table.retention))
            for table in REPORTING_TABLES.values()
            if table.retention is not None
        }
        log.info("Removing old reporting records...")

        def work(conn: Connection) -> Dict[str, int]:
            removed: Dict[str, int] = {}
            with conn.cursor() as cur:
                for name, (sql, cutoff) in cutoffs.items():
                    cur.execute(sql, (cutoff,))
                    removed[name] = max(cur.rowcount, 0)
            return removed

        result, removed = self._run_batch(operation, 0, work, failure_policy)
        removed = removed or {name: 0 for name in cutoffs}
        purge = PurgeResult(**result, removed=removed)
        purge["rows"] = sum(removed.values())
        if not purge.get("error"):
            log.info(
                "Removing finished. Minute records %d, hour records %d. Time %d ms",
                removed.get(REPORTING_TABLES[GraphType.MINUTE].name, 0),
                removed.get(REPORTING_TABLES[GraphType.HOURLY].name, 0),
                int(purge["duration_seconds"] * 1000),
                extra={
                    "operation": operation,
                    "removed": removed,
                    "duration_seconds": purge["duration_seconds"],
                },
            )
        return purge

    def execute_sql(self, sql: str, failure_policy: FailurePolicy = "strict") -> BatchResult:
        """
        Run an arbitrary statement and commit it.

        Strict by default: a disabled store, an exhausted pool or a failing
        statement all raise to the caller.
        """
        operation = "execute_sql"

        def work(conn: Connection) -> None:
            conn.execute(sql)

        result, _ = self._run_batch(operation, 1, work, failure_policy)
        return result


__all__ = [
    "BatchResult",
    "FailurePolicy",
    "PurgeResult",
    "ReportingStore",
]
