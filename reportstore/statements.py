"""
Fixed SQL statements and the granularity-to-table lookup.

Statements are positional and mirror the on-disk layout in ``db/init.sql``:
``users(username, json)`` and
``reporting_average_{minute,hourly,daily}(username, dash_id, pin, pin_type, ts, value)``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import NamedTuple, Optional

from reportstore.domain.models import GraphType

UPSERT_USER = (
    "INSERT INTO users VALUES (%s, %s) "
    "ON CONFLICT (username) DO UPDATE SET json = EXCLUDED.json"
)

_INSERT = "INSERT INTO {table} VALUES (%s, %s, %s, %s, %s, %s)"
_SELECT = "SELECT ts, value FROM {table} WHERE ts > %s ORDER BY ts DESC LIMIT %s"
# Inclusive so the row sitting exactly on the retention cutoff goes too.
_DELETE = "DELETE FROM {table} WHERE ts <= %s"


class ReportingTable(NamedTuple):
    name: str
    insert_sql: str
    select_sql: str
    delete_sql: str
    retention: Optional[timedelta]


def _table(name: str, retention: Optional[timedelta]) -> ReportingTable:
    return ReportingTable(
        name=name,
        insert_sql=_INSERT.format(table=name),
        select_sql=_SELECT.format(table=name),
        delete_sql=_DELETE.format(table=name),
        retention=retention,
    )


# Retention keeps one extra bucket so the in-flight bucket is never deleted.
# Daily aggregates have no retention and are kept indefinitely.
REPORTING_TABLES: dict[GraphType, ReportingTable] = {
    GraphType.MINUTE: _table("reporting_average_minute", timedelta(minutes=360 + 1)),
    GraphType.HOURLY: _table("reporting_average_hourly", timedelta(hours=168 + 1)),
    GraphType.DAILY: _table("reporting_average_daily", None),
}


def reporting_table(graph_type: GraphType) -> ReportingTable:
    return REPORTING_TABLES[GraphType(graph_type)]


__all__ = [
    "REPORTING_TABLES",
    "ReportingTable",
    "UPSERT_USER",
    "reporting_table",
]
