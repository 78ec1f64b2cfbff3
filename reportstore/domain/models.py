"""
Domain models for reportstore.

Defines the aggregation key/value pair produced by the upstream aggregator,
the user snapshot record, and the row shapes written to and read from the
``reporting_average_*`` tables (see ``db/init.sql``).
"""
from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class PinType(str, Enum):
    """Hardware pin kind; the value is the on-disk ``pin_type`` string."""

    DIGITAL = "d"
    ANALOG = "a"
    VIRTUAL = "v"

    @property
    def pin_type_string(self) -> str:
        return self.value


class GraphType(str, Enum):
    """Reporting granularity."""

    MINUTE = "minute"
    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def period(self) -> int:
        """Bucket width in milliseconds."""
        return _PERIODS_MS[self]


_PERIODS_MS = {
    GraphType.MINUTE: 60 * 1000,
    GraphType.HOURLY: 60 * 60 * 1000,
    GraphType.DAILY: 24 * 60 * 60 * 1000,
}


class AggregationKey(BaseModel):
    """
    Identity of one metric's time bucket.

    ``ts`` is a bucket index (buckets since epoch at some granularity), not a
    timestamp. Frozen so it can be used as a mapping key.
    """

    username: str = Field(..., description="Owner identity.")
    dash_id: int = Field(..., description="Dashboard id.")
    pin: int = Field(..., ge=0, le=255, description="Pin / channel number.")
    pin_type: PinType = Field(..., description="Pin kind.")
    ts: int = Field(..., description="Bucket index at the key's granularity.")

    model_config = {
        "frozen": True,
    }

    @classmethod
    def for_instant(
        cls,
        username: str,
        dash_id: int,
        pin: int,
        pin_type: PinType,
        ts_ms: int,
        graph_type: GraphType,
    ) -> "AggregationKey":
        """Key for the bucket containing ``ts_ms`` at ``graph_type`` granularity."""
        return cls(
            username=username,
            dash_id=dash_id,
            pin=pin,
            pin_type=pin_type,
            ts=ts_ms // graph_type.period,
        )


@runtime_checkable
class Averageable(Protocol):
    def calc_average(self) -> float: ...


class AggregationValue:
    """Running sum/count of the samples that fell into one bucket."""

    __slots__ = ("sum", "count")

    def __init__(self, value: float | None = None) -> None:
        self.sum = 0.0
        self.count = 0
        if value is not None:
            self.update(value)

    def update(self, value: float) -> None:
        self.sum += value
        self.count += 1

    def calc_average(self) -> float:
        if self.count == 0:
            return 0.0
        return self.sum / self.count

    def __repr__(self) -> str:
        return f"AggregationValue(sum={self.sum!r}, count={self.count!r})"


class User(BaseModel):
    """An owner identity plus its opaque serialized snapshot."""

    name: str = Field(..., min_length=1, description="Unique user identity.")
    snapshot: str = Field(..., description="Serialized user model (usually JSON).")

    model_config = {
        "frozen": True,
    }


class ReportingRow(NamedTuple):
    """Positional row for ``INSERT INTO reporting_average_* VALUES (...)``."""

    username: str
    dash_id: int
    pin: int
    pin_type: str
    ts: int
    value: float


class ReportingPoint(NamedTuple):
    ts: int
    value: float


def to_reporting_row(key: AggregationKey, value: Averageable, graph_type: GraphType) -> ReportingRow:
    """
    Map one aggregation entry to its on-disk row.

    The stored timestamp is always ``bucket index * period``; readers compare
    against it directly, so this derivation must not change.
    """
    return ReportingRow(
        username=key.username,
        dash_id=key.dash_id,
        pin=key.pin,
        pin_type=key.pin_type.pin_type_string,
        ts=key.ts * graph_type.period,
        value=float(value.calc_average()),
    )


__all__ = [
    "AggregationKey",
    "AggregationValue",
    "Averageable",
    "GraphType",
    "PinType",
    "ReportingPoint",
    "ReportingRow",
    "User",
    "to_reporting_row",
]
