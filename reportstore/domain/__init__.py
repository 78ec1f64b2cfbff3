"""
Domain package for reportstore.

Exports the aggregation, user and reporting row models used by the store.
Keep this package focused on data definitions and the key-to-row mapping.
"""

from reportstore.domain.models import (
    AggregationKey,
    AggregationValue,
    Averageable,
    GraphType,
    PinType,
    ReportingPoint,
    ReportingRow,
    User,
    to_reporting_row,
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
