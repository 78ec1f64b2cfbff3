"""
Synthetic reporting data generator for reportstore.

Builds deterministic pseudo-random aggregation buckets for a handful of users,
dashboards and pins, then flushes them through ``ReportingStore`` the same way
the aggregator does (one ``insert_reporting`` batch per granularity).
"""

from __future__ import annotations

import random
import sys
import time
from datetime import datetime, timezone

import typer

from reportstore.config import get_settings
from reportstore.domain.models import AggregationKey, AggregationValue, GraphType, PinType
from reportstore.infrastructure.pool import PoolManager
from reportstore.store import ReportingStore
from reportstore.utils.logging import configure_logging

app = typer.Typer(help="Generate synthetic reporting aggregates and store them.")


def _generate_entries(
    graph_type: GraphType,
    users: int,
    buckets: int,
    samples_per_bucket: int,
    seed: int,
    now_ms: int,
) -> dict[AggregationKey, AggregationValue]:
    rng = random.Random(seed)
    pin_types = list(PinType)
    last_bucket = now_ms // graph_type.period

    entries: dict[AggregationKey, AggregationValue] = {}
    for user_idx in range(users):
        username = f"user{user_idx}@example.com"
        dash_id = rng.randint(1, 1_000)
        pin = rng.randint(0, 127)
        pin_type = rng.choice(pin_types)
        for offset in range(buckets):
            key = AggregationKey(
                username=username,
                dash_id=dash_id,
                pin=pin,
                pin_type=pin_type,
                ts=last_bucket - offset,
            )
            value = AggregationValue()
            for _ in range(samples_per_bucket):
                value.update(rng.uniform(0, 100))
            entries[key] = value
    return entries


@app.command()
def main(
    users: int = typer.Option(10, "--users", "-u", help="Number of distinct users."),
    buckets: int = typer.Option(60, "--buckets", "-b", help="Buckets per user and granularity."),
    samples: int = typer.Option(5, "--samples", help="Samples averaged into each bucket."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
) -> None:
    """
    Generate aggregates for every granularity and insert them.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    store = ReportingStore(PoolManager.from_settings(settings))
    if not store.is_enabled():
        typer.echo("DB storage is disabled (no usable db.properties); nothing to do.", err=True)
        raise typer.Exit(code=1)

    now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    start = time.perf_counter()
    try:
        for graph_type in GraphType:
            entries = _generate_entries(graph_type, users, buckets, samples, seed, now_ms)
            result = store.insert_reporting(entries, graph_type)
            typer.echo(
                f"{graph_type.name}: {result.get('rows', 0):,} rows "
                f"in {result.get('duration_seconds', 0.0):.2f}s"
                + (f" (error: {result['error']})" if result.get("error") else "")
            )
    finally:
        store.close()
    typer.echo(f"Total time {time.perf_counter() - start:.2f}s")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
