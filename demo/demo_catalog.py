"""Catalog factory with fragmented in-memory tables for bucketkeeper demo/testing.

Builds two tables with small-file debt, simulating an incremental pipeline
that appended one small batch at a time:

    demo.orders   fixed-bucket table, partitioned by dt, 4 buckets
    demo.events   unaware-bucket table, partitioned by dt

Usage (from the repository root):
    PYTHONPATH=. bucketkeeper plan    --catalog demo.demo_catalog:build --table demo.orders
    PYTHONPATH=. bucketkeeper compact --catalog demo.demo_catalog:build --table demo.orders
    PYTHONPATH=. bucketkeeper compact --catalog demo.demo_catalog:build --table demo.events \\
        --order-strategy zorder --order-by user_id,amount

Tables live in the process that runs the command, so every invocation starts
from the same fragmented state.
"""

from __future__ import annotations

import logging
import random
from datetime import date, timedelta

from bucketkeeper.config import BucketkeeperConfig
from bucketkeeper.models import BucketMode
from bucketkeeper.table.memory import COMPACTION_MIN_FILE_NUM, MemoryCatalog

logger = logging.getLogger(__name__)

DAYS = 3
BATCHES = 12
ROWS_PER_BATCH = 50
EVENT_TYPES = ["click", "view", "purchase", "signup"]


def _batch(day: str, batch: int, rng: random.Random) -> list[dict]:
    return [
        {
            "dt": day,
            "event_id": batch * ROWS_PER_BATCH + i,
            "user_id": rng.randint(1, 500),
            "event_type": rng.choice(EVENT_TYPES),
            "amount": round(rng.uniform(0, 100), 2),
        }
        for i in range(ROWS_PER_BATCH)
    ]


def build(config: BucketkeeperConfig | None = None) -> MemoryCatalog:
    """Create the demo catalog."""
    rng = random.Random(42)
    catalog = MemoryCatalog()
    orders = catalog.create_table(
        "demo.orders",
        partition_keys=["dt"],
        bucket_mode=BucketMode.FIXED,
        num_buckets=4,
        bucket_keys=["user_id"],
    )
    events = catalog.create_table(
        "demo.events",
        partition_keys=["dt"],
        bucket_mode=BucketMode.UNAWARE,
        options={COMPACTION_MIN_FILE_NUM: "3"},
    )

    start = date(2024, 1, 1)
    for offset in range(DAYS):
        day = (start + timedelta(days=offset)).isoformat()
        for batch in range(BATCHES):
            orders.append(_batch(day, batch, rng))
            events.append(_batch(day, batch, rng))

    for table in (orders, events):
        logger.info("Demo table %s: %d files", table.name, table.latest_snapshot().file_count)
    return catalog
