"""Shared fixtures for Bucketkeeper tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from bucketkeeper.config import BucketkeeperConfig
from bucketkeeper.models import BucketMode
from bucketkeeper.table.memory import COMPACTION_MIN_FILE_NUM, MemoryCatalog, MemoryTable


@pytest.fixture
def config():
    """Default Bucketkeeper configuration for tests."""
    return BucketkeeperConfig(
        executor="local",
        parallelism=2,
        log_level="WARNING",
    )


@pytest.fixture
def mock_spark():
    """Mock SparkSession with a SparkContext."""
    spark = MagicMock()
    spark.sparkContext = MagicMock()
    spark.sparkContext.applicationId = "local-test-app"
    spark.sparkContext.defaultParallelism = 8
    return spark


@pytest.fixture
def make_fixed_table():
    """Factory of fixed-bucket tables partitioned by dt, three partitions x two buckets.

    Bucket (dt=2024-01-01, 0) holds five small files, every other bucket one file.
    """
    return _build_fixed_table


@pytest.fixture
def fixed_table(make_fixed_table):
    return make_fixed_table()


def _build_fixed_table():
    table = MemoryTable("mydb.orders", partition_keys=["dt"], bucket_mode=BucketMode.FIXED, num_buckets=2)
    for i in range(5):
        table.append([{"dt": "2024-01-01", "id": i, "amount": i * 10}], bucket=0)
    table.append([{"dt": "2024-01-01", "id": 100, "amount": 1}], bucket=1)
    for dt in ("2024-01-02", "2024-01-03"):
        table.append([{"dt": dt, "id": 200, "amount": 2}], bucket=0)
        table.append([{"dt": dt, "id": 201, "amount": 3}], bucket=1)
    return table


@pytest.fixture
def unaware_table():
    """Unaware-bucket table partitioned by dt with six small files per partition."""
    table = MemoryTable(
        "mydb.events",
        partition_keys=["dt"],
        bucket_mode=BucketMode.UNAWARE,
        options={COMPACTION_MIN_FILE_NUM: "3"},
    )
    for dt in ("2024-01-01", "2024-01-02"):
        for i in range(6):
            table.append([{"dt": dt, "a": i % 3, "b": 5 - i, "payload": f"{dt}-{i}"}])
    return table


@pytest.fixture
def multi_key_table():
    """Unaware-bucket table partitioned by (p1, p2, p3), one row per partition."""
    table = MemoryTable("mydb.multi", partition_keys=["p1", "p2", "p3"], bucket_mode=BucketMode.UNAWARE)
    table.append(
        [
            {"p1": "a", "p2": "b", "p3": "c", "v": 1},
            {"p1": "a", "p2": "x", "p3": "c", "v": 2},
            {"p1": "z", "p2": "b", "p3": "c", "v": 3},
            {"p1": "z", "p2": "y", "p3": "c", "v": 4},
        ]
    )
    return table


@pytest.fixture
def catalog(fixed_table, unaware_table, multi_key_table):
    return MemoryCatalog([fixed_table, unaware_table, multi_key_table])
