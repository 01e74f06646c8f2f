"""Tests for bucketkeeper.core.decomposer module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from bucketkeeper.core.codec import CompactionTaskSerializer
from bucketkeeper.core.decomposer import classify_bucket_mode, decompose, plan_assigned_buckets, plan_unaware_tasks
from bucketkeeper.core.partitions import PartitionFilter
from bucketkeeper.errors import TaskSerializationError, UnsupportedConfigurationError
from bucketkeeper.models import AppendCompactionTask, AssignedBucket, BucketMode, DataFileMeta, DataSplit, PlannedTask
from bucketkeeper.table.memory import MemoryTable


def _mock_table(bucket_mode, splits=(), tasks=()):
    table = MagicMock()
    table.name = "mydb.mock"
    table.bucket_mode = bucket_mode
    table.new_scan.return_value.plan.return_value = list(splits)
    table.new_compaction_coordinator.return_value.run.return_value = list(tasks)
    return table


class TestClassifyBucketMode:
    @pytest.mark.parametrize("mode", list(BucketMode))
    def test_returns_table_mode(self, mode):
        assert classify_bucket_mode(_mock_table(mode)) is mode


class TestPlanAssignedBuckets:
    def test_one_unit_per_bucket(self, fixed_table):
        units = plan_assigned_buckets(fixed_table)
        assert len(units) == 6
        assert set(units) == {AssignedBucket((dt,), b) for dt in ("2024-01-01", "2024-01-02", "2024-01-03") for b in (0, 1)}

    def test_duplicate_splits_deduplicated(self):
        f = DataFileMeta("f", 1, 1)
        table = _mock_table(
            BucketMode.FIXED,
            splits=[DataSplit(("a",), 0, (f,)), DataSplit(("a",), 0, (f,)), DataSplit(("a",), 1, (f,))],
        )
        assert plan_assigned_buckets(table) == [AssignedBucket(("a",), 0), AssignedBucket(("a",), 1)]

    def test_predicate_restricts_scan(self, fixed_table):
        predicate = PartitionFilter.parse("dt=2024-01-02").bind(fixed_table.partition_keys)
        units = plan_assigned_buckets(fixed_table, predicate)
        assert {u.partition for u in units} == {("2024-01-02",)}

    def test_empty_table(self):
        table = MemoryTable("mydb.empty", partition_keys=["dt"], num_buckets=4)
        assert plan_assigned_buckets(table) == []


class TestPlanUnawareTasks:
    def test_tasks_are_encoded_with_current_version(self, unaware_table):
        serializer = CompactionTaskSerializer()
        units = plan_unaware_tasks(unaware_table, serializer=serializer)

        assert len(units) == 2
        assert all(isinstance(u, PlannedTask) and u.version == 2 for u in units)
        decoded = [serializer.deserialize(u.version, u.payload) for u in units]
        assert {t.partition for t in decoded} == {("2024-01-01",), ("2024-01-02",)}
        assert all(len(t.files) == 6 for t in decoded)

    def test_coordinator_is_not_full_rewrite(self):
        table = _mock_table(BucketMode.UNAWARE)
        predicate = MagicMock()
        plan_unaware_tasks(table, predicate)
        table.new_compaction_coordinator.assert_called_once_with(full_rewrite=False, predicate=predicate)

    def test_encoding_failure_aborts_planning(self):
        tasks = [AppendCompactionTask(("a",), (DataFileMeta("f", 1, 1),)), AppendCompactionTask((object(),), ())]
        table = _mock_table(BucketMode.UNAWARE, tasks=tasks)
        with pytest.raises(TaskSerializationError):
            plan_unaware_tasks(table)


class TestDecompose:
    def test_fixed_table(self, fixed_table):
        units = decompose(fixed_table)
        assert all(isinstance(u, AssignedBucket) for u in units)

    def test_dynamic_table(self):
        f = DataFileMeta("f", 1, 1)
        table = _mock_table(BucketMode.DYNAMIC, splits=[DataSplit(("a",), 3, (f,))])
        assert decompose(table) == [AssignedBucket(("a",), 3)]

    def test_unaware_table(self, unaware_table):
        units = decompose(unaware_table)
        assert all(isinstance(u, PlannedTask) for u in units)

    def test_unaware_table_without_small_files(self):
        table = MemoryTable("mydb.fresh", bucket_mode=BucketMode.UNAWARE)
        table.append([{"a": 1}])
        assert decompose(table) == []

    def test_cross_partition_unsupported(self):
        table = _mock_table(BucketMode.CROSS_PARTITION)
        with pytest.raises(UnsupportedConfigurationError, match="cross-partition"):
            decompose(table)
        table.new_scan.assert_not_called()
