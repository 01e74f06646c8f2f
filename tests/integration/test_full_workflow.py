"""Integration tests for the full Bucketkeeper workflow against in-memory tables."""

from __future__ import annotations

import threading

import pytest

from bucketkeeper.core.compactor import CompactProcedure, Compactor
from bucketkeeper.core.executor import LocalExecutor
from bucketkeeper.errors import CommitConflictError, InvalidArgumentError
from bucketkeeper.models import BucketMode, CompactionStatus
from bucketkeeper.table.memory import COMPACTION_MIN_FILE_NUM, MemoryCatalog, MemoryTable


class TestFullWorkflow:
    """Test the complete plan -> scatter -> gather -> commit workflow."""

    @pytest.fixture
    def catalog(self):
        catalog = MemoryCatalog()
        orders = catalog.create_table(
            "mydb.orders", partition_keys=["dt"], bucket_mode=BucketMode.FIXED, num_buckets=4, bucket_keys=["id"]
        )
        for batch in range(5):
            orders.append([{"dt": dt, "id": i, "batch": batch} for dt in ("d1", "d2", "d3") for i in range(20)])

        events = catalog.create_table(
            "mydb.events",
            partition_keys=["dt"],
            bucket_mode=BucketMode.UNAWARE,
            options={COMPACTION_MIN_FILE_NUM: "2"},
        )
        for batch in range(4):
            events.append([{"dt": dt, "a": (batch * 7 + i) % 5, "b": i} for dt in ("d1", "d2") for i in range(8)])
        return catalog

    def _rows(self, table):
        return sorted(tuple(sorted(r.items())) for r in table.read_rows())

    def test_fixed_bucket_workflow(self, catalog):
        orders = catalog.get_table("mydb.orders")
        rows_before = self._rows(orders)
        files_before = orders.latest_snapshot().file_count
        snapshot_before = orders.latest_snapshot_id()

        assert CompactProcedure(catalog, Compactor(LocalExecutor(3))).call("mydb.orders") is True

        # Exactly one new snapshot, carrying every rewritten bucket
        assert orders.latest_snapshot_id() == snapshot_before + 1
        snapshot = orders.latest_snapshot()
        assert snapshot.commit_kind == "COMPACT"
        assert snapshot.file_count == len(snapshot.files)
        assert snapshot.file_count < files_before
        assert self._rows(orders) == rows_before

    def test_unaware_bucket_workflow(self, catalog):
        events = catalog.get_table("mydb.events")
        rows_before = self._rows(events)

        report = Compactor(LocalExecutor(4)).compact_table(events, partitions="dt=d2")

        assert report.status == CompactionStatus.COMPLETED
        assert report.files_before == 4
        assert len(events.files(("d1",))) == 4
        assert len(events.files(("d2",))) == 1
        assert self._rows(events) == rows_before

    def test_sort_rewrite_workflow(self, catalog):
        events = catalog.get_table("mydb.events")
        old_files = set(events.files())
        rows_before = self._rows(events)

        assert CompactProcedure(catalog).call("mydb.events", order_strategy="zorder", order_by="a,b") is True

        new_files = events.files()
        assert old_files.isdisjoint(new_files)
        assert len(new_files) == 2
        assert self._rows(events) == rows_before

    def test_sort_rewrite_with_partition_filter(self, catalog):
        events = catalog.get_table("mydb.events")
        untouched = events.files(("d1",))

        CompactProcedure(catalog).call("mydb.events", partitions="dt=d2", order_strategy="order", order_by="a,b")

        assert events.files(("d1",)) == untouched
        (d2_file,) = events.files(("d2",))
        rows = events.read_files([d2_file])
        assert rows == sorted(rows, key=lambda r: (r["a"], r["b"]))

    def test_second_pass_is_noop(self, catalog):
        orders = catalog.get_table("mydb.orders")
        procedure = CompactProcedure(catalog)
        procedure.call("mydb.orders")
        snapshot_id = orders.latest_snapshot_id()

        assert procedure.call("mydb.orders") is True
        assert orders.latest_snapshot_id() == snapshot_id

    def test_invalid_call_changes_nothing(self, catalog):
        orders = catalog.get_table("mydb.orders")
        snapshot_id = orders.latest_snapshot_id()

        with pytest.raises(InvalidArgumentError):
            CompactProcedure(catalog).call("mydb.orders", order_strategy="none", order_by="id")

        assert orders.latest_snapshot_id() == snapshot_id

    def test_concurrent_jobs_one_wins(self, catalog):
        orders = catalog.get_table("mydb.orders")
        snapshot_before = orders.latest_snapshot_id()
        barrier = threading.Barrier(2, timeout=10)
        outcomes = []

        class GatedExecutor(LocalExecutor):
            def map_partitions(self, units, worker):
                messages = super().map_partitions(units, worker)
                barrier.wait()
                return messages

        def run():
            try:
                Compactor(GatedExecutor(2)).compact_table(orders)
                outcomes.append("committed")
            except CommitConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Both jobs rewrite the same buckets; the second commit finds its inputs already replaced
        assert sorted(outcomes) == ["committed", "conflict"]
        assert orders.latest_snapshot_id() == snapshot_before + 1

    def test_unpartitioned_table(self):
        table = MemoryTable("mydb.flat", bucket_mode=BucketMode.FIXED, num_buckets=1)
        for i in range(3):
            table.append([{"id": i}])

        report = Compactor().compact_table(table)

        assert report.status == CompactionStatus.COMPLETED
        assert len(table.files()) == 1

    @pytest.mark.parametrize(("partitions", "expected_rows"), [("p1=a;p2=b", 2), ("p1=a/p2=b", 0), ("p3=c", 1)])
    def test_partition_filter_row_counts(self, partitions, expected_rows):
        table = MemoryTable("mydb.triple", partition_keys=["p1", "p2", "p3"], bucket_mode=BucketMode.UNAWARE)
        table.append(
            [
                {"p1": "a", "p2": "-", "p3": "-", "v": 1},
                {"p1": "-", "p2": "b", "p3": "-", "v": 2},
                {"p1": "-", "p2": "-", "p3": "c", "v": 3},
            ]
        )

        CompactProcedure(MemoryCatalog([table])).call(
            "mydb.triple", partitions=partitions, order_strategy="order", order_by="v"
        )

        original = {f for files in table.snapshots[0].files.values() for f in files}
        rewritten_rows = sum(f.row_count for f in table.files() if f not in original)
        assert rewritten_rows == expected_rows
        assert len(table.read_rows()) == 3
