"""In-process file-store table.

A complete, thread-safe implementation of the table interfaces: snapshots of
data files per (partition, bucket), metadata scans, batch and store writes,
an append-compaction coordinator, optimistic commits with conflict detection,
and a row rewriter with dynamic partition overwrite. File contents are kept in
memory as lists of row dicts.
"""

from __future__ import annotations

import itertools
import logging
import threading
import zlib
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bucketkeeper.core.sorters import sort_rows
from bucketkeeper.errors import CommitConflictError, CommitFailedError, InvalidArgumentError, TableNotFoundError
from bucketkeeper.models import (
    AppendCompactionTask,
    BucketMode,
    CommitMessage,
    DataFileMeta,
    DataSplit,
    OrderType,
)
from bucketkeeper.table.base import (
    BatchWrite,
    Catalog,
    CompactionCoordinator,
    FileStoreTable,
    RowStreamRewriter,
    StoreWrite,
    TableCommit,
    TableScan,
)

if TYPE_CHECKING:
    from bucketkeeper.core.partitions import PartitionFilter, PartitionPredicate
    from bucketkeeper.utils.io import IOManager

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]
FileKey = tuple[tuple, int]

WRITE_ONLY = "write-only"
TARGET_FILE_SIZE = "target-file-size"
COMPACTION_MIN_FILE_NUM = "compaction.min.file-num"
COMPACTION_MAX_FILE_NUM = "compaction.max.file-num"

DEFAULT_OPTIONS = {
    WRITE_ONLY: "false",
    TARGET_FILE_SIZE: str(128 * 1024 * 1024),
    COMPACTION_MIN_FILE_NUM: "5",
    COMPACTION_MAX_FILE_NUM: "50",
}


@dataclass(frozen=True)
class Snapshot:
    """One version of the table: the data files of every (partition, bucket)."""

    snapshot_id: int
    commit_user: str
    commit_kind: str
    files: Mapping[FileKey, tuple[DataFileMeta, ...]]

    @property
    def file_count(self) -> int:
        return sum(len(files) for files in self.files.values())


class _TableState:
    """Snapshots and file contents shared by every handle of one table."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.snapshots: list[Snapshot] = []
        self.contents: dict[str, tuple[Row, ...]] = {}
        self._file_ids = itertools.count()

    def latest(self) -> Snapshot | None:
        with self.lock:
            return self.snapshots[-1] if self.snapshots else None

    def new_file(self, rows: Sequence[Row], level: int = 0) -> DataFileMeta:
        rows = tuple(dict(r) for r in rows)
        with self.lock:
            name = f"data-{next(self._file_ids):06d}.json"
            self.contents[name] = rows
        size = sum(len(repr(sorted(r.items()))) for r in rows)
        return DataFileMeta(file_name=name, row_count=len(rows), file_size=size, level=level)

    def read(self, files: Iterable[DataFileMeta]) -> list[Row]:
        rows: list[Row] = []
        with self.lock:
            for f in files:
                if f.file_name not in self.contents:
                    msg = f"Data file {f.file_name} does not exist"
                    raise FileNotFoundError(msg)
                rows.extend(self.contents[f.file_name])
        return rows

    def add_snapshot(self, commit_user: str, commit_kind: str, files: Mapping[FileKey, tuple[DataFileMeta, ...]]) -> int:
        with self.lock:
            snapshot_id = len(self.snapshots) + 1
            kept = {key: tuple(value) for key, value in files.items() if value}
            self.snapshots.append(Snapshot(snapshot_id, commit_user, commit_kind, kept))
            return snapshot_id


class MemoryTable(FileStoreTable):
    """A partitioned, bucketed table held in memory."""

    def __init__(
        self,
        name: str,
        partition_keys: Sequence[str] = (),
        bucket_mode: BucketMode = BucketMode.FIXED,
        num_buckets: int = 1,
        bucket_keys: Sequence[str] = (),
        options: Mapping[str, str] | None = None,
        _state: _TableState | None = None,
    ) -> None:
        if bucket_mode is BucketMode.FIXED and num_buckets < 1:
            msg = f"Fixed bucket table {name} needs at least one bucket"
            raise ValueError(msg)
        self._name = name
        self._partition_keys = list(partition_keys)
        self._bucket_mode = bucket_mode
        self._num_buckets = num_buckets
        self._bucket_keys = list(bucket_keys)
        self._options = {**DEFAULT_OPTIONS, **(options or {})}
        self._state = _state or _TableState()

    def __repr__(self) -> str:
        return f"MemoryTable({self._name!r}, bucket_mode={self._bucket_mode.value})"

    def __getstate__(self) -> dict[str, Any]:
        msg = f"MemoryTable {self._name} lives in the driver process and cannot be pickled"
        raise TypeError(msg)

    @property
    def name(self) -> str:
        return self._name

    @property
    def partition_keys(self) -> list[str]:
        return list(self._partition_keys)

    @property
    def bucket_mode(self) -> BucketMode:
        return self._bucket_mode

    @property
    def num_buckets(self) -> int:
        return self._num_buckets

    @property
    def options(self) -> dict[str, str]:
        return dict(self._options)

    def option_int(self, key: str) -> int:
        return int(self._options[key])

    @property
    def write_only(self) -> bool:
        return self._options[WRITE_ONLY].strip().lower() == "true"

    def copy(self, dynamic_options: Mapping[str, str]) -> MemoryTable:
        return MemoryTable(
            self._name,
            self._partition_keys,
            self._bucket_mode,
            self._num_buckets,
            self._bucket_keys,
            {**self._options, **dynamic_options},
            _state=self._state,
        )

    # -- snapshot access ------------------------------------------------------

    @property
    def snapshots(self) -> list[Snapshot]:
        with self._state.lock:
            return list(self._state.snapshots)

    def latest_snapshot(self) -> Snapshot | None:
        return self._state.latest()

    def latest_snapshot_id(self) -> int | None:
        snapshot = self.latest_snapshot()
        return snapshot.snapshot_id if snapshot else None

    def files(self, partition: tuple | None = None, bucket: int | None = None) -> list[DataFileMeta]:
        """Data files of the latest snapshot, optionally for one partition and/or bucket."""
        snapshot = self.latest_snapshot()
        if snapshot is None:
            return []
        result = []
        for (part, buck), files in snapshot.files.items():
            if partition is not None and part != partition:
                continue
            if bucket is not None and buck != bucket:
                continue
            result.extend(files)
        return result

    def read_rows(self, partition_filter: PartitionFilter | None = None) -> list[Row]:
        """All rows of the latest snapshot, optionally filtered."""
        rows = self._state.read(self.files())
        if partition_filter is None:
            return rows
        return [r for r in rows if partition_filter.matches(r)]

    def read_files(self, files: Iterable[DataFileMeta]) -> list[Row]:
        return self._state.read(files)

    def new_file(self, rows: Sequence[Row], level: int = 0) -> DataFileMeta:
        return self._state.new_file(rows, level)

    # -- writing --------------------------------------------------------------

    def partition_of(self, row: Row) -> tuple:
        try:
            return tuple(row[k] for k in self._partition_keys)
        except KeyError as e:
            msg = f"Row {dict(row)!r} is missing partition column {e} of {self._name}"
            raise InvalidArgumentError(msg) from None

    def bucket_of(self, row: Row) -> int:
        if self._bucket_mode is not BucketMode.FIXED or self._num_buckets == 1:
            return 0
        keys = self._bucket_keys or sorted(k for k in row if k not in self._partition_keys)
        digest = zlib.crc32(repr(tuple(row.get(k) for k in keys)).encode("utf-8"))
        return digest % self._num_buckets

    def append(self, rows: Iterable[Row], bucket: int | None = None, commit_user: str = "append") -> int | None:
        """Append rows as new files, one per (partition, bucket), in one snapshot.

        Args:
            rows: Rows to write.
            bucket: Force every row into this bucket; otherwise derived from the bucket mode.
            commit_user: Commit identity recorded on the snapshot.

        Returns:
            The new snapshot id, or None if ``rows`` was empty.
        """
        grouped: dict[FileKey, list[Row]] = {}
        for row in rows:
            key = (self.partition_of(row), self.bucket_of(row) if bucket is None else bucket)
            grouped.setdefault(key, []).append(row)
        if not grouped:
            return None
        messages = [
            CommitMessage(partition=part, bucket=buck, new_files=(self.new_file(group),))
            for (part, buck), group in grouped.items()
        ]
        return self.apply(commit_user, "APPEND", messages)

    def apply(self, commit_user: str, commit_kind: str, messages: Sequence[CommitMessage]) -> int:
        """Atomically apply commit messages on top of the latest snapshot.

        Raises:
            CommitConflictError: If a file to be replaced is no longer live.
        """
        with self._state.lock:
            latest = self._state.latest()
            files: dict[FileKey, list[DataFileMeta]] = {k: list(v) for k, v in (latest.files.items() if latest else ())}

            for message in messages:
                live = files.get((message.partition, message.bucket), [])
                missing = [f.file_name for f in message.compact_before if f not in live]
                if missing:
                    msg = (
                        f"Commit by {commit_user} conflicts on {self._name} partition {message.partition!r} "
                        f"bucket {message.bucket}: files {missing} are no longer live"
                    )
                    raise CommitConflictError(msg)
                removed = set(message.compact_before)
                files[(message.partition, message.bucket)] = [f for f in live if f not in removed]

            for message in messages:
                key = (message.partition, message.bucket)
                files.setdefault(key, []).extend(message.compact_after + message.new_files)

            snapshot_id = self._state.add_snapshot(commit_user, commit_kind, {k: tuple(v) for k, v in files.items()})

        logger.debug("%s committed %s snapshot %d by %s", self._name, commit_kind, snapshot_id, commit_user)
        return snapshot_id

    def overwrite_partitions(self, rows: Iterable[Row], commit_user: str) -> int | None:
        """Replace exactly the partitions present in ``rows``, in one snapshot."""
        grouped: dict[tuple, list[Row]] = {}
        for row in rows:
            grouped.setdefault(self.partition_of(row), []).append(row)
        if not grouped:
            return None

        new_files = {(part, 0): (self.new_file(group),) for part, group in grouped.items()}
        with self._state.lock:
            latest = self._state.latest()
            files = {k: v for k, v in (latest.files.items() if latest else ()) if k[0] not in grouped}
            files.update(new_files)
            snapshot_id = self._state.add_snapshot(commit_user, "OVERWRITE", files)

        logger.debug("%s overwrote %d partition(s) in snapshot %d", self._name, len(grouped), snapshot_id)
        return snapshot_id

    # -- table interfaces -----------------------------------------------------

    def new_scan(self, predicate: PartitionPredicate | None = None) -> MemoryTableScan:
        return MemoryTableScan(self.latest_snapshot(), predicate)

    def new_batch_write(self, commit_user: str) -> MemoryBatchWrite:
        return MemoryBatchWrite(self, commit_user)

    def new_store_write(self, commit_user: str) -> MemoryStoreWrite:
        return MemoryStoreWrite(self, commit_user)

    def new_compaction_coordinator(
        self, full_rewrite: bool, predicate: PartitionPredicate | None = None
    ) -> MemoryCompactionCoordinator:
        return MemoryCompactionCoordinator(self, full_rewrite, predicate)

    def new_commit(self, commit_user: str) -> MemoryTableCommit:
        return MemoryTableCommit(self, commit_user)

    def new_row_rewriter(self) -> MemoryRowStreamRewriter:
        return MemoryRowStreamRewriter(self)


class MemoryTableScan(TableScan):
    def __init__(self, snapshot: Snapshot | None, predicate: PartitionPredicate | None) -> None:
        self._snapshot = snapshot
        self._predicate = predicate

    def plan(self) -> Iterator[DataSplit]:
        if self._snapshot is None:
            return
        for (partition, bucket), files in self._snapshot.files.items():
            if self._predicate is not None and not self._predicate.test(partition):
                continue
            yield DataSplit(partition, bucket, files)


def _merge(table: MemoryTable, files: Sequence[DataFileMeta], level: int) -> DataFileMeta:
    return table.new_file(table.read_files(files), level=level)


class MemoryBatchWrite(BatchWrite):
    """Bucket compaction: merges the files of a bucket into one file."""

    def __init__(self, table: MemoryTable, commit_user: str) -> None:
        self._table = table
        self.commit_user = commit_user
        self.io_manager: IOManager | None = None
        self.closed = False
        self._messages: list[CommitMessage] = []

    def with_io_manager(self, io_manager: IOManager) -> MemoryBatchWrite:
        self.io_manager = io_manager
        return self

    def compact(self, partition: tuple, bucket: int, full_compaction: bool) -> None:
        if self.closed:
            msg = "Write is closed"
            raise RuntimeError(msg)
        if self._table.write_only:
            logger.debug("Skipping compaction of %s/%s: table is write-only", partition, bucket)
            return

        files = self._table.files(partition, bucket)
        if not full_compaction:
            target = self._table.option_int(TARGET_FILE_SIZE)
            files = [f for f in files if f.file_size < target]
            if len(files) < self._table.option_int(COMPACTION_MIN_FILE_NUM):
                return
        if len(files) < 2:  # noqa: PLR2004
            return

        level = max(f.level for f in files) + 1
        merged = _merge(self._table, files, level)
        self._messages.append(
            CommitMessage(partition=partition, bucket=bucket, compact_before=tuple(files), compact_after=(merged,))
        )

    def prepare_commit(self) -> list[CommitMessage]:
        messages, self._messages = self._messages, []
        return messages

    def close(self) -> None:
        self.closed = True


class MemoryStoreWrite(StoreWrite):
    """Low-level write used by append compaction tasks."""

    def __init__(self, table: MemoryTable, commit_user: str) -> None:
        self._table = table
        self.commit_user = commit_user
        self.closed = False

    def compact_files(self, partition: tuple, files: Sequence[DataFileMeta]) -> CommitMessage:
        if self.closed:
            msg = "Write is closed"
            raise RuntimeError(msg)
        merged = _merge(self._table, files, level=0)
        return CommitMessage(partition=partition, bucket=0, compact_before=tuple(files), compact_after=(merged,))

    def close(self) -> None:
        self.closed = True


class MemoryCompactionCoordinator(CompactionCoordinator):
    """Groups small files of each partition into append compaction tasks."""

    def __init__(self, table: MemoryTable, full_rewrite: bool, predicate: PartitionPredicate | None) -> None:
        self._table = table
        self._full_rewrite = full_rewrite
        self._predicate = predicate

    def run(self) -> list[AppendCompactionTask]:
        target = self._table.option_int(TARGET_FILE_SIZE)
        min_files = self._table.option_int(COMPACTION_MIN_FILE_NUM)
        max_files = max(2, self._table.option_int(COMPACTION_MAX_FILE_NUM))

        tasks = []
        for split in self._table.new_scan(self._predicate).plan():
            candidates = list(split.files) if self._full_rewrite else [f for f in split.files if f.file_size < target]
            if len(candidates) < (2 if self._full_rewrite else min_files):
                continue
            for start in range(0, len(candidates), max_files):
                chunk = tuple(candidates[start : start + max_files])
                if len(chunk) >= 2:  # noqa: PLR2004
                    tasks.append(AppendCompactionTask(split.partition, chunk))
        return tasks


class MemoryTableCommit(TableCommit):
    def __init__(self, table: MemoryTable, commit_user: str) -> None:
        self._table = table
        self._commit_user = commit_user
        self.closed = False

    def commit(self, messages: Sequence[CommitMessage]) -> int:
        if self.closed:
            msg = "Commit is closed"
            raise CommitFailedError(msg)
        return self._table.apply(self._commit_user, "COMPACT", messages)

    def close(self) -> None:
        self.closed = True


class MemoryRowStreamRewriter(RowStreamRewriter):
    """Row rewriter: reads rows, sorts them in memory and overwrites partitions."""

    def __init__(self, table: MemoryTable, commit_user: str = "sort-compact") -> None:
        self._table = table
        self._commit_user = commit_user

    def read(self, partition_filter: PartitionFilter | None) -> list[Row]:
        return self._table.read_rows(partition_filter)

    def sort(self, rows: list[Row], order_type: OrderType, columns: Sequence[str]) -> list[Row]:
        known = set().union(*(r.keys() for r in rows)) if rows else set()
        unknown = [c for c in columns if rows and c not in known]
        if unknown:
            msg = f"Unknown order_by column(s) {unknown} for {self._table.name}"
            raise InvalidArgumentError(msg)
        return sort_rows(rows, order_type, columns)

    def overwrite(self, rows: list[Row]) -> int | None:
        return self._table.overwrite_partitions(rows, self._commit_user)


class MemoryCatalog(Catalog):
    """Catalog of in-memory tables keyed by identifier."""

    def __init__(self, tables: Iterable[MemoryTable] = ()) -> None:
        self._tables: dict[str, MemoryTable] = {}
        for table in tables:
            self.register(table)

    def register(self, table: MemoryTable) -> MemoryTable:
        self._tables[table.name] = table
        return table

    def create_table(self, identifier: str, **kwargs: Any) -> MemoryTable:
        return self.register(MemoryTable(identifier, **kwargs))

    def get_table(self, identifier: str) -> MemoryTable:
        try:
            return self._tables[identifier]
        except KeyError:
            msg = f"Table {identifier} does not exist"
            raise TableNotFoundError(msg) from None
