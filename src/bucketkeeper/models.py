"""Data models for Bucketkeeper."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

from bucketkeeper.errors import InvalidArgumentError

if TYPE_CHECKING:
    from bucketkeeper.table.base import StoreWrite


class BucketMode(Enum):
    """How rows are assigned to buckets."""

    FIXED = "fixed"
    DYNAMIC = "dynamic"
    UNAWARE = "unaware"
    CROSS_PARTITION = "cross-partition"

    @property
    def is_assigned(self) -> bool:
        """Whether buckets are explicitly assigned (one unit per partition/bucket)."""
        return self in (BucketMode.FIXED, BucketMode.DYNAMIC)


class OrderType(Enum):
    """Sort strategy applied by the reorder rewrite path."""

    NONE = "none"
    ORDER = "order"
    ZORDER = "zorder"
    HILBERT = "hilbert"

    @classmethod
    def of(cls, name: str) -> OrderType:
        """Look up an order type by name, case-insensitively.

        Raises:
            InvalidArgumentError: If the name is not a known strategy.
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            known = ", ".join(t.value for t in cls)
            msg = f"Unknown order_strategy '{name}', expected one of: {known}"
            raise InvalidArgumentError(msg) from None


class CompactionStatus(Enum):
    """Status of a compaction job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DataFileMeta:
    """Metadata of one data file referenced by a snapshot."""

    file_name: str
    row_count: int
    file_size: int
    level: int = 0


@dataclass(frozen=True)
class DataSplit:
    """One split returned by a metadata scan."""

    partition: tuple
    bucket: int
    files: tuple[DataFileMeta, ...] = ()


@dataclass(frozen=True)
class CommitMessage:
    """File-level changes produced for one (partition, bucket).

    Fragments are independent of each other; a commit applies the union of them.
    """

    partition: tuple
    bucket: int
    new_files: tuple[DataFileMeta, ...] = ()
    compact_before: tuple[DataFileMeta, ...] = ()
    compact_after: tuple[DataFileMeta, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.new_files or self.compact_before or self.compact_after)


@dataclass(frozen=True)
class AssignedBucket:
    """Unit of work for assigned-bucket tables: rewrite one existing shard."""

    partition: tuple
    bucket: int


@dataclass(frozen=True)
class PlannedTask:
    """Unit of work for unaware-bucket tables: an encoded compaction task."""

    version: int
    payload: bytes


Unit = Union[AssignedBucket, PlannedTask]


@dataclass(frozen=True)
class AppendCompactionTask:
    """A planned merge of small files within one partition of an unaware-bucket table."""

    partition: tuple
    files: tuple[DataFileMeta, ...]

    def do_compact(self, write: StoreWrite) -> CommitMessage:
        """Merge this task's files through a low-level store write.

        Args:
            write: Store write handle owned by the current worker.

        Returns:
            The commit message describing the rewrite.
        """
        if not self.files:
            msg = f"No files to compact for partition {self.partition}"
            raise ValueError(msg)
        return write.compact_files(self.partition, self.files)


@dataclass
class CompactionReport:
    """Result of one compaction call."""

    table_name: str
    status: CompactionStatus = CompactionStatus.PENDING
    order_type: OrderType = OrderType.NONE
    bucket_mode: BucketMode | None = None
    partitions: str | None = None
    units_planned: int = 0
    fragments_committed: int = 0
    files_before: int = 0
    files_after: int = 0
    snapshot_id: int | None = None
    commit_user: str | None = None
    duration_seconds: float = 0.0
