"""Abstract interfaces of the table storage collaborators.

Compaction orchestration only talks to a table through these interfaces; the
table format itself (snapshots, file merge, sort) lives behind them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bucketkeeper.core.partitions import PartitionFilter, PartitionPredicate
    from bucketkeeper.models import (
        AppendCompactionTask,
        BucketMode,
        CommitMessage,
        DataFileMeta,
        DataSplit,
        OrderType,
    )
    from bucketkeeper.utils.io import IOManager


class TableScan(ABC):
    """Metadata scan over the latest snapshot."""

    @abstractmethod
    def plan(self) -> Iterable[DataSplit]:
        """Return the data splits of the snapshot, lazily if possible."""


class BatchWrite(ABC):
    """Write handle used by assigned-bucket compaction."""

    @abstractmethod
    def with_io_manager(self, io_manager: IOManager) -> BatchWrite:
        """Attach a local I/O manager used for spilling."""

    @abstractmethod
    def compact(self, partition: tuple, bucket: int, full_compaction: bool) -> None:
        """Compact one existing bucket.

        Args:
            partition: Partition key.
            bucket: Bucket id.
            full_compaction: Rewrite every file of the bucket, not only small ones.
        """

    @abstractmethod
    def prepare_commit(self) -> list[CommitMessage]:
        """Return the commit messages of all compactions performed so far."""

    @abstractmethod
    def close(self) -> None:
        """Release the write handle."""


class StoreWrite(ABC):
    """Low-level write handle used by unaware-bucket compaction tasks."""

    @abstractmethod
    def compact_files(self, partition: tuple, files: Sequence[DataFileMeta]) -> CommitMessage:
        """Merge the given files of a partition into new files.

        Returns:
            One commit message describing the rewrite.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the write handle."""


class CompactionCoordinator(ABC):
    """Plans compaction tasks for unaware-bucket tables."""

    @abstractmethod
    def run(self) -> list[AppendCompactionTask]:
        """Return the planned tasks, possibly empty."""


class TableCommit(ABC):
    """One atomic commit against the table log."""

    @abstractmethod
    def commit(self, messages: Sequence[CommitMessage]) -> int:
        """Atomically apply all messages as one snapshot.

        Returns:
            The id of the new snapshot.

        Raises:
            CommitFailedError: If the commit cannot be applied; nothing is made durable.
        """

    def close(self) -> None:  # noqa: B027
        """Release commit resources."""

    def __enter__(self) -> TableCommit:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class RowStreamRewriter(ABC):
    """Row-level read, sort and dynamic-overwrite write of a table."""

    @abstractmethod
    def read(self, partition_filter: PartitionFilter | None) -> Any:
        """Read the table as a row stream, restricted to the filter if given."""

    @abstractmethod
    def sort(self, rows: Any, order_type: OrderType, columns: Sequence[str]) -> Any:
        """Sort a row stream with the given strategy."""

    @abstractmethod
    def overwrite(self, rows: Any) -> int | None:
        """Write rows back, replacing exactly the partitions they touch, in one commit.

        Returns:
            The id of the new snapshot, or None when nothing was written or the
            backend does not report snapshot ids.
        """


class FileStoreTable(ABC):
    """Handle of a partitioned, bucketed table."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Fully qualified table name."""

    @property
    @abstractmethod
    def partition_keys(self) -> list[str]:
        """Partition columns, in partition-key order."""

    @property
    @abstractmethod
    def bucket_mode(self) -> BucketMode:
        """Bucket assignment policy of the table."""

    @abstractmethod
    def copy(self, dynamic_options: Mapping[str, str]) -> FileStoreTable:
        """Return a handle on the same table with options overridden."""

    @abstractmethod
    def latest_snapshot_id(self) -> int | None:
        """Id of the latest snapshot, or None for an empty table."""

    @abstractmethod
    def new_scan(self, predicate: PartitionPredicate | None = None) -> TableScan:
        """Create a metadata scan, optionally restricted to matching partitions."""

    @abstractmethod
    def new_batch_write(self, commit_user: str) -> BatchWrite:
        """Create a write handle for assigned-bucket compaction."""

    @abstractmethod
    def new_store_write(self, commit_user: str) -> StoreWrite:
        """Create a low-level write handle for unaware-bucket compaction."""

    @abstractmethod
    def new_compaction_coordinator(
        self, full_rewrite: bool, predicate: PartitionPredicate | None = None
    ) -> CompactionCoordinator:
        """Create a coordinator that plans unaware-bucket compaction tasks."""

    @abstractmethod
    def new_commit(self, commit_user: str) -> TableCommit:
        """Create a commit for the given commit identity."""

    @abstractmethod
    def new_row_rewriter(self) -> RowStreamRewriter:
        """Create a row rewriter used by sort compaction."""


class Catalog(ABC):
    """Resolves table identifiers to table handles."""

    @abstractmethod
    def get_table(self, identifier: str) -> FileStoreTable:
        """Look up a table.

        Raises:
            TableNotFoundError: If the table does not exist.
        """
