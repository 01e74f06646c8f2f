"""Compaction orchestration - the main workflow engine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bucketkeeper.core.codec import CompactionTaskSerializer
from bucketkeeper.core.committer import commit_messages, new_commit_user
from bucketkeeper.core.decomposer import classify_bucket_mode, decompose
from bucketkeeper.core.executor import LocalExecutor
from bucketkeeper.core.partitions import PartitionFilter
from bucketkeeper.core.sort_rewrite import sort_compact
from bucketkeeper.core.worker import CompactionWorker
from bucketkeeper.errors import InvalidArgumentError
from bucketkeeper.models import CompactionReport, CompactionStatus, OrderType

if TYPE_CHECKING:
    from bucketkeeper.core.executor import WorkExecutor
    from bucketkeeper.models import Unit
    from bucketkeeper.table.base import Catalog, FileStoreTable

logger = logging.getLogger(__name__)

WRITE_ONLY = "write-only"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


@dataclass(frozen=True)
class CompactRequest:
    """Validated arguments of one compaction call."""

    order_type: OrderType = OrderType.NONE
    order_by: tuple[str, ...] = ()
    partitions: str | None = None
    partition_filter: PartitionFilter | None = None

    @classmethod
    def parse(
        cls,
        partitions: str | None = None,
        order_strategy: str | None = None,
        order_by: str | None = None,
    ) -> CompactRequest:
        """Validate raw procedure arguments. Blank values count as absent.

        Raises:
            InvalidArgumentError: For unknown strategies, malformed partitions, or
                order_by columns combined with the ``none`` strategy.
        """
        order_type = OrderType.NONE if _blank(order_strategy) else OrderType.of(order_strategy)
        columns = () if _blank(order_by) else tuple(c.strip() for c in order_by.split(",") if c.strip())

        if order_type is OrderType.NONE and columns:
            msg = 'order_strategy "none" cannot work with order_by columns.'
            raise InvalidArgumentError(msg)
        if order_type is not OrderType.NONE and not columns:
            msg = f'order_strategy "{order_type.value}" requires order_by columns.'
            raise InvalidArgumentError(msg)

        partitions = None if _blank(partitions) else partitions.strip()
        return cls(order_type, columns, partitions, PartitionFilter.parse(partitions))


class Compactor:
    """Orchestrates one compaction pass over a table."""

    def __init__(self, executor: WorkExecutor | None = None, serializer: CompactionTaskSerializer | None = None) -> None:
        """Initialize the compactor.

        Args:
            executor: Distributes units across workers. Defaults to a local thread pool.
            serializer: Codec for unaware-bucket compaction tasks.
        """
        self._executor = executor or LocalExecutor()
        self._serializer = serializer or CompactionTaskSerializer()

    def plan(self, table: FileStoreTable, request: CompactRequest) -> list[Unit]:
        """Decompose a compaction call into units without running it.

        Sort compaction is not decomposed and plans no units.
        """
        if request.order_type is not OrderType.NONE:
            return []
        predicate = request.partition_filter.bind(table.partition_keys) if request.partition_filter else None
        return decompose(table, predicate, self._serializer)

    def compact_table(
        self,
        table: FileStoreTable,
        partitions: str | None = None,
        order_strategy: str | None = None,
        order_by: str | None = None,
    ) -> CompactionReport:
        """Validate the arguments and compact a table.

        Args:
            table: Table to compact.
            partitions: Optional partition filter, e.g. ``"dt=2024-01-01;dt=2024-01-02"``.
            order_strategy: ``none`` (default), ``order``, ``zorder`` or ``hilbert``.
            order_by: Comma-separated sort columns.

        Returns:
            CompactionReport describing the committed change.
        """
        return self.run(table, CompactRequest.parse(partitions, order_strategy, order_by))

    def run(self, table: FileStoreTable, request: CompactRequest) -> CompactionReport:
        """Compact a table for an already validated request.

        Raises:
            BucketkeeperError: On any failure; the table is then left unchanged.
        """
        start_time = time.time()
        table = table.copy({WRITE_ONLY: "false"})
        bucket_mode = classify_bucket_mode(table)

        report = CompactionReport(
            table_name=table.name,
            status=CompactionStatus.IN_PROGRESS,
            order_type=request.order_type,
            bucket_mode=bucket_mode,
            partitions=request.partitions,
        )
        logger.info(
            "Starting compaction for %s (bucket_mode=%s, order=%s, partitions=%s)",
            table.name,
            bucket_mode.value,
            request.order_type.value,
            request.partitions,
        )

        try:
            if request.order_type is OrderType.NONE:
                self._compact(table, request, report)
            else:
                report.snapshot_id = sort_compact(table, request.order_type, request.order_by, request.partition_filter)
                report.status = CompactionStatus.COMPLETED
        except Exception:
            report.status = CompactionStatus.FAILED
            logger.exception("Compaction failed for %s", table.name)
            raise
        finally:
            report.duration_seconds = time.time() - start_time

        logger.info("Compaction %s for %s", report.status.value, table.name)
        return report

    def _compact(self, table: FileStoreTable, request: CompactRequest, report: CompactionReport) -> None:
        """Plan, distribute and commit a bucket-level compaction."""
        units = self.plan(table, request)
        report.units_planned = len(units)
        if not units:
            logger.info("No compaction units for %s, nothing to do", table.name)
            report.status = CompactionStatus.SKIPPED
            return

        commit_user = new_commit_user()
        report.commit_user = commit_user
        worker = CompactionWorker(table, commit_user, report.bucket_mode, self._serializer)
        messages = self._executor.map_partitions(units, worker)

        report.snapshot_id = commit_messages(table, commit_user, messages)
        committed = [m for m in messages if not m.is_empty]
        report.fragments_committed = len(committed) if report.snapshot_id is not None else 0
        report.files_before = sum(len(m.compact_before) for m in committed)
        report.files_after = sum(len(m.compact_after) for m in committed)
        report.status = CompactionStatus.COMPLETED if report.snapshot_id is not None else CompactionStatus.SKIPPED


class CompactProcedure:
    """The compact call surface::

        compact(table => 'db.tbl', [partitions => 'p1;p2'], [order_strategy => 'xxx'], [order_by => 'xxx'])
    """

    def __init__(self, catalog: Catalog, compactor: Compactor | None = None) -> None:
        self._catalog = catalog
        self._compactor = compactor or Compactor()

    def call(
        self,
        table: str,
        partitions: str | None = None,
        order_strategy: str | None = None,
        order_by: str | None = None,
    ) -> bool:
        """Run the compaction and return True once it is committed (or a no-op).

        Argument errors are raised before the table is even resolved.
        """
        if _blank(table):
            msg = "Parameter 'table' is required"
            raise InvalidArgumentError(msg)
        request = CompactRequest.parse(partitions, order_strategy, order_by)
        handle = self._catalog.get_table(table.strip())
        self._compactor.run(handle, request)
        return True
