"""Sort compaction: rewrite an unaware-bucket table in a new row order."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from bucketkeeper.errors import UnsupportedConfigurationError
from bucketkeeper.models import BucketMode

if TYPE_CHECKING:
    from bucketkeeper.core.partitions import PartitionFilter
    from bucketkeeper.models import OrderType
    from bucketkeeper.table.base import FileStoreTable

logger = logging.getLogger(__name__)


def sort_compact(
    table: FileStoreTable,
    order_type: OrderType,
    columns: Sequence[str],
    partition_filter: PartitionFilter | None = None,
) -> int | None:
    """Read, sort and dynamically overwrite the selected partitions in one commit.

    Args:
        table: Unaware-bucket table.
        order_type: Sort strategy.
        columns: Sort columns.
        partition_filter: Restricts both the rows read and therefore the partitions replaced.

    Returns:
        The new snapshot id, or None if no rows were selected or the backend does not report one.

    Raises:
        UnsupportedConfigurationError: If the table is not an unaware-bucket table.
    """
    if table.bucket_mode is not BucketMode.UNAWARE:
        msg = (
            f"Compaction with order_strategy '{order_type.value}' only supports unaware-bucket tables, "
            f"{table.name} uses {table.bucket_mode.value} buckets"
        )
        raise UnsupportedConfigurationError(msg)

    if partition_filter is not None:
        logger.info("Sort compacting %s where %s", table.name, partition_filter.to_where())
    else:
        logger.info("Sort compacting all partitions of %s", table.name)

    rewriter = table.new_row_rewriter()
    rows = rewriter.read(partition_filter)
    rows = rewriter.sort(rows, order_type, list(columns))
    snapshot_id = rewriter.overwrite(rows)
    logger.info("Sort compaction of %s by %s(%s) committed snapshot %s", table.name, order_type.value, ",".join(columns), snapshot_id)
    return snapshot_id
