"""Bucket-mode classification and work decomposition."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bucketkeeper.core.codec import CompactionTaskSerializer
from bucketkeeper.errors import UnsupportedConfigurationError
from bucketkeeper.models import AssignedBucket, BucketMode, PlannedTask

if TYPE_CHECKING:
    from bucketkeeper.core.partitions import PartitionPredicate
    from bucketkeeper.models import Unit
    from bucketkeeper.table.base import FileStoreTable

logger = logging.getLogger(__name__)


def classify_bucket_mode(table: FileStoreTable) -> BucketMode:
    """Return the bucket mode that selects the decomposition strategy."""
    return table.bucket_mode


def plan_assigned_buckets(table: FileStoreTable, predicate: PartitionPredicate | None = None) -> list[AssignedBucket]:
    """Collect the distinct (partition, bucket) pairs referenced by a scan.

    Args:
        table: Fixed or dynamic bucket table.
        predicate: Optional partition predicate restricting the scan.

    Returns:
        Deduplicated units, one per existing bucket.
    """
    units = dict.fromkeys(AssignedBucket(split.partition, split.bucket) for split in table.new_scan(predicate).plan())
    logger.info("Planned %d bucket unit(s) for %s", len(units), table.name)
    return list(units)


def plan_unaware_tasks(
    table: FileStoreTable,
    predicate: PartitionPredicate | None = None,
    serializer: CompactionTaskSerializer | None = None,
) -> list[PlannedTask]:
    """Plan and encode compaction tasks for an unaware-bucket table.

    Every task is serialized here, before any worker is scheduled, so that an
    encoding failure aborts the job up front.

    Raises:
        TaskSerializationError: If a task cannot be encoded.
    """
    serializer = serializer or CompactionTaskSerializer()
    tasks = table.new_compaction_coordinator(full_rewrite=False, predicate=predicate).run()
    version = serializer.get_version()
    units = [PlannedTask(version, serializer.serialize(task, version)) for task in tasks]
    logger.info("Planned %d compaction task(s) for %s", len(units), table.name)
    return units


def decompose(
    table: FileStoreTable,
    predicate: PartitionPredicate | None = None,
    serializer: CompactionTaskSerializer | None = None,
) -> list[Unit]:
    """Split a compaction job into independent units according to the bucket mode.

    Raises:
        UnsupportedConfigurationError: For bucket modes without a decomposition strategy.
    """
    bucket_mode = classify_bucket_mode(table)
    if bucket_mode.is_assigned:
        return list(plan_assigned_buckets(table, predicate))
    if bucket_mode is BucketMode.UNAWARE:
        return list(plan_unaware_tasks(table, predicate, serializer))
    msg = f"Compaction of {bucket_mode.value} bucket tables is not supported yet ({table.name})"
    raise UnsupportedConfigurationError(msg)
