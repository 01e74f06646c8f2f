"""Per-worker execution of compaction units."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bucketkeeper.core.codec import CompactionTaskSerializer
from bucketkeeper.models import AssignedBucket, BucketMode, PlannedTask
from bucketkeeper.utils.io import create_io_manager

if TYPE_CHECKING:
    from bucketkeeper.models import CommitMessage, Unit
    from bucketkeeper.table.base import BatchWrite, FileStoreTable, StoreWrite

logger = logging.getLogger(__name__)


@contextmanager
def bucket_write_context(table: FileStoreTable, commit_user: str) -> Iterator[BatchWrite]:
    """Batch write plus local I/O manager, both closed on every exit path."""
    io_manager = create_io_manager()
    try:
        write = table.new_batch_write(commit_user).with_io_manager(io_manager)
        try:
            yield write
        finally:
            write.close()
    finally:
        io_manager.close()


@contextmanager
def store_write_context(table: FileStoreTable, commit_user: str) -> Iterator[StoreWrite]:
    """Low-level store write keyed by the job's commit identity, always closed."""
    write = table.new_store_write(commit_user)
    try:
        yield write
    finally:
        write.close()


@dataclass(frozen=True)
class CompactionWorker:
    """Compacts the slice of units assigned to one worker.

    Instances are immutable and are shipped as-is to every worker of a job, so
    all workers share the same commit identity.
    """

    table: FileStoreTable
    commit_user: str
    bucket_mode: BucketMode
    serializer: CompactionTaskSerializer = field(default_factory=CompactionTaskSerializer)

    def __call__(self, units: Iterable[Unit]) -> list[CommitMessage]:
        assigned = self.bucket_mode.is_assigned
        context = bucket_write_context if assigned else store_write_context
        messages: list[CommitMessage] = []
        processed = 0

        with context(self.table, self.commit_user) as write:
            for unit in units:
                match unit:
                    case AssignedBucket(partition=partition, bucket=bucket) if assigned:
                        write.compact(partition, bucket, full_compaction=True)
                    case PlannedTask(version=version, payload=payload) if not assigned:
                        task = self.serializer.deserialize(version, payload)
                        messages.append(task.do_compact(write))
                    case _:
                        msg = f"Unit {unit!r} cannot run on a {self.bucket_mode.value} bucket table"
                        raise TypeError(msg)
                processed += 1
            if assigned:
                messages.extend(write.prepare_commit())

        logger.debug("Worker compacted %d unit(s) into %d message(s)", processed, len(messages))
        return messages
