"""Reporting module for compaction plans and results."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import TYPE_CHECKING

from bucketkeeper.models import AssignedBucket, PlannedTask

if TYPE_CHECKING:
    from bucketkeeper.models import CompactionReport, Unit
    from bucketkeeper.table.base import FileStoreTable

logger = logging.getLogger(__name__)


def _format_partition(partition_keys: Sequence[str], partition: tuple) -> str:
    if not partition_keys:
        return "<unpartitioned>"
    return "/".join(f"{k}={v}" for k, v in zip(partition_keys, partition))


def print_plan_report(table: FileStoreTable, units: Sequence[Unit]) -> str:
    """Generate a human-readable report of the units a compaction would run.

    Args:
        table: Table being planned.
        units: Units returned by the planner.

    Returns:
        Formatted report string.
    """
    lines = [
        f"{'=' * 60}",
        f"Compaction Plan: {table.name}",
        f"{'=' * 60}",
        f"  Bucket mode:     {table.bucket_mode.value}",
        f"  Units:           {len(units):,}",
    ]

    buckets = [u for u in units if isinstance(u, AssignedBucket)]
    if buckets:
        per_partition = Counter(u.partition for u in buckets)
        lines.append("")
        lines.append("  Buckets to compact:")
        for partition, count in per_partition.items():
            lines.append(f"    - {_format_partition(table.partition_keys, partition)}: {count} bucket(s)")

    tasks = [u for u in units if isinstance(u, PlannedTask)]
    if tasks:
        lines.append(f"  Encoded tasks:   {len(tasks):,} ({sum(len(t.payload) for t in tasks):,} bytes)")

    lines.append("")
    report = "\n".join(lines)
    logger.info("\n%s", report)
    return report


def print_compaction_report(report: CompactionReport) -> str:
    """Generate a human-readable compaction report.

    Args:
        report: Compaction report.

    Returns:
        Formatted report string.
    """
    lines = [
        f"{'=' * 60}",
        f"Compaction Report: {report.table_name}",
        f"{'=' * 60}",
        f"  Status:          {report.status.value}",
        f"  Strategy:        {report.order_type.value}",
        f"  Bucket mode:     {report.bucket_mode.value if report.bucket_mode else 'unknown'}",
        f"  Duration:        {report.duration_seconds:.1f}s",
    ]

    if report.partitions:
        lines.append(f"  Partitions:      {report.partitions}")

    if report.units_planned > 0:
        lines.extend(
            [
                "",
                f"  Units planned:   {report.units_planned:,}",
                f"  Fragments:       {report.fragments_committed:,}",
                f"  Files replaced:  {report.files_before:,} -> {report.files_after:,}",
            ]
        )

    if report.snapshot_id is not None:
        lines.extend(["", f"  Snapshot:        {report.snapshot_id}"])
    if report.commit_user:
        lines.append(f"  Commit user:     {report.commit_user}")

    lines.append("")
    report_str = "\n".join(lines)
    logger.info("\n%s", report_str)
    return report_str
