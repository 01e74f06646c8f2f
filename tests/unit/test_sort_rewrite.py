"""Tests for bucketkeeper.core.sort_rewrite module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from bucketkeeper.core.partitions import PartitionFilter
from bucketkeeper.core.sort_rewrite import sort_compact
from bucketkeeper.errors import UnsupportedConfigurationError
from bucketkeeper.models import BucketMode, OrderType


class TestSortCompact:
    def test_read_sort_overwrite(self):
        table = MagicMock()
        table.bucket_mode = BucketMode.UNAWARE
        rewriter = table.new_row_rewriter.return_value
        rewriter.overwrite.return_value = 12
        pf = PartitionFilter.parse("dt=2024-01-01")

        assert sort_compact(table, OrderType.ZORDER, ("a", "b"), pf) == 12

        rewriter.read.assert_called_once_with(pf)
        rewriter.sort.assert_called_once_with(rewriter.read.return_value, OrderType.ZORDER, ["a", "b"])
        rewriter.overwrite.assert_called_once_with(rewriter.sort.return_value)

    @pytest.mark.parametrize("mode", [BucketMode.FIXED, BucketMode.DYNAMIC, BucketMode.CROSS_PARTITION])
    def test_only_unaware_tables(self, mode):
        table = MagicMock()
        table.bucket_mode = mode
        with pytest.raises(UnsupportedConfigurationError, match="order_strategy 'hilbert'"):
            sort_compact(table, OrderType.HILBERT, ["a"])
        table.new_row_rewriter.assert_not_called()

    def test_memory_table_rewrite(self, unaware_table):
        old_files = set(unaware_table.files())

        snapshot_id = sort_compact(unaware_table, OrderType.HILBERT, ["a", "b"])

        assert snapshot_id == unaware_table.latest_snapshot_id()
        new_files = unaware_table.files()
        assert len(new_files) == 2
        assert old_files.isdisjoint(new_files)
        assert len(unaware_table.read_rows()) == 12
