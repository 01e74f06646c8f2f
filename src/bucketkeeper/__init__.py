"""Bucketkeeper - distributed compaction for partitioned, bucketed tables."""

__version__ = "0.1.0"
