"""Exception hierarchy for Bucketkeeper."""

from __future__ import annotations


class BucketkeeperError(Exception):
    """Base error for bucketkeeper."""


class InvalidArgumentError(BucketkeeperError, ValueError):
    """Raised when procedure arguments are rejected before any work starts."""


class UnsupportedConfigurationError(BucketkeeperError):
    """Raised when a bucket mode / order strategy combination is not supported."""


class TaskSerializationError(BucketkeeperError):
    """Raised when a compaction task cannot be encoded or decoded."""


class WorkerExecutionError(BucketkeeperError):
    """Raised when a worker fails while compacting its units."""


class CommitFailedError(BucketkeeperError):
    """Raised when the final atomic commit fails."""


class CommitConflictError(CommitFailedError):
    """Raised when a commit touches files that are no longer in the latest snapshot."""


class TableNotFoundError(BucketkeeperError):
    """Raised when a catalog cannot resolve a table identifier."""
