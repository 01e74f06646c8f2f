"""Folds worker commit messages into one atomic commit."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import TYPE_CHECKING

from bucketkeeper.errors import CommitFailedError

if TYPE_CHECKING:
    from bucketkeeper.models import CommitMessage
    from bucketkeeper.table.base import FileStoreTable

logger = logging.getLogger(__name__)


def new_commit_user() -> str:
    """Fresh commit identity for one job, unique across concurrent jobs."""
    return str(uuid.uuid4())


def commit_messages(table: FileStoreTable, commit_user: str, messages: Sequence[CommitMessage]) -> int | None:
    """Commit all messages of a job as a single snapshot.

    Args:
        table: Table being compacted.
        commit_user: The job's commit identity.
        messages: Every message returned by every worker.

    Returns:
        The new snapshot id, or None if there was nothing to commit.

    Raises:
        CommitFailedError: If the commit fails; none of the messages is durable.
    """
    messages = [m for m in messages if not m.is_empty]
    if not messages:
        logger.info("Nothing to commit for %s", table.name)
        return None

    logger.info("Committing %d message(s) to %s as %s", len(messages), table.name, commit_user)
    try:
        with table.new_commit(commit_user) as commit:
            snapshot_id = commit.commit(messages)
    except CommitFailedError:
        logger.exception("Commit failed for %s", table.name)
        raise
    except Exception as e:
        logger.exception("Commit failed for %s", table.name)
        msg = f"Commit of {len(messages)} message(s) to {table.name} failed: {e}"
        raise CommitFailedError(msg) from e

    logger.info("Committed snapshot %s for %s", snapshot_id, table.name)
    return snapshot_id
