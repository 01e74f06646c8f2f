"""Local I/O resources owned by a single worker."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

SPARK_LOCAL_DIRS_ENV = "SPARK_LOCAL_DIRS"


def _local_dirs() -> list[str]:
    """Spark executor scratch dirs, falling back to the system temp dir."""
    value = os.environ.get(SPARK_LOCAL_DIRS_ENV, "")
    dirs = [d.strip() for d in value.split(",") if d.strip()]
    return dirs or [tempfile.gettempdir()]


class IOManager:
    """Owns private spill directories and deletes them on close."""

    def __init__(self, base_dirs: list[str] | None = None) -> None:
        self._spill_dirs: list[Path] = []
        for base in base_dirs or _local_dirs():
            Path(base).mkdir(parents=True, exist_ok=True)
            self._spill_dirs.append(Path(tempfile.mkdtemp(prefix="bucketkeeper-io-", dir=base)))
        self._closed = False
        logger.debug("IOManager created spill dirs %s", self._spill_dirs)

    @property
    def spill_dirs(self) -> list[Path]:
        return list(self._spill_dirs)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Delete the spill directories. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for path in self._spill_dirs:
            shutil.rmtree(path, ignore_errors=True)
        logger.debug("IOManager removed spill dirs %s", self._spill_dirs)

    def __enter__(self) -> IOManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_io_manager() -> IOManager:
    """Create an IOManager on the local scratch dirs of this worker."""
    return IOManager(_local_dirs())
