"""Versioned binary codec for compaction tasks.

Encoded form: a 4-byte big-endian version header followed by the body.

* Version 1 body: UTF-8 JSON ``{"partition": [...], "files": [[name, rows, size, level], ...]}``.
* Version 2 body: packed binary, see ``_encode_v2``.

Both versions are lossless for partition values of type None, bool, int, float and str.
"""

from __future__ import annotations

import json
import struct
from typing import Any

from bucketkeeper.errors import TaskSerializationError
from bucketkeeper.models import AppendCompactionTask, DataFileMeta

_HEADER = struct.Struct(">I")
_COUNT = struct.Struct(">I")
_FILE_NUMBERS = struct.Struct(">qqi")

_TAG_NONE = 0
_TAG_BOOL = 1
_TAG_INT = 2
_TAG_FLOAT = 3
_TAG_STR = 4


class CompactionTaskSerializer:
    """Serializes AppendCompactionTask so it can be shipped to workers."""

    VERSION = 2
    SUPPORTED_VERSIONS = (1, 2)

    def get_version(self) -> int:
        return self.VERSION

    def serialize(self, task: AppendCompactionTask, version: int | None = None) -> bytes:
        """Encode a task.

        Args:
            task: Task to encode.
            version: Format version, defaults to the current one.

        Returns:
            The encoded task including its version header.

        Raises:
            TaskSerializationError: If the version is unknown or the task cannot be encoded.
        """
        version = self.VERSION if version is None else version
        if version not in self.SUPPORTED_VERSIONS:
            msg = f"Unsupported compaction task version {version}"
            raise TaskSerializationError(msg)
        try:
            body = _encode_v1(task) if version == 1 else _encode_v2(task)
        except (TypeError, ValueError, struct.error, UnicodeEncodeError) as e:
            msg = f"Failed to serialize compaction task for partition {task.partition!r}: {e}"
            raise TaskSerializationError(msg) from e
        return _HEADER.pack(version) + body

    @staticmethod
    def read_version(data: bytes) -> int:
        """Read the version header of an encoded task."""
        if len(data) < _HEADER.size:
            msg = f"Encoded compaction task too short ({len(data)} bytes)"
            raise TaskSerializationError(msg)
        return _HEADER.unpack_from(data)[0]

    def deserialize(self, version: int, data: bytes) -> AppendCompactionTask:
        """Decode a task previously produced by ``serialize``.

        Args:
            version: Version the caller expects; must match the encoded header.
            data: Encoded task.

        Raises:
            TaskSerializationError: On version mismatch or malformed data.
        """
        encoded_version = self.read_version(data)
        if encoded_version != version:
            msg = f"Compaction task version mismatch: expected {version}, found {encoded_version}"
            raise TaskSerializationError(msg)
        if version not in self.SUPPORTED_VERSIONS:
            msg = f"Unsupported compaction task version {version}"
            raise TaskSerializationError(msg)

        body = memoryview(data)[_HEADER.size :]
        try:
            return _decode_v1(bytes(body)) if version == 1 else _decode_v2(body)
        except (KeyError, IndexError, TypeError, ValueError, struct.error) as e:
            msg = f"Failed to deserialize compaction task (version {version}): {e}"
            raise TaskSerializationError(msg) from e


def _encode_v1(task: AppendCompactionTask) -> bytes:
    payload = {
        "partition": list(task.partition),
        "files": [[f.file_name, f.row_count, f.file_size, f.level] for f in task.files],
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), allow_nan=False).encode("utf-8")


def _decode_v1(body: bytes) -> AppendCompactionTask:
    payload = json.loads(body.decode("utf-8"))
    files = tuple(DataFileMeta(str(name), int(rows), int(size), int(level)) for name, rows, size, level in payload["files"])
    return AppendCompactionTask(partition=tuple(payload["partition"]), files=files)


def _pack_str(value: str) -> bytes:
    raw = value.encode("utf-8")
    return _COUNT.pack(len(raw)) + raw


def _pack_value(value: Any) -> bytes:
    if value is None:
        return bytes([_TAG_NONE])
    if isinstance(value, bool):
        return bytes([_TAG_BOOL, int(value)])
    if isinstance(value, int):
        return bytes([_TAG_INT]) + struct.pack(">q", value)
    if isinstance(value, float):
        return bytes([_TAG_FLOAT]) + struct.pack(">d", value)
    if isinstance(value, str):
        return bytes([_TAG_STR]) + _pack_str(value)
    msg = f"unsupported partition value type {type(value).__name__}"
    raise TypeError(msg)


def _encode_v2(task: AppendCompactionTask) -> bytes:
    parts = [_COUNT.pack(len(task.partition))]
    parts.extend(_pack_value(v) for v in task.partition)
    parts.append(_COUNT.pack(len(task.files)))
    for f in task.files:
        parts.append(_pack_str(f.file_name))
        parts.append(_FILE_NUMBERS.pack(f.row_count, f.file_size, f.level))
    return b"".join(parts)


class _Reader:
    def __init__(self, buf: memoryview) -> None:
        self._buf = buf
        self._pos = 0

    def take(self, size: int) -> memoryview:
        if self._pos + size > len(self._buf):
            msg = "unexpected end of data"
            raise ValueError(msg)
        chunk = self._buf[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def string(self) -> str:
        (length,) = self.unpack(_COUNT)
        return bytes(self.take(length)).decode("utf-8")

    def value(self) -> Any:
        tag = self.take(1)[0]
        if tag == _TAG_NONE:
            return None
        if tag == _TAG_BOOL:
            return bool(self.take(1)[0])
        if tag == _TAG_INT:
            return struct.unpack(">q", self.take(8))[0]
        if tag == _TAG_FLOAT:
            return struct.unpack(">d", self.take(8))[0]
        if tag == _TAG_STR:
            return self.string()
        msg = f"unknown value tag {tag}"
        raise ValueError(msg)

    def at_end(self) -> bool:
        return self._pos == len(self._buf)


def _decode_v2(body: memoryview) -> AppendCompactionTask:
    reader = _Reader(body)
    (arity,) = reader.unpack(_COUNT)
    partition = tuple(reader.value() for _ in range(arity))
    (file_count,) = reader.unpack(_COUNT)
    files = []
    for _ in range(file_count):
        name = reader.string()
        rows, size, level = reader.unpack(_FILE_NUMBERS)
        files.append(DataFileMeta(name, rows, size, level))
    if not reader.at_end():
        msg = "trailing bytes after compaction task"
        raise ValueError(msg)
    return AppendCompactionTask(partition=partition, files=tuple(files))
