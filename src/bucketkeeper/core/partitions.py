"""Partition filter parsing.

A filter string lists alternative partitions separated by ``;``. Inside one
partition, ``key=value`` pairs are separated by ``,`` or ``/``::

    "dt=2024-01-01,hh=00;dt=2024-01-02"   ->   (dt AND hh) OR (dt)
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime

from bucketkeeper.errors import InvalidArgumentError

_PAIR_SEPARATOR = re.compile(r"[,/]")


def _quote(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _invalid_value(key: str, expected: str, actual: object) -> InvalidArgumentError:
    msg = f"Partition filter value '{expected}' for '{key}' is not a valid {type(actual).__name__}"
    return InvalidArgumentError(msg)


def _convert(key: str, expected: str, actual: object) -> object:
    """Convert a filter value to the type of the value it is compared with.

    Booleans accept ``true``/``false`` in any case. Types without a conversion
    are compared by their string form.

    Raises:
        InvalidArgumentError: If the value cannot be converted.
    """
    if isinstance(actual, bool):
        lowered = expected.lower()
        if lowered not in ("true", "false"):
            raise _invalid_value(key, expected, actual)
        return lowered == "true"
    parsers = ((int, int), (float, float), (datetime, datetime.fromisoformat), (date, date.fromisoformat))
    for value_type, parse in parsers:
        if isinstance(actual, value_type):
            try:
                return parse(expected)
            except ValueError as e:
                raise _invalid_value(key, expected, actual) from e
    return expected


def _same(key: str, actual: object, expected: str) -> bool:
    if actual is None:
        return False
    converted = _convert(key, expected, actual)
    if converted is expected:
        return str(actual) == expected
    return converted == actual


@dataclass(frozen=True)
class PartitionFilter:
    """OR of partition specs, each an AND of ``key=value`` pairs."""

    groups: tuple[tuple[tuple[str, str], ...], ...]

    @classmethod
    def parse(cls, text: str | None) -> PartitionFilter | None:
        """Parse a ``"k1=v1,k2=v2;k3=v3"`` string.

        Args:
            text: Filter string. Blank or None means no filter.

        Returns:
            The parsed filter, or None for a blank string.

        Raises:
            InvalidArgumentError: If a pair is not of the form ``key=value``.
        """
        if text is None or not text.strip():
            return None

        groups = []
        for segment in text.split(";"):
            if not segment.strip():
                continue
            pairs = []
            for pair in _PAIR_SEPARATOR.split(segment):
                if not pair.strip():
                    continue
                key, sep, value = pair.partition("=")
                if not sep or not key.strip():
                    msg = f"Invalid partition spec '{pair.strip()}' in '{text}', expected key=value"
                    raise InvalidArgumentError(msg)
                pairs.append((key.strip(), value.strip()))
            if pairs:
                groups.append(tuple(pairs))

        if not groups:
            return None
        return cls(tuple(groups))

    @property
    def keys(self) -> set[str]:
        return {key for group in self.groups for key, _ in group}

    def matches(self, values: Mapping[str, object]) -> bool:
        """Whether a row (or partition) with these column values is selected.

        Filter values are converted to the type of the column value first, so
        ``hh=01`` selects ``hh=1`` and ``flag=TRUE`` selects ``flag=True``.

        Raises:
            InvalidArgumentError: If a filter value does not fit the column type.
        """
        return any(all(_same(key, values.get(key), value) for key, value in group) for group in self.groups)

    def to_where(self) -> str:
        """Render as a SQL condition: ``(k1='v1' AND k2='v2') OR (k3='v3')``."""
        clauses = []
        for group in self.groups:
            clauses.append("(" + " AND ".join(f"{key}={_quote(value)}" for key, value in group) + ")")
        return " OR ".join(clauses)

    def bind(self, partition_keys: Sequence[str]) -> PartitionPredicate:
        """Bind to a table's partition keys for use in metadata scans.

        Raises:
            InvalidArgumentError: If the filter names a column that is not a partition key.
        """
        unknown = sorted(self.keys - set(partition_keys))
        if unknown:
            msg = f"Partition filter uses non-partition column(s) {unknown}; partition keys are {list(partition_keys)}"
            raise InvalidArgumentError(msg)
        return PartitionPredicate(tuple(partition_keys), self)


@dataclass(frozen=True)
class PartitionPredicate:
    """A partition filter evaluated against partition tuples."""

    partition_keys: tuple[str, ...]
    partition_filter: PartitionFilter

    def test(self, partition: tuple) -> bool:
        return self.partition_filter.matches(dict(zip(self.partition_keys, partition)))
