"""Row orderings used by sort compaction: lexical, Z-order and Hilbert curves.

Space-filling curves are computed over per-column dense ranks, so columns of
any comparable type contribute equally regardless of their value range.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from bucketkeeper.errors import InvalidArgumentError
from bucketkeeper.models import OrderType


def _null_first(value: Any) -> tuple[bool, Any]:
    return (value is not None, value)


def dense_ranks(values: Sequence[Any]) -> list[int]:
    """Dense rank (0-based) of each value, nulls ranked first."""
    distinct = sorted(set(values), key=_null_first)
    index = {v: i for i, v in enumerate(distinct)}
    return [index[v] for v in values]


def bits_for(max_value: int) -> int:
    return max(1, int(max_value).bit_length())


def z_value(coords: Sequence[int], bits: int) -> int:
    """Interleave the bits of the coordinates, most significant first."""
    z = 0
    for bit in range(bits - 1, -1, -1):
        for c in coords:
            z = (z << 1) | ((c >> bit) & 1)
    return z


def hilbert_index(coords: Sequence[int], bits: int) -> int:
    """Position of a point along an n-dimensional Hilbert curve.

    Uses Skilling's transpose algorithm ("Programming the Hilbert curve", 2004).
    """
    x = list(coords)
    n = len(x)
    if n == 1:
        return x[0]
    top = 1 << (bits - 1)

    q = top
    while q > 1:
        p = q - 1
        for i in range(n):
            if x[i] & q:
                x[0] ^= p
            else:
                t = (x[0] ^ x[i]) & p
                x[0] ^= t
                x[i] ^= t
        q >>= 1

    for i in range(1, n):
        x[i] ^= x[i - 1]
    t = 0
    q = top
    while q > 1:
        if x[n - 1] & q:
            t ^= q - 1
        q >>= 1
    for i in range(n):
        x[i] ^= t

    return z_value(x, bits)


def curve_value(order_type: OrderType, coords: Sequence[int], bits: int) -> int:
    if order_type is OrderType.ZORDER:
        return z_value(coords, bits)
    if order_type is OrderType.HILBERT:
        return hilbert_index(coords, bits)
    msg = f"{order_type.value} is not a space-filling curve order"
    raise InvalidArgumentError(msg)


def sort_rows(rows: Iterable[Mapping[str, Any]], order_type: OrderType, columns: Sequence[str]) -> list[Mapping[str, Any]]:
    """Sort rows by the given strategy.

    Args:
        rows: Rows as column-name mappings.
        order_type: Sort strategy.
        columns: Sort columns, in priority order.

    Raises:
        InvalidArgumentError: If columns are missing for a sorting strategy.
    """
    rows = list(rows)
    if order_type is OrderType.NONE:
        return rows
    if not columns:
        msg = f"order_strategy '{order_type.value}' requires order_by columns"
        raise InvalidArgumentError(msg)

    if order_type is OrderType.ORDER:
        return sorted(rows, key=lambda r: tuple(_null_first(r.get(c)) for c in columns))

    ranks = [dense_ranks([r.get(c) for r in rows]) for c in columns]
    bits = bits_for(max((max(col, default=0) for col in ranks), default=0))
    keys = [curve_value(order_type, [col[i] for col in ranks], bits) for i in range(len(rows))]
    order = sorted(range(len(rows)), key=keys.__getitem__)
    return [rows[i] for i in order]
