from __future__ import annotations

from collections.abc import Iterator, Sequence

from .records import Chunk, Record


def _partition_by_type(records: Sequence[Record]) -> list[tuple[str, list[Record]]]:
    # dicts keep insertion order, which gives first-seen type order
    groups: dict[str, list[Record]] = {}
    for record in records:
        groups.setdefault(record.record_type, []).append(record)
    return list(groups.items())


def chunk_records(
    records: Sequence[Record],
    chunk_size: int,
    heterogeneous: bool = False,
) -> Iterator[Chunk]:
    """
    Split records into ordered, type-homogeneous chunks of at most chunk_size.

    Homogeneous mode cuts purely on size; the configuration validator has
    already guaranteed a single record type. Heterogeneous mode first
    stable-partitions by record type (first-seen order) and then cuts each
    partition, so input order is kept within a type but not across types.

    The function is pure: calling it again with the same arguments yields the
    same chunk boundaries. Empty input yields no chunks.

    Raises:
        ValueError: If chunk_size is smaller than 1
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    if heterogeneous:
        groups = _partition_by_type(records)
    elif records:
        groups = [(records[0].record_type, list(records))]
    else:
        groups = []

    index = 0
    for record_type, group in groups:
        for start in range(0, len(group), chunk_size):
            yield Chunk(
                index=index,
                record_type=record_type,
                records=list(group[start:start + chunk_size]),
            )
            index += 1
