from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from kinesis_shipper.models import ARRAY_WRAPPER_BYTES, SEPARATOR_BYTES, Batch


def encode_record(record: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(record, str):
        return record.encode("utf-8")
    if isinstance(record, (bytes, bytearray, memoryview)):
        return bytes(record)
    raise TypeError(f"Records must be bytes or str, got {type(record).__name__}")


class BatchPacker:
    """Packs records into batches whose framed size stays under ``chunk_size``.

    Every record costs its encoded length plus one separator byte. The first
    batch starts with two bytes of array framing; after a batch is sealed the
    next one starts at the cost of the record that overflowed it.
    A record that alone exceeds the threshold still gets its own batch;
    records are never split.
    """

    def __init__(self, *, chunk_size: int) -> None:
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer")

        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def pack(self, records: Iterable[bytes | str]) -> Iterator[Batch]:
        index = 0
        current: list[bytes] = []
        size_bytes = ARRAY_WRAPPER_BYTES

        for record in records:
            data = encode_record(record)
            record_bytes = len(data) + SEPARATOR_BYTES

            if current and size_bytes + record_bytes > self._chunk_size:
                yield Batch(index=index, records=tuple(current), size_bytes=size_bytes)
                index += 1
                current = [data]
                size_bytes = record_bytes
                continue

            current.append(data)
            size_bytes += record_bytes

        if current:
            yield Batch(index=index, records=tuple(current), size_bytes=size_bytes)


def format_record(record: Mapping[str, Any], *, message_key: str = "message") -> bytes:
    """Serialize one host record to the bytes that get packed into batches."""
    message = record[message_key]
    if isinstance(message, (bytes, bytearray, memoryview, str)):
        return encode_record(message)
    return json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
