from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Iterator
from typing import BinaryIO

from kinesis_shipper.batching import format_record
from kinesis_shipper.errors import ShipperError
from kinesis_shipper.settings import Settings
from kinesis_shipper.shipper import KinesisShipper

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def read_chunks(
    stream: BinaryIO,
    *,
    chunk_records: int,
    message_key: str | None = None,
) -> Iterator[list[bytes]]:
    """Group line-delimited records into host chunks, skipping blank lines.

    With ``message_key`` set, each line is a JSON object and only that field
    is shipped.
    """
    if chunk_records <= 0:
        raise ValueError("chunk_records must be > 0")

    chunk: list[bytes] = []
    for line in stream:
        record = line.rstrip(b"\r\n")
        if not record:
            continue
        if message_key is not None:
            record = format_record(json.loads(record), message_key=message_key)
        chunk.append(record)
        if len(chunk) >= chunk_records:
            yield chunk
            chunk = []

    if chunk:
        yield chunk


async def ship_stream(
    shipper: KinesisShipper,
    stream: BinaryIO,
    *,
    chunk_records: int,
    message_key: str | None = None,
) -> int:
    chunks = read_chunks(stream, chunk_records=chunk_records, message_key=message_key)
    shipped = 0
    while True:
        chunk = await asyncio.to_thread(next, chunks, None)
        if chunk is None:
            return shipped

        result = await shipper.write(chunk)
        shipped += result.record_count


async def run(stream: BinaryIO | None = None) -> None:
    configure_logging()
    settings = Settings()

    LOGGER.info(
        "service_start",
        extra={
            "kinesis_stream": settings.stream_name,
            "region": settings.region,
            "chunk_size": settings.chunk_size,
        },
    )

    try:
        shipper = KinesisShipper.from_settings(settings)
        shipper.start()
        shipped = await ship_stream(
            shipper,
            stream if stream is not None else sys.stdin.buffer,
            chunk_records=settings.host_chunk_records,
            message_key=settings.host_message_key,
        )
    except ShipperError:
        LOGGER.exception("service_failed")
        raise

    LOGGER.info("service_stop", extra={"records_shipped": shipped})
