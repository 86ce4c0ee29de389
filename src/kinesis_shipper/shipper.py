from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from kinesis_shipper.batching import BatchPacker
from kinesis_shipper.config import EngineConfig, build_engine_config
from kinesis_shipper.errors import KeyResolutionError
from kinesis_shipper.kinesis import (
    KinesisDelivery,
    StreamClient,
    StreamDescription,
    build_client_options,
    check_connectivity,
    create_kinesis_client,
)
from kinesis_shipper.models import Batch, PutRecordAck, ResolvedKeys, WriteResult
from kinesis_shipper.settings import Settings

LOGGER = logging.getLogger(__name__)


class KinesisShipper:
    """Host-facing surface: ``start()`` once, then ``write(chunk)`` per buffered chunk.

    Every error from ``write`` propagates so the host can retry the whole
    chunk. Batches already delivered before a failure are not rolled back.
    """

    def __init__(self, config: EngineConfig, *, client: StreamClient | None = None) -> None:
        self._config = config
        self._client = client
        self._packer = BatchPacker(chunk_size=config.chunk_size)
        self._resolver = config.key_resolver()
        self._delivery: KinesisDelivery | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: StreamClient | None = None,
    ) -> KinesisShipper:
        return cls(build_engine_config(settings), client=client)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def started(self) -> bool:
        return self._delivery is not None

    def start(self) -> StreamDescription:
        target = self._config.target
        if self._client is None:
            options = build_client_options(target)
            LOGGER.info(
                "kinesis_client_create",
                extra={
                    "region": options.region_name,
                    "static_credentials": options.has_static_credentials,
                    "endpoint_url": options.endpoint_url,
                },
            )
            self._client = create_kinesis_client(options)

        description = check_connectivity(self._client, stream_name=target.stream_name)
        self._delivery = KinesisDelivery(
            client=self._client,
            stream_name=target.stream_name,
            payload_encoding=self._config.payload_encoding,
        )
        return description

    async def write(self, chunk: Iterable[bytes | str]) -> WriteResult:
        if self._delivery is None:
            raise RuntimeError("KinesisShipper.start() must be called before write()")

        batches = self._packer.pack(chunk)
        if self._config.order_events:
            acks = await self._write_ordered(self._delivery, batches)
        else:
            acks = await self._write_concurrent(self._delivery, list(batches))

        result = WriteResult(acks=tuple(acks))
        LOGGER.info(
            "chunk_shipped",
            extra={
                "batch_count": result.batch_count,
                "record_count": result.record_count,
                "ordered": self._config.order_events,
            },
        )
        return result

    def _resolve_keys(self, batch: Batch) -> ResolvedKeys:
        try:
            return self._resolver.resolve_batch(batch)
        except KeyResolutionError:
            LOGGER.error(
                "key_resolution_failed",
                extra={"batch_index": batch.index, "record_count": batch.record_count},
            )
            raise

    async def _write_ordered(
        self,
        delivery: KinesisDelivery,
        batches: Iterable[Batch],
    ) -> list[PutRecordAck]:
        acks: list[PutRecordAck] = []
        for batch in batches:
            keys = self._resolve_keys(batch)
            acks.append(await delivery.deliver_async(batch, keys))
        return acks

    async def _write_concurrent(
        self,
        delivery: KinesisDelivery,
        batches: Sequence[Batch],
    ) -> list[PutRecordAck]:
        # Resolve every key first so a bad record aborts before anything is sent.
        keyed = [(batch, self._resolve_keys(batch)) for batch in batches]
        semaphore = asyncio.Semaphore(self._config.max_concurrent_puts)

        async def send(batch: Batch, keys: ResolvedKeys) -> PutRecordAck:
            async with semaphore:
                return await delivery.deliver_async(batch, keys)

        results = await asyncio.gather(
            *(send(batch, keys) for batch, keys in keyed),
            return_exceptions=True,
        )

        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            LOGGER.error(
                "chunk_delivery_failed",
                extra={"failed_batches": len(failures), "batch_count": len(results)},
            )
            raise failures[0]

        return [result for result in results if isinstance(result, PutRecordAck)]
