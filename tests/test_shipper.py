from __future__ import annotations

import asyncio
import base64
import threading
import time
from typing import Any

import pytest

from kinesis_shipper.errors import (
    ConfigurationError,
    ConnectivityError,
    DeliveryError,
    KeyResolutionError,
)
from kinesis_shipper.settings import Settings
from kinesis_shipper.shipper import KinesisShipper


class _AwsLikeException(Exception):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(message)
        self.response = {"Error": {"Code": code, "Message": message}}


class _RecordingClient:
    """Thread-safe stub that acks every put, optionally failing some batches."""

    def __init__(
        self,
        *,
        fail_on: set[int] | None = None,
        always_fail: bool = False,
        delay_s: float = 0.0,
    ) -> None:
        self._fail_on = fail_on or set()
        self._always_fail = always_fail
        self._delay_s = delay_s
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []
        self.max_inflight = 0
        self._inflight = 0

    def put_record(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            call_index = len(self.calls)
            self.calls.append(kwargs)
            self._inflight += 1
            self.max_inflight = max(self.max_inflight, self._inflight)
        try:
            if self._delay_s:
                time.sleep(self._delay_s)
            if self._always_fail or call_index in self._fail_on:
                raise _AwsLikeException(
                    code="ProvisionedThroughputExceededException",
                    message="Rate exceeded for shard",
                )
            return {"ShardId": "shardId-000000000000", "SequenceNumber": str(call_index)}
        finally:
            with self._lock:
                self._inflight -= 1

    def describe_stream(self, *, StreamName: str) -> dict[str, Any]:
        return {"StreamDescription": {"StreamName": StreamName, "StreamStatus": "ACTIVE"}}

    def payloads(self) -> list[bytes]:
        return [base64.b64decode(call["Data"]) for call in self.calls]


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "region": "us-west-1",
        "stream_name": "log-stream",
        "random_partition_key": True,
        "chunk_size": 10,
    }
    values.update(overrides)
    return Settings(**values)


def _started(client: Any, **overrides: Any) -> KinesisShipper:
    shipper = KinesisShipper.from_settings(_settings(**overrides), client=client)
    shipper.start()
    return shipper


def test_ordered_write_delivers_batches_in_pack_order() -> None:
    client = _RecordingClient()
    shipper = _started(client, order_events=True)

    result = asyncio.run(shipper.write([b"aaa", b"bbb", b"ccc", b"ddd", b"eee"]))

    assert client.payloads() == [b"[aaa,bbb]", b"[ccc,ddd]", b"[eee]"]
    assert result.batch_count == 3
    assert result.record_count == 5
    assert [ack.batch_index for ack in result.acks] == [0, 1, 2]
    assert client.max_inflight == 1


def test_unordered_write_attempts_every_batch_concurrently() -> None:
    client = _RecordingClient(delay_s=0.05)
    shipper = _started(client, order_events=False, max_concurrent_puts=4)

    records = [b"r%02d" % i for i in range(8)]
    result = asyncio.run(shipper.write(records))

    assert sorted(client.payloads()) == sorted(
        [b"[r00,r01]", b"[r02,r03]", b"[r04,r05]", b"[r06,r07]"]
    )
    assert [ack.batch_index for ack in result.acks] == [0, 1, 2, 3]
    assert 1 < client.max_inflight <= 4


def test_always_failing_client_surfaces_delivery_error() -> None:
    client = _RecordingClient(always_fail=True)
    shipper = _started(client, order_events=True)

    with pytest.raises(DeliveryError):
        asyncio.run(shipper.write([b"aaa", b"bbb", b"ccc"]))

    assert len(client.calls) == 1


def test_unordered_failure_still_attempts_remaining_batches() -> None:
    client = _RecordingClient(fail_on={0})
    shipper = _started(client, order_events=False, max_concurrent_puts=1)

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(shipper.write([b"aaa", b"bbb", b"ccc", b"ddd", b"eee"]))

    assert exc_info.value.batch_index == 0
    assert len(client.calls) == 3


def test_strategy_partition_key_is_honored_by_default() -> None:
    client = _RecordingClient()
    shipper = _started(
        client,
        random_partition_key=False,
        partition_key="user",
        explicit_hash_key_expr="get:slot",
        chunk_size=1000,
        order_events=True,
    )

    asyncio.run(shipper.write([b'{"user":"u1","slot":7}', b'{"user":"u2","slot":8}']))

    assert client.calls[0]["PartitionKey"] == "u1"
    assert client.calls[0]["ExplicitHashKey"] == "7"


def test_legacy_random_keys_pin_always_random_behavior() -> None:
    client = _RecordingClient()
    shipper = _started(
        client,
        random_partition_key=False,
        partition_key="user",
        explicit_hash_key="slot",
        legacy_random_keys=True,
        chunk_size=1000,
    )

    asyncio.run(shipper.write([b'{"user":"u1","slot":7}']))

    assert client.calls[0]["PartitionKey"] != "u1"
    assert "ExplicitHashKey" not in client.calls[0]


def test_ordered_key_failure_aborts_remaining_batches() -> None:
    client = _RecordingClient()
    shipper = _started(
        client,
        random_partition_key=False,
        partition_key="user",
        chunk_size=20,
        order_events=True,
    )

    with pytest.raises(KeyResolutionError):
        asyncio.run(shipper.write([b'{"user":"u1"}', b'{"nope":1}', b'{"user":"u3"}']))

    assert len(client.calls) == 1


def test_unordered_key_failure_sends_nothing() -> None:
    client = _RecordingClient()
    shipper = _started(
        client,
        random_partition_key=False,
        partition_key="user",
        chunk_size=20,
    )

    with pytest.raises(KeyResolutionError):
        asyncio.run(shipper.write([b'{"user":"u1"}', b'{"nope":1}']))

    assert client.calls == []


def test_empty_chunk_sends_nothing() -> None:
    client = _RecordingClient()
    shipper = _started(client)

    result = asyncio.run(shipper.write([]))

    assert result.batch_count == 0
    assert client.calls == []


def test_write_before_start_is_rejected() -> None:
    shipper = KinesisShipper.from_settings(_settings(), client=_RecordingClient())

    assert shipper.started is False
    with pytest.raises(RuntimeError, match="start"):
        asyncio.run(shipper.write([b"x"]))


def test_start_fails_when_stream_is_missing() -> None:
    class _MissingStreamClient(_RecordingClient):
        def describe_stream(self, *, StreamName: str) -> dict[str, Any]:
            raise _AwsLikeException(code="ResourceNotFoundException", message="not found")

    shipper = KinesisShipper.from_settings(_settings(), client=_MissingStreamClient())

    with pytest.raises(ConnectivityError):
        shipper.start()
    assert shipper.started is False


def test_parallel_workers_disable_ordering_without_error() -> None:
    shipper = KinesisShipper.from_settings(
        _settings(order_events=True, num_threads=2),
        client=_RecordingClient(),
    )

    assert shipper.config.order_events is False


def test_blank_partition_key_fails_with_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        KinesisShipper.from_settings(
            _settings(random_partition_key=False, partition_key="   "),
            client=_RecordingClient(),
        )
