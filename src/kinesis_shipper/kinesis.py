from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Literal, Protocol

import boto3
from botocore.config import Config
from pydantic import BaseModel, ConfigDict, Field

from kinesis_shipper.config import StreamTarget
from kinesis_shipper.errors import (
    ConnectivityError,
    DeliveryError,
    extract_exception_error,
)
from kinesis_shipper.models import Batch, PutRecordAck, ResolvedKeys

LOGGER = logging.getLogger(__name__)

MAX_RECORD_BYTES = 1_048_576  # 1 MiB of data plus partition key per record
_USABLE_STREAM_STATUSES = {"ACTIVE", "UPDATING"}


class StreamClient(Protocol):
    def put_record(
        self,
        *,
        StreamName: str,
        Data: bytes,
        PartitionKey: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        ...

    def describe_stream(self, *, StreamName: str) -> dict[str, Any]:
        ...


class ClientOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    region_name: str
    user_agent_extra: str
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = Field(default=None, repr=False)
    aws_session_token: str | None = Field(default=None, repr=False)
    endpoint_url: str | None = None
    debug: bool = False

    @property
    def has_static_credentials(self) -> bool:
        return self.aws_access_key_id is not None


class StreamDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    stream_name: str
    stream_arn: str | None = None
    status: str
    shard_count: int = 0


def build_client_options(target: StreamTarget) -> ClientOptions:
    options: dict[str, Any] = {
        "region_name": target.region,
        "user_agent_extra": target.user_agent_suffix,
        "endpoint_url": target.endpoint_url,
        "debug": target.debug,
    }

    # A lone key id or secret is ignored so the default credential chain applies.
    if target.aws_access_key_id and target.aws_secret_access_key:
        options.update(
            aws_access_key_id=target.aws_access_key_id,
            aws_secret_access_key=target.aws_secret_access_key,
            aws_session_token=target.aws_session_token,
        )

    return ClientOptions(**options)


def create_kinesis_client(options: ClientOptions) -> StreamClient:
    if options.debug:
        logging.getLogger("botocore").setLevel(logging.DEBUG)

    session = boto3.session.Session(
        aws_access_key_id=options.aws_access_key_id,
        aws_secret_access_key=options.aws_secret_access_key,
        aws_session_token=options.aws_session_token,
        region_name=options.region_name,
    )
    return session.client(
        "kinesis",
        endpoint_url=options.endpoint_url,
        config=Config(user_agent_extra=options.user_agent_extra),
    )


def check_connectivity(client: StreamClient, *, stream_name: str) -> StreamDescription:
    """Describe the target stream; any failure is fatal for startup."""

    try:
        response = client.describe_stream(StreamName=stream_name)
    except Exception as exc:
        error_code, error_message = extract_exception_error(exc)
        LOGGER.error(
            "stream_connectivity_failed",
            extra={"stream_name": stream_name, "error_code": error_code},
        )
        raise ConnectivityError(
            f"Cannot reach Kinesis stream {stream_name!r}: {error_message}",
            stream_name=stream_name,
            error_code=error_code,
        ) from exc

    raw = response.get("StreamDescription") or {}
    description = StreamDescription(
        stream_name=str(raw.get("StreamName", stream_name)),
        stream_arn=raw.get("StreamARN"),
        status=str(raw.get("StreamStatus", "UNKNOWN")),
        shard_count=len(raw.get("Shards") or []),
    )
    if description.status not in _USABLE_STREAM_STATUSES:
        LOGGER.error(
            "stream_not_active",
            extra={"stream_name": stream_name, "stream_status": description.status},
        )
        raise ConnectivityError(
            f"Kinesis stream {stream_name!r} is {description.status}, expected ACTIVE",
            stream_name=stream_name,
        )

    LOGGER.info(
        "stream_connectivity_ok",
        extra={
            "stream_name": description.stream_name,
            "stream_status": description.status,
            "shard_count": description.shard_count,
        },
    )
    return description


class KinesisDelivery:
    """Sends one batch per put_record call. Never retries."""

    def __init__(
        self,
        *,
        client: StreamClient,
        stream_name: str,
        payload_encoding: Literal["base64", "raw"] = "base64",
    ) -> None:
        self._client = client
        self._stream_name = stream_name
        self._payload_encoding = payload_encoding

    @property
    def stream_name(self) -> str:
        return self._stream_name

    def encode_payload(self, batch: Batch) -> bytes:
        framed = batch.framed()
        if self._payload_encoding == "base64":
            return base64.b64encode(framed)
        return framed

    def build_request(self, batch: Batch, keys: ResolvedKeys) -> dict[str, Any]:
        request: dict[str, Any] = {
            "StreamName": self._stream_name,
            "Data": self.encode_payload(batch),
            "PartitionKey": keys.partition_key,
        }
        if keys.explicit_hash_key is not None:
            request["ExplicitHashKey"] = keys.explicit_hash_key
        return request

    def deliver(self, batch: Batch, keys: ResolvedKeys) -> PutRecordAck:
        request = self.build_request(batch, keys)
        payload_bytes = len(request["Data"])

        if payload_bytes + len(keys.partition_key.encode("utf-8")) > MAX_RECORD_BYTES:
            LOGGER.error(
                "kinesis_payload_too_large",
                extra={"batch_index": batch.index, "payload_bytes": payload_bytes},
            )
            raise DeliveryError(
                f"Batch {batch.index} payload of {payload_bytes} bytes is too large "
                f"for a single Kinesis record ({MAX_RECORD_BYTES} bytes)",
                batch_index=batch.index,
                error_code="PayloadTooLarge",
                error_message="payload too large",
            )

        try:
            response = self._client.put_record(**request)
        except Exception as exc:
            error_code, error_message = extract_exception_error(exc)
            LOGGER.error(
                "kinesis_put_record_failed",
                extra={
                    "batch_index": batch.index,
                    "record_count": batch.record_count,
                    "error_code": error_code,
                },
            )
            raise DeliveryError(
                f"put_record failed for batch {batch.index}: {error_message}",
                batch_index=batch.index,
                error_code=error_code,
                error_message=error_message,
            ) from exc

        shard_id = response.get("ShardId")
        sequence_number = response.get("SequenceNumber")
        if not shard_id or not sequence_number:
            raise DeliveryError(
                f"put_record returned no acknowledgement for batch {batch.index}",
                batch_index=batch.index,
            )

        LOGGER.debug(
            "kinesis_put_record_ok",
            extra={
                "batch_index": batch.index,
                "record_count": batch.record_count,
                "shard_id": shard_id,
            },
        )
        return PutRecordAck(
            batch_index=batch.index,
            shard_id=str(shard_id),
            sequence_number=str(sequence_number),
            record_count=batch.record_count,
            payload_bytes=payload_bytes,
        )

    async def deliver_async(self, batch: Batch, keys: ResolvedKeys) -> PutRecordAck:
        return await asyncio.to_thread(self.deliver, batch, keys)
