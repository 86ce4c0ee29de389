from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from kinesis_shipper import __version__
from kinesis_shipper.errors import ConfigurationError
from kinesis_shipper.expressions import KeyExpression, compile_expression
from kinesis_shipper.partition_key import (
    AbsentKey,
    ExpressionKey,
    FieldKey,
    KeyResolver,
    KeyStrategy,
    RandomKey,
)
from kinesis_shipper.settings import Settings

LOGGER = logging.getLogger(__name__)

USER_AGENT_NAME = "kinesis-shipper"
MANDATORY_SETTINGS = ("region", "stream_name")
MISSING_STRATEGY_MESSAGE = (
    "'random_partition_key' or 'partition_key' or 'partition_key_expr' is required"
)


class StreamTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    region: str
    stream_name: str
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = Field(default=None, repr=False)
    aws_session_token: str | None = Field(default=None, repr=False)
    endpoint_url: str | None = None
    user_agent_suffix: str = f"{USER_AGENT_NAME}/{__version__}"
    debug: bool = False


class EngineConfig(BaseModel):
    """Everything the engine needs, fixed once at startup."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: StreamTarget
    chunk_size: int = Field(gt=0)
    partition_key: KeyStrategy
    explicit_hash_key: KeyStrategy = Field(default_factory=AbsentKey)
    legacy_random_keys: bool = False
    order_events: bool = False
    parallel_mode: bool = False
    payload_encoding: Literal["base64", "raw"] = "base64"
    max_concurrent_puts: int = Field(default=8, gt=0)

    def key_resolver(self) -> KeyResolver:
        return KeyResolver(
            partition_key=self.partition_key,
            explicit_hash_key=self.explicit_hash_key,
            legacy_random_keys=self.legacy_random_keys,
        )


def _is_set(value: str | None) -> bool:
    return value is not None and bool(value.strip())


def _compile(source: str | None) -> KeyExpression | None:
    if not _is_set(source):
        return None
    return compile_expression(source)


def _key_strategy(*, field: str | None, expression_source: str | None) -> KeyStrategy:
    expression = _compile(expression_source)
    field = field.strip() if field else None

    if field:
        return FieldKey(field=field, expression=expression)
    if expression is not None:
        return ExpressionKey(expression=expression)
    return AbsentKey()


def validate_settings(settings: Settings) -> None:
    for name in MANDATORY_SETTINGS:
        if not _is_set(getattr(settings, name)):
            raise ConfigurationError(f"'{name}' is required")

    if not (
        settings.random_partition_key
        or _is_set(settings.partition_key)
        or _is_set(settings.partition_key_expr)
    ):
        raise ConfigurationError(MISSING_STRATEGY_MESSAGE)

    if settings.chunk_size <= 0:
        raise ConfigurationError("'chunk_size' must be a positive integer")


def build_engine_config(settings: Settings) -> EngineConfig:
    validate_settings(settings)

    if settings.random_partition_key:
        partition_key: KeyStrategy = RandomKey()
    else:
        partition_key = _key_strategy(
            field=settings.partition_key,
            expression_source=settings.partition_key_expr,
        )
    if isinstance(partition_key, AbsentKey):
        raise ConfigurationError(MISSING_STRATEGY_MESSAGE)

    explicit_hash_key = _key_strategy(
        field=settings.explicit_hash_key,
        expression_source=settings.explicit_hash_key_expr,
    )

    order_events = settings.order_events
    if settings.parallel_mode and order_events:
        LOGGER.warning(
            "order_events_ignored",
            extra={
                "num_threads": settings.num_threads,
                "detach_process": settings.detach_process,
            },
        )
        order_events = False

    if settings.legacy_random_keys and not isinstance(partition_key, RandomKey):
        LOGGER.warning(
            "legacy_random_keys_override",
            extra={
                "partition_key_strategy": partition_key.kind,
                "explicit_hash_key_strategy": explicit_hash_key.kind,
            },
        )

    target = StreamTarget(
        region=settings.region.strip(),
        stream_name=settings.stream_name.strip(),
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        aws_session_token=settings.aws_session_token,
        endpoint_url=settings.endpoint_url,
        debug=settings.debug,
    )

    return EngineConfig(
        target=target,
        chunk_size=settings.chunk_size,
        partition_key=partition_key,
        explicit_hash_key=explicit_hash_key,
        legacy_random_keys=settings.legacy_random_keys,
        order_events=order_events,
        parallel_mode=settings.parallel_mode,
        payload_encoding=settings.payload_encoding,
        max_concurrent_puts=settings.max_concurrent_puts,
    )
