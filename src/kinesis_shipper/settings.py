from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KINESIS_CHUNK = 37000


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, populate_by_name=True)

    region: str | None = Field(default=None, alias="AWS_REGION")
    stream_name: str | None = Field(default=None, alias="KINESIS_STREAM")
    aws_access_key_id: str | None = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    aws_session_token: str | None = Field(default=None, alias="AWS_SESSION_TOKEN")
    endpoint_url: str | None = Field(default=None, alias="KINESIS_ENDPOINT_URL")

    chunk_size: int = Field(default=DEFAULT_KINESIS_CHUNK, alias="KINESIS_CHUNK")

    random_partition_key: bool = Field(default=False, alias="RANDOM_PARTITION_KEY")
    partition_key: str | None = Field(default=None, alias="PARTITION_KEY")
    partition_key_expr: str | None = Field(default=None, alias="PARTITION_KEY_EXPR")
    explicit_hash_key: str | None = Field(default=None, alias="EXPLICIT_HASH_KEY")
    explicit_hash_key_expr: str | None = Field(default=None, alias="EXPLICIT_HASH_KEY_EXPR")
    legacy_random_keys: bool = Field(default=False, alias="LEGACY_RANDOM_KEYS")

    order_events: bool = Field(default=False, alias="ORDER_EVENTS")
    payload_encoding: Literal["base64", "raw"] = Field(default="base64", alias="PAYLOAD_ENCODING")
    max_concurrent_puts: int = Field(default=8, alias="MAX_CONCURRENT_PUTS")

    debug: bool = Field(default=False, alias="DEBUG")
    num_threads: int = Field(default=1, alias="NUM_THREADS")
    detach_process: bool = Field(default=False, alias="DETACH_PROCESS")

    host_chunk_records: int = Field(default=500, alias="HOST_CHUNK_RECORDS")
    host_message_key: str | None = Field(default=None, alias="HOST_MESSAGE_KEY")

    @field_validator("chunk_size")
    @classmethod
    def _validate_chunk_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("KINESIS_CHUNK must be > 0")
        return value

    @field_validator("max_concurrent_puts")
    @classmethod
    def _validate_max_concurrent_puts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MAX_CONCURRENT_PUTS must be >= 1")
        return value

    @field_validator("num_threads")
    @classmethod
    def _validate_num_threads(cls, value: int) -> int:
        if value < 1:
            raise ValueError("NUM_THREADS must be >= 1")
        return value

    @field_validator("host_chunk_records")
    @classmethod
    def _validate_host_chunk_records(cls, value: int) -> int:
        if value < 1:
            raise ValueError("HOST_CHUNK_RECORDS must be >= 1")
        return value

    @property
    def parallel_mode(self) -> bool:
        return self.detach_process or self.num_threads > 1
