from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

ARRAY_WRAPPER_BYTES = 2
SEPARATOR_BYTES = 1


class Batch(BaseModel):
    """Size-bounded group of records shipped as one JSON-array style put."""

    model_config = ConfigDict(frozen=True)

    index: int
    records: tuple[bytes, ...]
    size_bytes: int

    @property
    def record_count(self) -> int:
        return len(self.records)

    def framed(self) -> bytes:
        return b"[" + b",".join(self.records) + b"]"


class ResolvedKeys(BaseModel):
    model_config = ConfigDict(frozen=True)

    partition_key: str
    explicit_hash_key: str | None = None


class PutRecordAck(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_index: int
    shard_id: str
    sequence_number: str
    record_count: int
    payload_bytes: int


class WriteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    acks: tuple[PutRecordAck, ...] = Field(default_factory=tuple)

    @property
    def batch_count(self) -> int:
        return len(self.acks)

    @property
    def record_count(self) -> int:
        return sum(ack.record_count for ack in self.acks)
