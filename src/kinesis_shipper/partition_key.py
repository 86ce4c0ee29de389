from __future__ import annotations

import hashlib
import json
import uuid
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from kinesis_shipper.errors import KeyResolutionError
from kinesis_shipper.expressions import KeyExpression, to_text
from kinesis_shipper.models import Batch, ResolvedKeys

PARTITION_KEY_MAX_LEN = 256
EXPLICIT_HASH_KEY_MAX = (1 << 128) - 1


class _Strategy(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class RandomKey(_Strategy):
    """Fresh UUID4 per resolution; ignores the context."""

    kind: Literal["random"] = "random"


class FieldKey(_Strategy):
    """Top-level field of the context, optionally passed through an expression."""

    kind: Literal["field"] = "field"
    field: str = Field(min_length=1)
    expression: KeyExpression | None = None


class ExpressionKey(_Strategy):
    """Expression applied to the whole context."""

    kind: Literal["expression"] = "expression"
    expression: KeyExpression


class AbsentKey(_Strategy):
    kind: Literal["absent"] = "absent"


KeyStrategy = Annotated[
    Union[RandomKey, FieldKey, ExpressionKey, AbsentKey],
    Field(discriminator="kind"),
]


def decode_context(record: bytes) -> Any:
    """Best-effort view of a record used as the key context for its batch."""
    normalized = record.rstrip(b"\n")
    try:
        decoded = json.loads(normalized)
    except (json.JSONDecodeError, UnicodeDecodeError):
        decoded = None

    if isinstance(decoded, (dict, list)):
        return decoded

    try:
        return normalized.decode("utf-8")
    except UnicodeDecodeError:
        return normalized


def _apply(strategy: KeyStrategy, context: Any) -> str | None:
    if isinstance(strategy, AbsentKey):
        return None

    if isinstance(strategy, RandomKey):
        return str(uuid.uuid4())

    if isinstance(strategy, ExpressionKey):
        return strategy.expression(context)

    if isinstance(strategy, FieldKey):
        if not isinstance(context, Mapping):
            raise KeyResolutionError(
                f"Cannot extract field {strategy.field!r} from a non-object record"
            )
        if strategy.field not in context:
            raise KeyResolutionError(f"Field {strategy.field!r} is missing from the record")

        value = context[strategy.field]
        if strategy.expression is not None:
            return strategy.expression(value)
        return to_text(value)

    raise KeyResolutionError(f"Unsupported key strategy: {strategy!r}")


def normalize_partition_key(candidate: str) -> str:
    if not candidate:
        return "0"

    if len(candidate) <= PARTITION_KEY_MAX_LEN:
        return candidate

    return hashlib.sha256(candidate.encode("utf-8")).hexdigest()


def validate_explicit_hash_key(candidate: str) -> str:
    normalized = candidate.strip()
    if not (normalized.isascii() and normalized.isdigit()):
        raise KeyResolutionError(
            f"Explicit hash key must be a decimal integer, got {candidate!r}"
        )

    if int(normalized) > EXPLICIT_HASH_KEY_MAX:
        raise KeyResolutionError("Explicit hash key must be between 0 and 2**128 - 1")

    return str(int(normalized))


class KeyResolver:
    """Resolves the partition key and optional explicit hash key of a batch."""

    def __init__(
        self,
        *,
        partition_key: KeyStrategy,
        explicit_hash_key: KeyStrategy | None = None,
        legacy_random_keys: bool = False,
    ) -> None:
        if isinstance(partition_key, AbsentKey):
            raise ValueError("A partition key strategy is required")

        self._partition_key = partition_key
        self._explicit_hash_key = explicit_hash_key or AbsentKey()
        self._legacy_random_keys = legacy_random_keys

    @property
    def partition_key_strategy(self) -> KeyStrategy:
        return self._partition_key

    @property
    def explicit_hash_key_strategy(self) -> KeyStrategy:
        return self._explicit_hash_key

    def resolve(self, context: Any) -> ResolvedKeys:
        if self._legacy_random_keys:
            return ResolvedKeys(partition_key=str(uuid.uuid4()))

        partition_key = _apply(self._partition_key, context)
        explicit_hash_key = _apply(self._explicit_hash_key, context)

        return ResolvedKeys(
            partition_key=normalize_partition_key(partition_key or ""),
            explicit_hash_key=(
                validate_explicit_hash_key(explicit_hash_key)
                if explicit_hash_key is not None
                else None
            ),
        )

    def resolve_batch(self, batch: Batch) -> ResolvedKeys:
        context = decode_context(batch.records[0]) if batch.records else None
        try:
            return self.resolve(context)
        except KeyResolutionError as exc:
            raise KeyResolutionError(f"Batch {batch.index}: {exc}") from exc
