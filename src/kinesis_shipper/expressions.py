"""Sandboxed key expressions.

Partition and explicit hash key expressions are pipelines of pre-approved
functions, never evaluated as code::

    get:user.id | lower | sha256

Each step is ``name`` or ``name:arg[:arg]``. Steps run left to right and the
final value is rendered as text.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from kinesis_shipper.errors import ConfigurationError, KeyResolutionError

Transform = Callable[[Any], Any]

_REGISTRY: dict[str, tuple[Callable[..., Transform], int, int]] = {}


def _register(name: str, *, min_args: int = 0, max_args: int = 0) -> Callable[..., Any]:
    def decorator(factory: Callable[..., Transform]) -> Callable[..., Transform]:
        _REGISTRY[name] = (factory, min_args, max_args)
        return factory

    return decorator


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    if isinstance(value, (bool, dict, list)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


def _lookup(value: Any, part: str) -> Any:
    if isinstance(value, Mapping):
        return value[part]
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value[int(part)]
    raise TypeError(f"cannot look up {part!r} in {type(value).__name__}")


@_register("get", min_args=1, max_args=1)
def _get(path: str) -> Transform:
    parts = path.split(".")
    if not all(parts):
        raise ValueError(f"invalid path {path!r}")

    def transform(value: Any) -> Any:
        for part in parts:
            value = _lookup(value, part)
        return value

    return transform


@_register("str")
def _str() -> Transform:
    return to_text


@_register("lower")
def _lower() -> Transform:
    return lambda value: to_text(value).lower()


@_register("upper")
def _upper() -> Transform:
    return lambda value: to_text(value).upper()


@_register("strip")
def _strip() -> Transform:
    return lambda value: to_text(value).strip()


@_register("slice", min_args=1, max_args=2)
def _slice(start: str, stop: str | None = None) -> Transform:
    begin = int(start)
    end = int(stop) if stop not in (None, "") else None
    return lambda value: to_text(value)[begin:end]


@_register("prefix", min_args=1, max_args=1)
def _prefix(text: str) -> Transform:
    return lambda value: text + to_text(value)


@_register("suffix", min_args=1, max_args=1)
def _suffix(text: str) -> Transform:
    return lambda value: to_text(value) + text


@_register("default", min_args=1, max_args=1)
def _default(text: str) -> Transform:
    return lambda value: text if value is None or value == "" else value


def _digest(algorithm: str) -> Transform:
    def transform(value: Any) -> str:
        return hashlib.new(algorithm, to_text(value).encode("utf-8")).hexdigest()

    return transform


@_register("md5")
def _md5() -> Transform:
    return _digest("md5")


@_register("sha1")
def _sha1() -> Transform:
    return _digest("sha1")


@_register("sha256")
def _sha256() -> Transform:
    return _digest("sha256")


@_register("hash128")
def _hash128() -> Transform:
    # MD5 is 128 bits wide, the same width as the Kinesis hash key space.
    def transform(value: Any) -> str:
        digest = hashlib.md5(to_text(value).encode("utf-8")).digest()
        return str(int.from_bytes(digest, "big"))

    return transform


@_register("int")
def _int() -> Transform:
    def transform(value: Any) -> str:
        if isinstance(value, bool):
            raise TypeError("booleans are not integers")
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8")
        return str(int(value))

    return transform


@_register("json")
def _json() -> Transform:
    return lambda value: json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)


class KeyExpression:
    """Compiled ``(value) -> str`` key transformation."""

    def __init__(self, source: str, steps: Sequence[Transform]) -> None:
        self._source = source
        self._steps = tuple(steps)

    @property
    def source(self) -> str:
        return self._source

    def __call__(self, value: Any) -> str:
        try:
            for step in self._steps:
                value = step(value)
            return to_text(value)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise KeyResolutionError(
                f"Expression {self._source!r} failed: {type(exc).__name__}: {exc}"
            ) from exc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyExpression):
            return NotImplemented
        return self._source == other._source

    def __hash__(self) -> int:
        return hash(self._source)

    def __repr__(self) -> str:
        return f"KeyExpression({self._source!r})"


def available_functions() -> list[str]:
    return sorted(_REGISTRY)


def compile_expression(source: str) -> KeyExpression:
    normalized = source.strip()
    if not normalized:
        raise ConfigurationError("Key expression must not be empty")

    steps: list[Transform] = []
    for raw_step in normalized.split("|"):
        step = raw_step.strip()
        if not step:
            raise ConfigurationError(f"Key expression {source!r} has an empty step")

        name, has_args, rest = step.partition(":")
        name = name.strip()
        if name not in _REGISTRY:
            raise ConfigurationError(
                f"Unknown key expression function {name!r}; "
                f"expected one of: {', '.join(available_functions())}"
            )

        factory, min_args, max_args = _REGISTRY[name]
        if not has_args:
            args: list[str] = []
        elif max_args == 1:
            args = [rest]
        else:
            args = rest.split(":")

        if not min_args <= len(args) <= max_args:
            raise ConfigurationError(
                f"Key expression function {name!r} takes {min_args}..{max_args} "
                f"arguments, got {len(args)}"
            )

        try:
            steps.append(factory(*args))
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid arguments for key expression function {name!r}: {exc}"
            ) from exc

    return KeyExpression(normalized, steps)
