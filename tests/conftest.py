"""
This file configures pytest.

It puts src/ on sys.path so the tests run against the working tree without an
install, and strips the shipper's environment variables so a developer's
shell cannot leak into Settings().

pip install -e '.[test]'
pytest -q tests
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

SHIPPER_ENV_VARS = (
    "AWS_REGION",
    "KINESIS_STREAM",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "KINESIS_ENDPOINT_URL",
    "KINESIS_CHUNK",
    "RANDOM_PARTITION_KEY",
    "PARTITION_KEY",
    "PARTITION_KEY_EXPR",
    "EXPLICIT_HASH_KEY",
    "EXPLICIT_HASH_KEY_EXPR",
    "LEGACY_RANDOM_KEYS",
    "ORDER_EVENTS",
    "PAYLOAD_ENCODING",
    "MAX_CONCURRENT_PUTS",
    "DEBUG",
    "NUM_THREADS",
    "DETACH_PROCESS",
    "HOST_CHUNK_RECORDS",
    "HOST_MESSAGE_KEY",
)


@pytest.fixture(autouse=True)
def _isolated_env(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch) -> None:
    if request.node.get_closest_marker("integration"):
        return
    for name in SHIPPER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
