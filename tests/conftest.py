from __future__ import annotations

import pathlib
import sys

import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from rpcruntime.context import Context  # noqa: E402
from rpcruntime.logging import LogEntry, create_logger, set_logger  # noqa: E402


@pytest.fixture(scope="session")
def repo_root() -> pathlib.Path:
    return REPO_ROOT


@pytest.fixture
def log_entry() -> LogEntry:
    return create_logger("test", "json", "debug")


@pytest.fixture
def ctx(log_entry: LogEntry) -> Context:
    return set_logger(Context.background(), log_entry)


@pytest.fixture
def echo_schema() -> dict[str, object]:
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "required": ["name"],
        "properties": {"name": {"type": "string"}},
        "additionalProperties": False,
    }
