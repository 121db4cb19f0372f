"""Pytest configuration and fixtures for Dirwatch tests."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from dirwatch.backend.memory import InMemoryBackend
from dirwatch.config import ConnectionConfig, IngestionOptions


def _poll_until(predicate: Callable[[], Any], timeout: float = 15.0, interval: float = 0.1) -> bool:
    """Poll ``predicate`` until it is truthy or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def backend() -> InMemoryBackend:
    """In-memory backend with the default page size."""
    return InMemoryBackend()


@pytest.fixture
def options() -> IngestionOptions:
    """Ingestion options rooted at 'Root'."""
    return IngestionOptions(root_name="Root")


@pytest.fixture
def make_connection_config(tmp_path: Path) -> Callable[..., ConnectionConfig]:
    """Factory for connection configs watching ``tmp_path`` by default."""

    def _make(**overrides: Any) -> ConnectionConfig:
        raw: dict[str, Any] = {
            "id": "conn-1",
            "name": "Test connection",
            "watch": {"directories": [str(tmp_path)], "poll_interval_seconds": 1.0, "debounce_seconds": 1.0},
            "reader": "TimestampTagsCsvReader",
            "extraction": {"strategy": "timestamp_tags"},
            "ingestion": {"root_name": "Root"},
        }
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(raw.get(key), dict):
                raw[key] = {**raw[key], **value}
            else:
                raw[key] = value
        return ConnectionConfig.model_validate(raw)

    return _make


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout passes."""
    return _poll_until
