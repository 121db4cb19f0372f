"""Tests for incremental-sync cursors."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dirwatch.backend.memory import InMemoryBackend
from dirwatch.ingestion.cursor import parse_timestamp, read_cursor, write_cursor
from dirwatch.ingestion.models import (
    DATASTORE_STATUS,
    FIRST_CACHED_SENTINEL,
    FIRST_CACHED_TIMESTAMP,
    LAST_CACHED_SENTINEL,
    LAST_CACHED_TIMESTAMP,
    Cursor,
    DatastoreStatus,
)


class TestParseTimestamp:
    """Test suite for timestamp parsing."""

    def test_zulu(self) -> None:
        assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=UTC)

    def test_offset_and_fraction(self) -> None:
        parsed = parse_timestamp("2024-01-01T02:00:00.500+02:00")
        assert parsed.astimezone(UTC) == datetime(2024, 1, 1, 0, 0, 0, 500_000, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["2024-01-01T00:00:00", "2024-01-01", "yesterday", "", None])
    def test_rejects_values_without_zone(self, value: object) -> None:
        with pytest.raises(ValueError):
            parse_timestamp(value)  # type: ignore[arg-type]


class TestCursorIO:
    """Test suite for read_cursor and write_cursor."""

    def test_missing_properties_give_sentinels(self, backend: InMemoryBackend) -> None:
        cursor = read_cursor(backend, "leaf")

        assert cursor.first_cached == FIRST_CACHED_SENTINEL
        assert cursor.last_cached == LAST_CACHED_SENTINEL
        assert cursor.status == DatastoreStatus.ACTIVE

    def test_stored_values_are_read(self, backend: InMemoryBackend) -> None:
        backend.set_property("leaf", FIRST_CACHED_TIMESTAMP, "2024-01-01T00:00:00Z")
        backend.set_property("leaf", LAST_CACHED_TIMESTAMP, "2024-01-02T00:00:00Z")
        backend.set_property("leaf", DATASTORE_STATUS, "Sealed")

        cursor = read_cursor(backend, "leaf")

        assert cursor == Cursor("2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z", DatastoreStatus.SEALED)

    def test_unknown_status_is_an_error(self, backend: InMemoryBackend) -> None:
        backend.set_property("leaf", DATASTORE_STATUS, "Frozen")
        with pytest.raises(ValueError):
            read_cursor(backend, "leaf")

    def test_first_cached_only_moves_earlier(self, backend: InMemoryBackend) -> None:
        cursor = Cursor(first_cached="2024-01-01T00:00:00Z", last_cached="2024-01-02T00:00:00Z")

        write_cursor(backend, "leaf", cursor, "2024-01-03T00:00:00Z", "2024-01-04T00:00:00Z")

        props = backend.leaf_properties("leaf")
        assert FIRST_CACHED_TIMESTAMP not in props
        assert props[LAST_CACHED_TIMESTAMP] == "2024-01-04T00:00:00Z"
        assert props[DATASTORE_STATUS] == "Active"

    def test_write_order(self, backend: InMemoryBackend) -> None:
        write_cursor(backend, "leaf", Cursor(), "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")

        names = [call.args["name"] for call in backend.calls_for("set_property")]
        assert names == [FIRST_CACHED_TIMESTAMP, LAST_CACHED_TIMESTAMP, DATASTORE_STATUS]

    def test_reset_keeps_status(self) -> None:
        cursor = Cursor("2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z", DatastoreStatus.RESET).reset()
        assert cursor == Cursor(status=DatastoreStatus.RESET)
