"""Reading and writing the per-leaf incremental-sync cursor."""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from dirwatch.ingestion.models import (
    DATASTORE_STATUS,
    FIRST_CACHED_SENTINEL,
    FIRST_CACHED_TIMESTAMP,
    LAST_CACHED_SENTINEL,
    LAST_CACHED_TIMESTAMP,
    Cursor,
    DatastoreStatus,
)

if TYPE_CHECKING:
    from dirwatch.backend.base import Backend

# yyyy-MM-ddTHH:mm:ss, optional fraction, then Z or +/-HH:mm
_ISO_WITH_ZONE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp carrying an explicit zone.

    Raises:
        ValueError: If the value is not a zoned ISO-8601 timestamp
    """
    if not isinstance(value, str) or not _ISO_WITH_ZONE.match(value.strip()):
        raise ValueError(f"Not an ISO-8601 timestamp with zone: {value!r}")
    return datetime.fromisoformat(value.strip())


def read_cursor(backend: Backend, item_id: str) -> Cursor:
    """Read a leaf's cursor, substituting sentinels for missing properties."""
    first = backend.get_property(item_id, FIRST_CACHED_TIMESTAMP)
    last = backend.get_property(item_id, LAST_CACHED_TIMESTAMP)
    status = backend.get_property(item_id, DATASTORE_STATUS)
    return Cursor(
        first_cached=str(first) if first is not None else FIRST_CACHED_SENTINEL,
        last_cached=str(last) if last is not None else LAST_CACHED_SENTINEL,
        status=DatastoreStatus.parse(status),
    )


def write_cursor(
    backend: Backend,
    item_id: str,
    cursor: Cursor,
    earliest: str | None,
    latest: str | None,
) -> None:
    """Fold the accepted timestamp range into the stored cursor.

    FirstCachedTimestamp only moves earlier and LastCachedTimestamp is set to
    the latest accepted timestamp. DatastoreStatus is rewritten as read.
    """
    if earliest is not None and parse_timestamp(earliest) < parse_timestamp(cursor.first_cached):
        backend.set_property(item_id, FIRST_CACHED_TIMESTAMP, earliest)
    if latest is not None:
        backend.set_property(item_id, LAST_CACHED_TIMESTAMP, latest)
    backend.set_property(item_id, DATASTORE_STATUS, cursor.status.value)
