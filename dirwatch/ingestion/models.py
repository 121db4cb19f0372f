"""Data models flowing through the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from dirwatch.exceptions import ErrorKind

# Cursor property names stored on every remote leaf
FIRST_CACHED_TIMESTAMP = "FirstCachedTimestamp"
LAST_CACHED_TIMESTAMP = "LastCachedTimestamp"
DATASTORE_STATUS = "DatastoreStatus"

# Sentinels used when a leaf has never been written
FIRST_CACHED_SENTINEL = "2200-01-01T00:00:00Z"
LAST_CACHED_SENTINEL = "1970-01-02T00:00:00Z"


class PacketKind(Enum):
    SERIES = "series"
    CONDITIONS = "conditions"


class DatastoreStatus(Enum):
    """Sync status of a remote leaf, set by operators on the backend."""

    ACTIVE = "Active"
    SEALED = "Sealed"
    RESET = "Reset"

    @classmethod
    def parse(cls, value: Any) -> DatastoreStatus:
        """Map a stored property value to a status; absent means Active."""
        if value is None:
            return cls.ACTIVE
        try:
            return cls(str(value))
        except ValueError:
            raise ValueError(f"Unknown {DATASTORE_STATUS} value: {value!r}") from None


@dataclass(frozen=True)
class Sample:
    """One timestamped value of a series. ``value`` None is an explicit null."""

    timestamp: str
    value: int | float | str | None

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.timestamp, "value": self.value}


@dataclass(frozen=True)
class Interval:
    """One bounded interval of a condition, with its properties."""

    start: str
    end: str
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start, "end": self.end, "properties": dict(self.properties)}


@dataclass(frozen=True)
class IngestionRecord:
    """A parsed value (series) or interval (condition) addressed by hierarchy path.

    Attributes:
        target_path: Separator-joined hierarchy path of the leaf
        timestamp: ISO-8601 timestamp (the interval start for conditions)
        value: Sample value for series records
        interval: Interval for condition records
    """

    target_path: str
    timestamp: str
    value: Any = None
    interval: Interval | None = None

    @classmethod
    def sample(cls, target_path: str, timestamp: str, value: Any) -> IngestionRecord:
        return cls(target_path=target_path, timestamp=timestamp, value=value)

    @classmethod
    def capsule(
        cls,
        target_path: str,
        start: str,
        end: str,
        properties: dict[str, Any] | None = None,
    ) -> IngestionRecord:
        return cls(
            target_path=target_path,
            timestamp=start,
            interval=Interval(start=start, end=end, properties=properties or {}),
        )


@dataclass
class IngestionPacket:
    """Records handed to the pipeline in one call (a file or one chunk of it)."""

    filename: str
    records: list[IngestionRecord] = field(default_factory=list)
    kind: PacketKind = PacketKind.SERIES

    def by_target(self) -> dict[str, list[IngestionRecord]]:
        """Group records by target path, keeping first-seen path order."""
        grouped: dict[str, list[IngestionRecord]] = {}
        for record in self.records:
            grouped.setdefault(record.target_path, []).append(record)
        return grouped

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class Cursor:
    """Incremental-sync state of one leaf as read from the backend."""

    first_cached: str = FIRST_CACHED_SENTINEL
    last_cached: str = LAST_CACHED_SENTINEL
    status: DatastoreStatus = DatastoreStatus.ACTIVE

    def reset(self) -> Cursor:
        """Cursor with both timestamps unset, keeping the status."""
        return Cursor(status=self.status)


# Backend requests


class NodeRequest(BaseModel):
    """Upsert of an intermediate hierarchy node."""

    data_id: str
    name: str
    path: str
    properties: dict[str, Any] = Field(default_factory=dict)


class LeafRequest(BaseModel):
    """Upsert of a series or condition definition."""

    data_id: str
    name: str
    path: str
    kind: PacketKind = PacketKind.SERIES
    description: str | None = None
    unit: str | None = None
    interpolation: str | None = None
    maximum_interpolation: str | None = None
    maximum_duration: str | None = None


class RelationshipRequest(BaseModel):
    """Parent/child link between two items identified by data id."""

    parent_id: str
    child_id: str


# Results


class LeafOutcome(Enum):
    WRITTEN = "written"
    EMPTY = "empty"  # nothing new to write
    SEALED = "sealed"
    FAILED = "failed"


@dataclass
class LeafResult:
    """What happened to one leaf in a packet."""

    path: str
    outcome: LeafOutcome
    items_written: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def failed(self) -> bool:
        return self.outcome == LeafOutcome.FAILED


@dataclass
class PacketResult:
    """Overall result of one packet. Any failed leaf or packet error means failure."""

    filename: str
    leaves: list[LeafResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None

    @property
    def success(self) -> bool:
        return not self.errors and not any(leaf.failed for leaf in self.leaves)

    def leaf(self, path: str) -> LeafResult | None:
        return next((leaf for leaf in self.leaves if leaf.path == path), None)

    def fail(self, message: str, kind: ErrorKind) -> None:
        self.errors.append(message)
        if self.error_kind is None:
            self.error_kind = kind
