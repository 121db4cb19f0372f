"""Ingestion pipeline: records into hierarchy, leaves and samples/intervals."""

from dirwatch.ingestion.cursor import parse_timestamp, read_cursor, write_cursor
from dirwatch.ingestion.hierarchy import HierarchyPlan, build_hierarchy_plan, content_id, split_path
from dirwatch.ingestion.models import (
    Cursor,
    DatastoreStatus,
    IngestionPacket,
    IngestionRecord,
    Interval,
    LeafOutcome,
    LeafRequest,
    LeafResult,
    NodeRequest,
    PacketKind,
    PacketResult,
    RelationshipRequest,
    Sample,
)
from dirwatch.ingestion.pipeline import IngestionPipeline

__all__ = [
    "Cursor",
    "DatastoreStatus",
    "HierarchyPlan",
    "IngestionPacket",
    "IngestionPipeline",
    "IngestionRecord",
    "Interval",
    "LeafOutcome",
    "LeafRequest",
    "LeafResult",
    "NodeRequest",
    "PacketKind",
    "PacketResult",
    "RelationshipRequest",
    "Sample",
    "build_hierarchy_plan",
    "content_id",
    "parse_timestamp",
    "read_cursor",
    "split_path",
    "write_cursor",
]
