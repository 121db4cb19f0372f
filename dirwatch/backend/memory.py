"""In-memory backend for lite mode and tests."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dirwatch.backend.base import Backend
from dirwatch.config import MAX_PAGE_SIZE

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dirwatch.ingestion.models import Interval, LeafRequest, NodeRequest, RelationshipRequest, Sample


@dataclass
class BackendCall:
    """One recorded call, for inspection in tests."""

    operation: str
    item_id: str | None = None
    size: int = 0
    args: dict[str, Any] = field(default_factory=dict)


class InMemoryBackend(Backend):
    """Thread-safe dictionary-backed store.

    Item ids equal data ids, so the content-addressed identifier of a path is
    also its item id. When ``record_calls`` is set every call is appended to
    ``calls``. Lite mode runs with recording off.
    """

    def __init__(self, page_size: int = MAX_PAGE_SIZE, record_calls: bool = True) -> None:
        super().__init__(page_size)
        self.record_calls = record_calls
        self._lock = threading.RLock()
        self.nodes: dict[str, NodeRequest] = {}
        self.leaves: dict[str, LeafRequest] = {}
        self.parents: dict[str, str] = {}
        self.properties: dict[str, dict[str, Any]] = defaultdict(dict)
        self.samples: dict[str, list[Sample]] = defaultdict(list)
        self.intervals: dict[str, list[Interval]] = defaultdict(list)
        self.calls: list[BackendCall] = []

    def _record(self, operation: str, item_id: str | None = None, size: int = 0, **args: Any) -> None:
        if not self.record_calls:
            return
        self.calls.append(BackendCall(operation=operation, item_id=item_id, size=size, args=args))

    def calls_for(self, operation: str) -> list[BackendCall]:
        with self._lock:
            return [call for call in self.calls if call.operation == operation]

    def upsert_nodes(self, batch: Sequence[NodeRequest]) -> list[str]:
        self._check_page(batch, "upsert_nodes")
        with self._lock:
            self._record("upsert_nodes", size=len(batch))
            for node in batch:
                self.nodes[node.data_id] = node
                self.properties[node.data_id].update(node.properties)
            return [node.data_id for node in batch]

    def upsert_leaves(self, batch: Sequence[LeafRequest]) -> list[str]:
        self._check_page(batch, "upsert_leaves")
        with self._lock:
            self._record("upsert_leaves", size=len(batch))
            for leaf in batch:
                self.leaves[leaf.data_id] = leaf
            return [leaf.data_id for leaf in batch]

    def upsert_relationships(self, batch: Sequence[RelationshipRequest]) -> None:
        self._check_page(batch, "upsert_relationships")
        with self._lock:
            self._record("upsert_relationships", size=len(batch))
            for relationship in batch:
                self.parents[relationship.child_id] = relationship.parent_id

    def get_property(self, item_id: str, name: str) -> Any | None:
        with self._lock:
            self._record("get_property", item_id, name=name)
            return self.properties.get(item_id, {}).get(name)

    def set_property(self, item_id: str, name: str, value: Any) -> None:
        with self._lock:
            self._record("set_property", item_id, name=name, value=value)
            self.properties[item_id][name] = value

    def write_samples(self, leaf_id: str, samples: Sequence[Sample]) -> None:
        with self._lock:
            self._record("write_samples", leaf_id, size=len(samples))
            self.samples[leaf_id].extend(samples)

    def write_intervals(self, leaf_id: str, intervals: Sequence[Interval]) -> None:
        with self._lock:
            self._record("write_intervals", leaf_id, size=len(intervals))
            self.intervals[leaf_id].extend(intervals)

    def leaf_properties(self, leaf_id: str) -> dict[str, Any]:
        with self._lock:
            return dict(self.properties.get(leaf_id, {}))
