"""Abstract interface to the remote time-series backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from dirwatch.config import MAX_PAGE_SIZE

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dirwatch.ingestion.models import Interval, LeafRequest, NodeRequest, RelationshipRequest, Sample


class Backend(ABC):
    """Batched upsert and property API consumed by the ingestion pipeline.

    Batched calls accept at most ``page_size`` items; callers page through
    larger sets themselves.
    """

    def __init__(self, page_size: int = MAX_PAGE_SIZE) -> None:
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        return self._page_size

    def _check_page(self, batch: Sequence[Any], operation: str) -> None:
        if len(batch) > self._page_size:
            raise ValueError(f"{operation}: batch of {len(batch)} exceeds page size {self._page_size}")

    @abstractmethod
    def upsert_nodes(self, batch: Sequence[NodeRequest]) -> list[str]:
        """Create or update hierarchy nodes; returns item ids in batch order."""
        ...

    @abstractmethod
    def upsert_leaves(self, batch: Sequence[LeafRequest]) -> list[str]:
        """Create or update series/condition definitions; returns item ids in batch order."""
        ...

    @abstractmethod
    def upsert_relationships(self, batch: Sequence[RelationshipRequest]) -> None:
        """Link children to parents by data id."""
        ...

    @abstractmethod
    def get_property(self, item_id: str, name: str) -> Any | None:
        """Read a named property; None when the property is absent."""
        ...

    @abstractmethod
    def set_property(self, item_id: str, name: str, value: Any) -> None:
        ...

    @abstractmethod
    def write_samples(self, leaf_id: str, samples: Sequence[Sample]) -> None:
        ...

    @abstractmethod
    def write_intervals(self, leaf_id: str, intervals: Sequence[Interval]) -> None:
        ...

    def health_check(self) -> bool:
        """Whether the backend is reachable."""
        return True

    def close(self) -> None:
        """Release any held resources."""
        return None
