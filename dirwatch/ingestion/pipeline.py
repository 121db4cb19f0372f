"""Ingestion pipeline: packets of records into batched, cursor-aware backend writes.

Per packet:

1. Invalid target paths are excluded and reported as failed leaves.
2. Intermediate nodes, leaf definitions and relationships are submitted in
   pages of at most ``backend.page_size``; any page failure aborts the packet.
3. Every leaf is reconciled against its backend-resident cursor and written
   with bounded retry. A leaf failure downgrades the packet result but the
   remaining leaves are still attempted.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from dirwatch.config import ConditionConfig, IngestionOptions, SignalConfig
from dirwatch.context import ComponentContext
from dirwatch.exceptions import ErrorKind, FileProcessingError, LeafIngestionError, StructuralBatchError
from dirwatch.ingestion.cursor import parse_timestamp, read_cursor, write_cursor
from dirwatch.ingestion.hierarchy import build_hierarchy_plan, content_id
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
    Sample,
)
from dirwatch.monitoring.metrics import record_leaf_outcome, record_packet
from dirwatch.resilience.retry import retry_call

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from dirwatch.backend.base import Backend
    from dirwatch.ingestion.hierarchy import HierarchyPlan


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


class _AcceptedRange:
    """Earliest and latest accepted timestamps, kept as the original strings."""

    def __init__(self) -> None:
        self.earliest: tuple[datetime, str] | None = None
        self.latest: tuple[datetime, str] | None = None

    def add(self, moment: datetime, text: str) -> None:
        if self.earliest is None or moment < self.earliest[0]:
            self.earliest = (moment, text)
        if self.latest is None or moment >= self.latest[0]:
            self.latest = (moment, text)

    @property
    def bounds(self) -> tuple[str | None, str | None]:
        return (
            self.earliest[1] if self.earliest else None,
            self.latest[1] if self.latest else None,
        )


class IngestionPipeline:
    """Turns IngestionPackets into hierarchy upserts and sample/interval writes.

    Example:
        >>> pipeline = IngestionPipeline(backend, IngestionOptions(), source="plant-a")
        >>> result = pipeline.ingest(packet)
        >>> result.success
        True
    """

    def __init__(
        self,
        backend: Backend,
        options: IngestionOptions,
        signal_configurations: list[SignalConfig] | None = None,
        condition_configurations: list[ConditionConfig] | None = None,
        source: str = "dirwatch",
        write_retries: int = 3,
        retry_delay: float = 0.0,
        context: ComponentContext | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            backend: Remote backend
            options: Path separator and bad-sample policy
            signal_configurations: Series definitions by leaf name (None = defaults)
            condition_configurations: Condition definitions by leaf name
            source: Connection name used in leaf descriptions
            write_retries: Attempts for each leaf's sample/interval write
            retry_delay: Seconds between write attempts
            context: Component context (logger and lock)
        """
        self.backend = backend
        self.options = options
        self.source = source
        self.write_retries = write_retries
        self.retry_delay = retry_delay
        self.context = context or ComponentContext.create(f"pipeline[{source}]")

        self._signals = (
            {config.name: config for config in signal_configurations}
            if signal_configurations is not None
            else None
        )
        self._conditions = {config.name: config for config in condition_configurations or []}

    @property
    def logger(self) -> logging.Logger:
        return self.context.logger

    def ensure_root(self, root_name: str) -> str:
        """Create (or update) the hierarchy root node and return its data id."""
        root_id = content_id(root_name)
        self.backend.upsert_nodes(
            [NodeRequest(data_id=root_id, name=root_name, path=root_name, properties={"ProjectRoot": True})]
        )
        self.logger.info(f"Hierarchy root '{root_name}' ready ({root_id})")
        return root_id

    # ------------------------------------------------------------------
    # Packet level
    # ------------------------------------------------------------------

    def ingest(self, packet: IngestionPacket) -> PacketResult:
        """Ingest one packet.

        Returns:
            PacketResult; never raises for leaf, structural or packet-fatal
            errors, which are reported in the result instead
        """
        result = PacketResult(filename=packet.filename)
        grouped = packet.by_target()
        if not grouped:
            record_packet(True)
            return result

        plan = build_hierarchy_plan(
            grouped.keys(),
            self.options.path_separator,
            self._leaf_definer(packet.kind),
            no_tree=self.options.no_tree,
        )
        for path, message in plan.errors.items():
            self.logger.error(f"{packet.filename}: {message}")
            result.leaves.append(
                LeafResult(path=path, outcome=LeafOutcome.FAILED, error=message, error_kind=ErrorKind.ABORT_LEAF)
            )
            record_leaf_outcome(LeafOutcome.FAILED.value)

        try:
            item_ids = self._submit_structure(plan)
        except StructuralBatchError as e:
            self.logger.error(f"Call to ingest file {packet.filename} failed: {e}")
            result.fail(e.message, e.kind)
            record_packet(False)
            return result

        for path, leaf_id in plan.leaf_ids.items():
            try:
                leaf_result = self._ingest_leaf(packet, path, item_ids[leaf_id], grouped[path])
            except FileProcessingError as e:
                self.logger.error(f"Call to ingest file {packet.filename} failed: {e}")
                result.fail(e.message, e.kind)
                break
            result.leaves.append(leaf_result)
            record_leaf_outcome(
                leaf_result.outcome.value,
                leaf_result.items_written,
                "samples" if packet.kind == PacketKind.SERIES else "intervals",
            )

        record_packet(result.success)
        return result

    def _leaf_definer(self, kind: PacketKind) -> Callable[[str, str, str], LeafRequest]:
        def define(path: str, name: str, data_id: str) -> LeafRequest:
            if kind == PacketKind.CONDITIONS:
                condition = self._conditions.get(name)
                if condition is None:
                    raise LeafIngestionError(f"No condition configuration named '{name}' for path {path}", path)
                return LeafRequest(
                    data_id=data_id,
                    name=name,
                    path=path,
                    kind=kind,
                    description=f"{path} ({self.source} condition)",
                    maximum_duration=condition.maximum_duration,
                )

            signal = self._signals.get(name) if self._signals is not None else SignalConfig(name=name)
            if signal is None:
                raise LeafIngestionError(f"No signal configuration named '{name}' for path {path}", path)
            return LeafRequest(
                data_id=data_id,
                name=name,
                path=path,
                kind=kind,
                description=signal.description or f"{path} ({self.source} signal)",
                unit=signal.unit,
                interpolation=signal.interpolation,
                maximum_interpolation=signal.maximum_interpolation,
            )

        return define

    def _submit_structure(self, plan: HierarchyPlan) -> dict[str, str]:
        """Submit nodes, leaves and relationships; map leaf data ids to item ids."""
        self._submit_pages("nodes", plan.nodes, self.backend.upsert_nodes)
        leaf_item_ids = self._submit_pages("leaves", plan.leaves, self.backend.upsert_leaves)
        self._submit_pages("relationships", plan.relationships, self.backend.upsert_relationships)

        if len(leaf_item_ids) != len(plan.leaves):
            raise StructuralBatchError(
                f"Backend returned {len(leaf_item_ids)} ids for {len(plan.leaves)} leaves"
            )
        return {leaf.data_id: item_id for leaf, item_id in zip(plan.leaves, leaf_item_ids, strict=True)}

    def _submit_pages(self, label: str, items: list, submit: Callable[[list], Any]) -> list[str]:
        ids: list[str] = []
        page_size = self.backend.page_size
        for offset in range(0, len(items), page_size):
            page = items[offset : offset + page_size]
            try:
                returned = submit(page)
            except Exception as e:
                raise StructuralBatchError(
                    f"Upsert of {label} page at offset {offset} ({len(page)} items) failed: {e}"
                ) from e
            ids.extend(returned or [])
        return ids

    # ------------------------------------------------------------------
    # Leaf level
    # ------------------------------------------------------------------

    def _ingest_leaf(
        self,
        packet: IngestionPacket,
        path: str,
        item_id: str,
        records: list[IngestionRecord],
    ) -> LeafResult:
        """Reconcile one leaf against its cursor and write its new data.

        Raises:
            FileProcessingError: On a bad value when the policy makes it fatal
        """
        try:
            cursor = read_cursor(self.backend, item_id)
        except Exception as e:
            return self._leaf_failed(packet, path, f"Could not read cursor: {e}")

        if cursor.status == DatastoreStatus.SEALED:
            self.logger.warning(
                f"A Sealed leaf with path {path} was found in file {packet.filename} and will be skipped"
            )
            return LeafResult(path=path, outcome=LeafOutcome.SEALED)
        if cursor.status == DatastoreStatus.RESET:
            self.logger.info(f"Leaf {path} is Reset; re-admitting all data from {packet.filename}")
            cursor = cursor.reset()

        try:
            if packet.kind == PacketKind.CONDITIONS:
                items, accepted = self._admit_intervals(packet, path, records, cursor)
                write = self.backend.write_intervals
            else:
                items, accepted = self._admit_samples(packet, path, records, cursor)
                write = self.backend.write_samples
        except LeafIngestionError as e:
            return self._leaf_failed(packet, path, e.message)
        except ValueError as e:
            return self._leaf_failed(packet, path, f"Stored cursor is unreadable: {e}")

        if items:
            try:
                retry_call(
                    write,
                    item_id,
                    items,
                    attempts=self.write_retries,
                    delay_seconds=self.retry_delay,
                    description=f"Write of {len(items)} items to {path}",
                )
            except Exception as e:
                return self._leaf_failed(packet, path, f"Write failed after {self.write_retries} attempts: {e}")

        earliest, latest = accepted.bounds
        try:
            write_cursor(self.backend, item_id, cursor, earliest, latest)
        except Exception as e:
            return self._leaf_failed(packet, path, f"Could not update cursor: {e}")

        outcome = LeafOutcome.WRITTEN if items else LeafOutcome.EMPTY
        self.logger.debug(f"{packet.filename}: {len(items)} items written to {path}")
        return LeafResult(path=path, outcome=outcome, items_written=len(items))

    def _leaf_failed(self, packet: IngestionPacket, path: str, message: str) -> LeafResult:
        self.logger.error(f"Leaf {path} in file {packet.filename} failed: {message}")
        return LeafResult(path=path, outcome=LeafOutcome.FAILED, error=message, error_kind=ErrorKind.ABORT_LEAF)

    def _bad_value(self, packet: IngestionPacket, path: str, message: str) -> None:
        """Apply the skip policy to a malformed value (fatal unless skipping)."""
        if not (self.options.skip_bad_samples or self.options.post_invalid_samples_instead_of_skipping):
            raise FileProcessingError(
                f"Found bad sample in {packet.filename} for {path} and skip_bad_samples is false: {message}"
            )
        self.logger.debug(f"{packet.filename}: skipping bad sample for {path}: {message}")

    def _admit_samples(
        self,
        packet: IngestionPacket,
        path: str,
        records: list[IngestionRecord],
        cursor: Cursor,
    ) -> tuple[list[Sample], _AcceptedRange]:
        last_cached = parse_timestamp(cursor.last_cached)
        samples: list[Sample] = []
        accepted = _AcceptedRange()
        has_number = has_text = False

        for record in records:
            try:
                moment = parse_timestamp(record.timestamp)
            except ValueError as e:
                self._bad_value(packet, path, str(e))
                continue
            if moment < last_cached:
                continue

            value = record.value
            if _is_number(value):
                has_number = True
            elif isinstance(value, str) and value != "":
                has_text = True
            elif self.options.post_invalid_samples_instead_of_skipping:
                value = None
            else:
                self._bad_value(packet, path, f"invalid value {value!r} at {record.timestamp}")
                continue

            samples.append(Sample(timestamp=record.timestamp, value=value))
            accepted.add(moment, record.timestamp)

        if has_number and has_text:
            raise LeafIngestionError(f"Leaf {path} contains both strings and numbers", path)
        return samples, accepted

    def _admit_intervals(
        self,
        packet: IngestionPacket,
        path: str,
        records: list[IngestionRecord],
        cursor: Cursor,
    ) -> tuple[list[Interval], _AcceptedRange]:
        last_cached = parse_timestamp(cursor.last_cached)
        name = path.split(self.options.path_separator)[-1]
        config = self._conditions.get(name)
        declared = {prop.name: prop for prop in config.capsule_properties} if config else {}
        intervals: list[Interval] = []
        accepted = _AcceptedRange()

        for record in records:
            interval = record.interval
            if interval is None:
                raise LeafIngestionError(f"Record for condition {path} has no interval", path)
            try:
                start = parse_timestamp(interval.start)
                end = parse_timestamp(interval.end)
                if end < start:
                    raise ValueError(f"end {interval.end} precedes start {interval.start}")
            except ValueError as e:
                if self.options.throw_on_invalid_timestamps:
                    raise FileProcessingError(
                        f"An invalid timestamp was encountered on interval for condition {path} "
                        f"in {packet.filename}: {e}"
                    ) from e
                self.logger.warning(f"Skipping interval for {path} due to invalid start/end: {e}")
                continue
            if start < last_cached:
                continue

            for prop_name, prop in declared.items():
                if prop.required and prop_name not in interval.properties:
                    raise LeafIngestionError(
                        f"Interval property '{prop_name}' is required and was not found on interval "
                        f"with start {interval.start}, end {interval.end}",
                        path,
                    )
            if not self.options.ignore_unspecified_properties:
                undeclared = sorted(set(interval.properties) - set(declared))
                if undeclared:
                    raise LeafIngestionError(
                        f"Found properties {undeclared} not declared for condition {name} "
                        f"on interval with start {interval.start}, end {interval.end}",
                        path,
                    )

            intervals.append(interval)
            accepted.add(start, interval.start)

        return intervals, accepted
