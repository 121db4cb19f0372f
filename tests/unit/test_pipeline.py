"""Tests for the ingestion pipeline."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from dirwatch.backend.memory import InMemoryBackend
from dirwatch.config import CapsulePropertyConfig, ConditionConfig, IngestionOptions, SignalConfig
from dirwatch.exceptions import ErrorKind
from dirwatch.ingestion.hierarchy import content_id
from dirwatch.ingestion.models import (
    DATASTORE_STATUS,
    FIRST_CACHED_TIMESTAMP,
    LAST_CACHED_TIMESTAMP,
    IngestionPacket,
    IngestionRecord,
    LeafOutcome,
    PacketKind,
    Sample,
)
from dirwatch.ingestion.pipeline import IngestionPipeline

T1 = "2024-01-01T00:00:00Z"
T2 = "2024-01-01T01:00:00Z"
T3 = "2024-01-01T02:00:00Z"


def series(*records: tuple[str, str, object], filename: str = "a.csv") -> IngestionPacket:
    return IngestionPacket(
        filename=filename,
        records=[IngestionRecord.sample(path, ts, value) for path, ts, value in records],
    )


class FlakyBackend(InMemoryBackend):
    """Fails the first ``failures`` sample writes."""

    def __init__(self, failures: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures = failures

    def write_samples(self, leaf_id: str, samples: Sequence[Sample]) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("backend unavailable")
        super().write_samples(leaf_id, samples)


class BrokenStructureBackend(InMemoryBackend):
    def upsert_leaves(self, batch):
        raise ConnectionError("leaf upsert rejected")


@pytest.fixture
def pipeline(backend: InMemoryBackend, options: IngestionOptions) -> IngestionPipeline:
    return IngestionPipeline(backend, options, source="test")


class TestSeriesIngestion:
    """Test suite for series packets."""

    def test_samples_and_cursor_are_written(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        path = "Root>>Sub>>Signal1"
        result = pipeline.ingest(series((path, T2, 2.0), (path, T1, 1.0)))

        leaf_id = content_id(path)
        assert result.success
        assert result.leaf(path).outcome == LeafOutcome.WRITTEN
        assert result.leaf(path).items_written == 2
        assert [s.value for s in backend.samples[leaf_id]] == [2.0, 1.0]
        assert backend.leaf_properties(leaf_id) == {
            FIRST_CACHED_TIMESTAMP: T1,
            LAST_CACHED_TIMESTAMP: T2,
            DATASTORE_STATUS: "Active",
        }
        assert backend.parents[leaf_id] == content_id("Root>>Sub")
        assert backend.parents[content_id("Root>>Sub")] == content_id("Root")

    def test_ensure_root(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        root_id = pipeline.ensure_root("Root")

        assert root_id == content_id("Root")
        assert backend.nodes[root_id].name == "Root"
        assert backend.properties[root_id]["ProjectRoot"] is True

    def test_empty_packet_is_a_no_op(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        result = pipeline.ingest(IngestionPacket(filename="empty.csv"))

        assert result.success
        assert backend.calls == []

    def test_reingesting_uses_same_ids(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        path = "Root>>Signal1"
        pipeline.ingest(series((path, T1, 1)))
        pipeline.ingest(series((path, T2, 2)))

        assert list(backend.leaves) == [content_id(path)]
        assert len(backend.samples[content_id(path)]) == 2

    def test_samples_before_last_cached_are_skipped(
        self, pipeline: IngestionPipeline, backend: InMemoryBackend
    ) -> None:
        path = "Root>>Signal1"
        pipeline.ingest(series((path, T1, 1), (path, T2, 2)))
        result = pipeline.ingest(series((path, T1, 1), (path, T2, 2), (path, T3, 3)))

        assert result.leaf(path).items_written == 2
        assert backend.leaf_properties(content_id(path))[LAST_CACHED_TIMESTAMP] == T3
        assert backend.leaf_properties(content_id(path))[FIRST_CACHED_TIMESTAMP] == T1

    def test_sealed_leaf_is_skipped(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        path = "Root>>Signal1"
        leaf_id = content_id(path)
        backend.set_property(leaf_id, DATASTORE_STATUS, "Sealed")

        result = pipeline.ingest(series((path, T1, 1)))

        assert result.success
        assert result.leaf(path).outcome == LeafOutcome.SEALED
        assert backend.calls_for("write_samples") == []
        assert backend.leaf_properties(leaf_id) == {DATASTORE_STATUS: "Sealed"}

    def test_reset_leaf_readmits_everything(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        path = "Root>>Signal1"
        leaf_id = content_id(path)
        backend.set_property(leaf_id, LAST_CACHED_TIMESTAMP, "2030-01-01T00:00:00Z")
        backend.set_property(leaf_id, DATASTORE_STATUS, "Reset")

        result = pipeline.ingest(series((path, T1, 1), (path, T2, 2)))

        assert result.leaf(path).items_written == 2
        props = backend.leaf_properties(leaf_id)
        assert props[LAST_CACHED_TIMESTAMP] == T2
        assert props[FIRST_CACHED_TIMESTAMP] == T1
        assert props[DATASTORE_STATUS] == "Reset"

    def test_mixed_types_fail_only_that_leaf(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        result = pipeline.ingest(
            series(("Root>>Mixed", T1, 1.5), ("Root>>Mixed", T2, "high"), ("Root>>Clean", T1, "on"))
        )

        assert not result.success
        assert result.leaf("Root>>Mixed").outcome == LeafOutcome.FAILED
        assert result.leaf("Root>>Mixed").error_kind == ErrorKind.ABORT_LEAF
        assert result.leaf("Root>>Clean").outcome == LeafOutcome.WRITTEN
        assert content_id("Root>>Mixed") not in backend.samples

    def test_invalid_path_is_isolated(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        result = pipeline.ingest(series(("Root>>>>Bad", T1, 1), ("Root>>Good", T1, 1)))

        assert result.leaf("Root>>>>Bad").outcome == LeafOutcome.FAILED
        assert result.leaf("Root>>Good").outcome == LeafOutcome.WRITTEN

    def test_no_tree_skips_nodes_and_relationships(self, backend: InMemoryBackend) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(no_tree=True))

        pipeline.ingest(series(("Root>>Sub>>A", T1, 1)))

        assert backend.calls_for("upsert_nodes") == []
        assert backend.calls_for("upsert_relationships") == []
        assert content_id("Root>>Sub>>A") in backend.leaves


class TestBadSamplePolicy:
    """Test suite for malformed values."""

    def test_skip_by_default(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        result = pipeline.ingest(series(("Root>>A", T1, None), ("Root>>A", T2, 2)))

        assert result.success
        assert [s.value for s in backend.samples[content_id("Root>>A")]] == [2]

    def test_non_finite_number_is_bad(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        pipeline.ingest(series(("Root>>A", T1, float("nan")), ("Root>>A", T2, 2)))

        assert [s.value for s in backend.samples[content_id("Root>>A")]] == [2]

    def test_post_invalid_as_null(self, backend: InMemoryBackend) -> None:
        options = IngestionOptions(post_invalid_samples_instead_of_skipping=True)
        pipeline = IngestionPipeline(backend, options)

        pipeline.ingest(series(("Root>>A", T1, None), ("Root>>A", T2, 2)))

        assert [s.value for s in backend.samples[content_id("Root>>A")]] == [None, 2]

    def test_fatal_when_not_skipping(self, backend: InMemoryBackend) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(skip_bad_samples=False))

        result = pipeline.ingest(series(("Root>>A", T1, None), ("Root>>B", T1, 1)))

        assert not result.success
        assert result.error_kind == ErrorKind.ABORT_FILE
        assert result.leaf("Root>>B") is None
        assert backend.calls_for("write_samples") == []

    def test_timestamp_without_zone_is_bad(self, pipeline: IngestionPipeline, backend: InMemoryBackend) -> None:
        pipeline.ingest(series(("Root>>A", "2024-01-01T00:00:00", 1), ("Root>>A", T2, 2)))

        assert [s.timestamp for s in backend.samples[content_id("Root>>A")]] == [T2]


class TestBackendFailures:
    """Test suite for structural and write failures."""

    def test_structural_failure_aborts_packet(self) -> None:
        backend = BrokenStructureBackend()
        pipeline = IngestionPipeline(backend, IngestionOptions())

        result = pipeline.ingest(series(("Root>>A", T1, 1)))

        assert not result.success
        assert result.error_kind == ErrorKind.ABORT_FILE
        assert "leaf upsert rejected" in result.errors[0]
        assert backend.samples == {}

    def test_pages_never_exceed_page_size(self) -> None:
        backend = InMemoryBackend(page_size=2)
        pipeline = IngestionPipeline(backend, IngestionOptions())

        result = pipeline.ingest(series(*[(f"Root>>Sub>>S{i}", T1, i) for i in range(5)]))

        assert result.success
        assert [call.size for call in backend.calls_for("upsert_leaves")] == [2, 2, 1]
        assert [call.size for call in backend.calls_for("upsert_relationships")] == [2, 2, 2]

    def test_write_is_retried(self) -> None:
        backend = FlakyBackend(failures=2)
        pipeline = IngestionPipeline(backend, IngestionOptions(), write_retries=3)

        result = pipeline.ingest(series(("Root>>A", T1, 1)))

        assert result.leaf("Root>>A").outcome == LeafOutcome.WRITTEN

    def test_exhausted_retries_fail_leaf_without_cursor_update(self) -> None:
        backend = FlakyBackend(failures=3)
        pipeline = IngestionPipeline(backend, IngestionOptions(), write_retries=3)

        result = pipeline.ingest(series(("Root>>A", T1, 1)))

        assert result.leaf("Root>>A").outcome == LeafOutcome.FAILED
        assert LAST_CACHED_TIMESTAMP not in backend.leaf_properties(content_id("Root>>A"))


class TestLeafDefinitions:
    """Test suite for configured signals."""

    def test_configured_signal_metadata(self, backend: InMemoryBackend) -> None:
        signals = [SignalConfig(name="Temp", unit="degC", interpolation="step")]
        pipeline = IngestionPipeline(backend, IngestionOptions(), signal_configurations=signals)

        pipeline.ingest(series(("Root>>Temp", T1, 20.5)))

        leaf = backend.leaves[content_id("Root>>Temp")]
        assert leaf.unit == "degC"
        assert leaf.interpolation == "step"

    def test_unconfigured_signal_fails(self, backend: InMemoryBackend) -> None:
        pipeline = IngestionPipeline(
            backend, IngestionOptions(), signal_configurations=[SignalConfig(name="Temp")]
        )

        result = pipeline.ingest(series(("Root>>Pressure", T1, 1), ("Root>>Temp", T1, 1)))

        assert result.leaf("Root>>Pressure").outcome == LeafOutcome.FAILED
        assert result.leaf("Root>>Temp").outcome == LeafOutcome.WRITTEN


class TestConditionIngestion:
    """Test suite for condition packets."""

    @pytest.fixture
    def conditions(self) -> list[ConditionConfig]:
        return [
            ConditionConfig(
                name="Batch",
                start_field="Start",
                end_field="End",
                capsule_properties=[
                    CapsulePropertyConfig(name="Id", required=True),
                    CapsulePropertyConfig(name="Operator"),
                ],
            )
        ]

    def packet(self, *intervals: tuple[str, str, dict]) -> IngestionPacket:
        return IngestionPacket(
            filename="batches.csv",
            records=[IngestionRecord.capsule("Root>>Batch", s, e, p) for s, e, p in intervals],
            kind=PacketKind.CONDITIONS,
        )

    def test_intervals_are_written(self, backend: InMemoryBackend, conditions: list[ConditionConfig]) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(), condition_configurations=conditions)

        result = pipeline.ingest(self.packet((T1, T2, {"Id": "B-1"}), (T2, T3, {"Id": "B-2", "Operator": "ann"})))

        leaf_id = content_id("Root>>Batch")
        assert result.success
        assert [i.properties["Id"] for i in backend.intervals[leaf_id]] == ["B-1", "B-2"]
        assert backend.leaves[leaf_id].kind == PacketKind.CONDITIONS
        assert backend.leaves[leaf_id].maximum_duration == "1d"
        assert backend.leaf_properties(leaf_id)[LAST_CACHED_TIMESTAMP] == T2

    def test_missing_required_property_fails_leaf(
        self, backend: InMemoryBackend, conditions: list[ConditionConfig]
    ) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(), condition_configurations=conditions)

        result = pipeline.ingest(self.packet((T1, T2, {"Operator": "ann"})))

        assert result.leaf("Root>>Batch").outcome == LeafOutcome.FAILED

    def test_undeclared_property_rejected_when_strict(
        self, backend: InMemoryBackend, conditions: list[ConditionConfig]
    ) -> None:
        options = IngestionOptions(ignore_unspecified_properties=False)
        pipeline = IngestionPipeline(backend, options, condition_configurations=conditions)

        result = pipeline.ingest(self.packet((T1, T2, {"Id": "B-1", "Shift": "night"})))

        assert result.leaf("Root>>Batch").outcome == LeafOutcome.FAILED

    def test_invalid_interval_is_skipped(self, backend: InMemoryBackend, conditions: list[ConditionConfig]) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(), condition_configurations=conditions)

        result = pipeline.ingest(self.packet((T2, T1, {"Id": "backwards"}), (T1, T2, {"Id": "ok"})))

        assert result.success
        assert [i.properties["Id"] for i in backend.intervals[content_id("Root>>Batch")]] == ["ok"]

    def test_invalid_interval_is_fatal_when_configured(
        self, backend: InMemoryBackend, conditions: list[ConditionConfig]
    ) -> None:
        options = IngestionOptions(throw_on_invalid_timestamps=True)
        pipeline = IngestionPipeline(backend, options, condition_configurations=conditions)

        result = pipeline.ingest(self.packet((T1, "not a time", {"Id": "B-1"})))

        assert not result.success
        assert result.error_kind == ErrorKind.ABORT_FILE

    def test_unconfigured_condition_fails(self, backend: InMemoryBackend) -> None:
        pipeline = IngestionPipeline(backend, IngestionOptions(), condition_configurations=[])

        result = pipeline.ingest(self.packet((T1, T2, {})))

        assert result.leaf("Root>>Batch").outcome == LeafOutcome.FAILED
