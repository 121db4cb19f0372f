"""Prometheus metrics collection for dirwatch.

Provides instrumentation for change detection, file claiming and ingestion.
"""

import logging
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# =============================================================================
# Change Detection Metrics
# =============================================================================

directory_changes_total = Counter(
    "dirwatch_directory_changes_total",
    "Debounced directory changes, by whether the owner callback fired",
    ["outcome"],  # fired, suppressed
)

active_detectors = Gauge(
    "dirwatch_active_detectors",
    "Number of running directory change detectors",
)

# =============================================================================
# File Metrics
# =============================================================================

files_processed_total = Counter(
    "dirwatch_files_processed_total",
    "Files handled by the claim protocol",
    ["status"],  # imported, failed, rejected
)

file_processing_duration_seconds = Histogram(
    "dirwatch_file_processing_duration_seconds",
    "Time from claim to completion for one file",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0],
)

# =============================================================================
# Ingestion Metrics
# =============================================================================

leaves_ingested_total = Counter(
    "dirwatch_leaves_ingested_total",
    "Leaf targets processed by the ingestion pipeline",
    ["outcome"],  # written, empty, sealed, failed
)

items_written_total = Counter(
    "dirwatch_items_written_total",
    "Samples and intervals appended to the backend",
    ["kind"],  # samples, intervals
)

packets_total = Counter(
    "dirwatch_packets_total",
    "Packets handed to the ingestion pipeline",
    ["status"],  # success, failure
)

backend_write_retries_total = Counter(
    "dirwatch_backend_write_retries_total",
    "Retried sample/interval writes",
)

# =============================================================================
# Convenience functions for manual metric updates
# =============================================================================


def record_directory_change(fired: bool) -> None:
    """Record a debounced change and whether it reached the owner."""
    directory_changes_total.labels(outcome="fired" if fired else "suppressed").inc()


def record_file_event(status: str, duration: float = 0.0) -> None:
    """Record a claimed file's final status."""
    files_processed_total.labels(status=status).inc()
    if duration > 0:
        file_processing_duration_seconds.observe(duration)


def record_leaf_outcome(outcome: str, items_written: int = 0, kind: str = "samples") -> None:
    """Record one leaf's outcome and the number of items appended for it."""
    leaves_ingested_total.labels(outcome=outcome).inc()
    if items_written > 0:
        items_written_total.labels(kind=kind).inc(items_written)


def record_packet(success: bool) -> None:
    packets_total.labels(status="success" if success else "failure").inc()


def record_write_retry() -> None:
    backend_write_retries_total.inc()


@contextmanager
def track_detector():
    """Count a detector as active for the duration of the block."""
    active_detectors.inc()
    try:
        yield
    finally:
        active_detectors.dec()


def start_metrics_server(port: int) -> None:
    """Expose /metrics for Prometheus scraping."""
    start_http_server(port)
    logger.info(f"Prometheus metrics exposed on port {port}")
