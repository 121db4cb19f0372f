"""Wide CSV reader: timestamp column(s) followed by one column per signal."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dirwatch.config import TimestampTagsExtraction
from dirwatch.exceptions import ConfigurationError, FileProcessingError
from dirwatch.ingestion.models import IngestionPacket, IngestionRecord, PacketKind
from dirwatch.readers.base import DataFileReader, coerce_value, resolve_header, to_iso

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    import pandas as pd

logger = logging.getLogger(__name__)


class TimestampTagsCsvReader(DataFileReader):
    """Reads files shaped like::

        Timestamp,Temperature,Pressure
        2024-01-01T00:00:00Z,21.5,101.2

    Each configured signal is looked up by ``name_in_file`` (exact or
    ``/regex/``). Without signal configurations every non-timestamp column
    becomes a signal named after its header.
    """

    name = "TimestampTagsCsvReader"
    extraction_type = TimestampTagsExtraction

    def initialize(self) -> None:
        super().initialize()
        if self.condition_configurations is not None:
            raise ConfigurationError(f"{self.name} ingests series only; remove condition_configurations")

    def _signal_columns(self, headers: list[str], timestamp_columns: list[str]) -> list[tuple[str, str]]:
        """(column, leaf name) pairs to read from this file."""
        if self.signal_configurations is None:
            return [(header, header) for header in headers if header not in timestamp_columns]

        columns = []
        for signal in self.signal_configurations:
            column = resolve_header(signal.name_in_file or signal.name, headers, required=signal.required)
            if column is None:
                logger.debug(f"Optional signal {signal.name} not present in file")
                continue
            columns.append((column, signal.name))
        return columns

    def read_packets(self, claimed_path: Path, original_name: str) -> Iterator[IngestionPacket]:
        ex = self.extraction
        prefix = self.hierarchy_prefix(claimed_path, original_name)
        previous: pd.Timestamp | None = None
        rows = 0

        for chunk in self.read_chunks(claimed_path, original_name):
            headers = list(chunk.columns)
            timestamp_columns = [resolve_header(h, headers) for h in ex.timestamp_headers]
            timestamps = self.parse_timestamps(chunk, timestamp_columns, original_name)

            if ex.enforce_timestamp_order and len(timestamps):
                if not timestamps.is_monotonic_increasing or (previous is not None and timestamps.iloc[0] < previous):
                    raise FileProcessingError(f"Timestamps in {original_name} are not in ascending order")
                previous = timestamps.iloc[-1]

            iso = timestamps.map(to_iso)
            records = []
            for column, leaf_name in self._signal_columns(headers, timestamp_columns):
                path = self.leaf_path(prefix, leaf_name)
                for timestamp, raw in zip(iso, chunk.loc[iso.index, column], strict=True):
                    value = coerce_value(raw)
                    if self.keep_value(value):
                        records.append(IngestionRecord.sample(path, timestamp, value))

            rows += len(chunk)
            logger.info(f"Read {rows} rows from {original_name}")
            yield IngestionPacket(filename=original_name, records=records, kind=PacketKind.SERIES)
