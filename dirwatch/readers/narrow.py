"""Narrow CSV reader: one row per (timestamp, signal, value)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dirwatch.config import NarrowExtraction
from dirwatch.exceptions import ConfigurationError
from dirwatch.ingestion.models import IngestionPacket, IngestionRecord, PacketKind
from dirwatch.readers.base import DataFileReader, coerce_value, resolve_header, to_iso

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


class NarrowFileReader(DataFileReader):
    """Reads files shaped like::

        Timestamp,Signal,Value
        2024-01-01T00:00:00Z,Temperature,21.5
        2024-01-01T00:00:00Z,Pressure,101.2

    The leaf name is ``signal_prefix`` followed by the signal column's value.
    """

    name = "NarrowFileReader"
    extraction_type = NarrowExtraction

    def initialize(self) -> None:
        super().initialize()
        if self.condition_configurations is not None:
            raise ConfigurationError(f"{self.name} ingests series only; remove condition_configurations")

    def read_packets(self, claimed_path: Path, original_name: str) -> Iterator[IngestionPacket]:
        ex = self.extraction
        prefix = self.hierarchy_prefix(claimed_path, original_name)

        for chunk in self.read_chunks(claimed_path, original_name):
            headers = list(chunk.columns)
            timestamp_columns = [resolve_header(h, headers) for h in ex.timestamp_headers]
            name_column = resolve_header(ex.signal_name_header, headers)
            value_column = resolve_header(ex.value_header, headers)

            iso = self.parse_timestamps(chunk, timestamp_columns, original_name).map(to_iso)
            rows = chunk.loc[iso.index, [name_column, value_column]]

            records = []
            for timestamp, signal, raw in zip(iso, rows[name_column], rows[value_column], strict=True):
                signal = signal.strip()
                if not signal:
                    continue
                value = coerce_value(raw)
                if self.keep_value(value):
                    path = self.leaf_path(prefix, f"{ex.signal_prefix}{signal}")
                    records.append(IngestionRecord.sample(path, timestamp, value))

            logger.info(f"Read {len(chunk)} rows ({len(records)} samples) from {original_name}")
            yield IngestionPacket(filename=original_name, records=records, kind=PacketKind.SERIES)
