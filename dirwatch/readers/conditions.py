"""Conditions CSV reader: one row per interval, with property columns."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pandas as pd

from dirwatch.config import ConditionConfig, ConditionsExtraction
from dirwatch.exceptions import ConfigurationError, FileProcessingError
from dirwatch.ingestion.models import IngestionPacket, IngestionRecord, PacketKind
from dirwatch.readers.base import DataFileReader, coerce_value, resolve_header, to_iso

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class _ConditionColumns:
    config: ConditionConfig
    start: str | None
    end: str | None
    duration: str | None
    properties: dict[str, str]  # property name -> column


class ConditionsCsvReader(DataFileReader):
    """Reads files shaped like::

        Start,End,Batch,Operator
        2024-01-01T00:00:00Z,2024-01-01T02:00:00Z,B-17,alice

    Every row yields one interval per configured condition. Bounds come from
    ``start_field``/``end_field``; when only one of them is set the other is
    derived from ``duration_field`` or ``default_duration``.
    """

    name = "ConditionsCsvReader"
    extraction_type = ConditionsExtraction

    def initialize(self) -> None:
        super().initialize()
        if not self.condition_configurations:
            raise ConfigurationError(f"{self.name} requires at least one condition configuration")

        for condition in self.condition_configurations:
            label = f"Condition configuration {condition.name}"
            if condition.start_field and condition.end_field and condition.duration_field:
                raise ConfigurationError(f"{label}: start_field, end_field and duration_field cannot all be set")
            if not condition.start_field and not condition.end_field:
                raise ConfigurationError(f"{label}: at least one of start_field and end_field is required")
            if condition.duration_field and condition.default_duration:
                raise ConfigurationError(f"{label}: duration_field and default_duration cannot both be set")
            if not (condition.start_field and condition.end_field) and not (
                condition.duration_field or condition.default_duration
            ):
                raise ConfigurationError(f"{label}: a duration is needed when only one bound is configured")
            for duration in (condition.default_duration, condition.maximum_duration):
                if duration is None:
                    continue
                try:
                    pd.Timedelta(duration)
                except ValueError as e:
                    raise ConfigurationError(f"{label}: {duration!r} is not a valid duration") from e

    def _columns(self, headers: list[str]) -> list[_ConditionColumns]:
        columns = []
        for condition in self.condition_configurations or []:
            properties = {}
            for prop in condition.capsule_properties:
                column = resolve_header(prop.name_in_file or prop.name, headers, required=prop.required)
                if column is not None:
                    properties[prop.name] = column
            columns.append(
                _ConditionColumns(
                    config=condition,
                    start=resolve_header(condition.start_field, headers) if condition.start_field else None,
                    end=resolve_header(condition.end_field, headers) if condition.end_field else None,
                    duration=resolve_header(condition.duration_field, headers) if condition.duration_field else None,
                    properties=properties,
                )
            )
        return columns

    def _durations(self, chunk: pd.DataFrame, columns: _ConditionColumns, original_name: str) -> pd.Series:
        if columns.duration is None:
            return pd.Series(pd.Timedelta(columns.config.default_duration), index=chunk.index)
        try:
            return pd.to_timedelta(chunk[columns.duration].str.strip())
        except ValueError as e:
            raise FileProcessingError(
                f"Invalid duration in column {columns.duration} of {original_name}: {e}"
            ) from e

    def _bounds(
        self, chunk: pd.DataFrame, columns: _ConditionColumns, original_name: str
    ) -> tuple[pd.Series, pd.Series]:
        if columns.start and columns.end:
            starts = self.parse_timestamps(chunk, [columns.start], original_name)
            ends = self.parse_timestamps(chunk, [columns.end], original_name)
            index = starts.index.intersection(ends.index)
            return starts.loc[index], ends.loc[index]

        durations = self._durations(chunk, columns, original_name)
        if columns.start:
            starts = self.parse_timestamps(chunk, [columns.start], original_name)
            return starts, starts + durations.loc[starts.index]
        ends = self.parse_timestamps(chunk, [columns.end], original_name)
        return ends - durations.loc[ends.index], ends

    def read_packets(self, claimed_path: Path, original_name: str) -> Iterator[IngestionPacket]:
        prefix = self.hierarchy_prefix(claimed_path, original_name)

        for chunk in self.read_chunks(claimed_path, original_name):
            records = []
            for columns in self._columns(list(chunk.columns)):
                path = self.leaf_path(prefix, columns.config.name)
                starts, ends = self._bounds(chunk, columns, original_name)
                for index, start, end in zip(starts.index, starts, ends, strict=True):
                    properties = {}
                    for prop_name, column in columns.properties.items():
                        value = coerce_value(chunk.at[index, column])
                        if value is not None:
                            properties[prop_name] = value
                    records.append(IngestionRecord.capsule(path, to_iso(start), to_iso(end), properties))

            logger.info(f"Read {len(chunk)} rows ({len(records)} intervals) from {original_name}")
            yield IngestionPacket(filename=original_name, records=records, kind=PacketKind.CONDITIONS)
