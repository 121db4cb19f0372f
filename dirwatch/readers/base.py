"""Record extraction: the reader interface and shared delimited-file helpers."""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

import pandas as pd

from dirwatch.exceptions import ConfigurationError, FileProcessingError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from dirwatch.config import ConditionConfig, ConnectionConfig, SignalConfig
    from dirwatch.ingestion.models import IngestionPacket

logger = logging.getLogger(__name__)

# Some exporters terminate files with an ASCII SUB character
_SOFT_EOF = "\x1a"


def resolve_header(expression: str, headers: Sequence[str], required: bool = True) -> str | None:
    """Find the single header matching an expression.

    An expression wrapped in slashes (``/Temp.*/``) is a regular expression;
    anything else must match a header exactly.

    Args:
        expression: Header name or ``/regex/``
        headers: Headers present in the file
        required: Raise instead of returning None when nothing matches

    Returns:
        The matching header, or None if not required and absent

    Raises:
        FileProcessingError: On more than one match, or no match when required
    """
    if len(expression) > 2 and expression.startswith("/") and expression.endswith("/"):
        pattern = re.compile(expression[1:-1])
        matches = [header for header in headers if pattern.search(header)]
    else:
        matches = [header for header in headers if header == expression]

    if len(matches) > 1:
        raise FileProcessingError(f"Header expression {expression} matched more than one header: {matches}")
    if not matches:
        if required:
            raise FileProcessingError(
                f"Header expression {expression} did not match any of the available headers in the file"
            )
        return None
    return matches[0]


def coerce_value(text: Any) -> int | float | str | None:
    """Convert a raw cell to int, float or str; blank or non-finite cells give None."""
    if text is None:
        return None
    text = str(text).strip()
    if not text or text == _SOFT_EOF:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else None


def to_iso(moment: pd.Timestamp) -> str:
    return moment.isoformat()


class DataFileReader(ABC):
    """Turns a claimed file into IngestionPackets.

    Readers are constructed from a connection configuration and depend only on
    its ``extraction`` options, leaf definitions and ingestion policy.
    """

    name: ClassVar[str]
    extraction_type: ClassVar[type]

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self.extraction = config.extraction
        self.options = config.ingestion
        self.max_file_size_bytes = config.watch.max_file_size_kb * 1024

    @property
    def signal_configurations(self) -> list[SignalConfig] | None:
        return self.config.signal_configurations

    @property
    def condition_configurations(self) -> list[ConditionConfig] | None:
        return self.config.condition_configurations

    def initialize(self) -> None:
        """Validate settings common to every file.

        Raises:
            ConfigurationError: If the extraction options belong to another reader
        """
        if not isinstance(self.extraction, self.extraction_type):
            raise ConfigurationError(
                f"Reader {self.name} needs extraction strategy "
                f"'{self.extraction_type.model_fields['strategy'].default}', "
                f"got '{self.extraction.strategy}'"
            )

    def validate_file_size(self, path: Path, original_name: str) -> None:
        """Reject files larger than the configured ceiling.

        Raises:
            FileProcessingError: If the file is too large
        """
        size = Path(path).stat().st_size
        if size > self.max_file_size_bytes:
            raise FileProcessingError(
                f"File {original_name} is {size // 1024} KB, which exceeds the maximum of "
                f"{self.max_file_size_bytes // 1024} KB"
            )

    @abstractmethod
    def read_packets(self, claimed_path: Path, original_name: str) -> Iterator[IngestionPacket]:
        """Parse a claimed file into packets of at most ``records_per_packet`` rows."""
        ...

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def read_chunks(self, path: Path, original_name: str) -> Iterator[pd.DataFrame]:
        """Yield the data rows of a delimited file, ``records_per_packet`` at a time.

        Rows before the header row and between the header and the first data
        row are skipped. Every cell is read as a string.
        """
        ex = self.extraction
        skip = list(range(ex.header_row - 1)) + list(range(ex.header_row, ex.first_data_row - 1))
        try:
            with pd.read_csv(
                path,
                sep=ex.delimiter,
                skiprows=skip,
                header=0,
                dtype=str,
                keep_default_na=False,
                chunksize=ex.records_per_packet,
                engine="python",
            ) as chunks:
                for chunk in chunks:
                    yield chunk.rename(columns=lambda c: str(c).strip())
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise FileProcessingError(f"Failed to parse {original_name}: {e}") from e

    def parse_timestamps(self, frame: pd.DataFrame, columns: list[str], original_name: str) -> pd.Series:
        """Join and parse timestamp columns into UTC timestamps.

        Rows with a blank timestamp are dropped. Naive timestamps are localized
        to ``time_zone`` (UTC when unset).

        Raises:
            FileProcessingError: If a timestamp does not match ``timestamp_format``
        """
        ex = self.extraction
        if frame.empty:
            return pd.Series(dtype="datetime64[ns, UTC]")
        joined = frame[columns].astype(str).agg(" ".join, axis=1).str.strip()
        present = joined[(joined != "") & (joined != _SOFT_EOF)]
        if len(present) < len(joined):
            logger.debug(f"Skipping {len(joined) - len(present)} rows without timestamps in {original_name}")

        try:
            parsed = pd.to_datetime(present, format=ex.timestamp_format)
            if parsed.dt.tz is None:
                parsed = parsed.dt.tz_localize(ex.time_zone or "UTC")
            return parsed.dt.tz_convert("UTC")
        except Exception as e:
            raise FileProcessingError(
                f"Timestamps from columns {columns} did not conform to format "
                f"{ex.timestamp_format or '(inferred)'} in file {original_name}: {e}"
            ) from e

    def hierarchy_prefix(self, claimed_path: Path, original_name: str) -> list[str]:
        """Path segments above the leaf: the root, then optionally directory parts."""
        segments = [self.options.root_name]
        ex = self.extraction
        if not ex.use_file_path_for_hierarchy:
            return segments

        directory = Path(claimed_path).resolve().parent
        if ex.file_path_hierarchy_root is None:
            segments.append(directory.name)
        else:
            root = Path(ex.file_path_hierarchy_root).resolve()
            try:
                segments.extend(directory.relative_to(root).parts)
            except ValueError:
                raise FileProcessingError(
                    f"File {original_name} in {directory} is not under file_path_hierarchy_root {root}"
                ) from None
        if ex.file_path_hierarchy_includes_filename:
            segments.append(Path(original_name).stem)
        return segments

    def leaf_path(self, prefix: list[str], leaf_name: str) -> str:
        return self.options.path_separator.join([*prefix, leaf_name])

    def keep_value(self, value: Any) -> bool:
        """Whether a cell should become a sample (blanks only with post-invalid)."""
        return value is not None or self.options.post_invalid_samples_instead_of_skipping
