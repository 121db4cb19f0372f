"""Dirwatch configuration management with environment variable overrides.

This module provides centralized configuration management with support for:
- Environment variable overrides (highest priority)
- YAML config file loading for agent settings
- One YAML/JSON file per watched connection in the configuration folders
- Pydantic validation

Priority order for agent settings:
1. Environment variables (DIRWATCH_*)
2. YAML config file
3. .env file
4. Pydantic defaults (lowest priority)
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections import Counter
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from dirwatch.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Matches anything that doesn't end in .imported or .importing
DEFAULT_FILENAME_FILTER = r"^(?!.*\.imported$)(?!.*\.importing$).*$"
DEFAULT_SUBDIRECTORY_FILTER = ".*"
MAX_PAGE_SIZE = 1000


class BackendSettings(BaseModel):
    """Remote backend connection settings.

    Attributes:
        base_url: Root URL of the time-series backend REST API
        api_token: Bearer token sent with every request
        timeout_seconds: Per-request timeout
        page_size: Maximum items per batched upsert call
        write_retries: Attempts for one leaf's sample/interval write
        failure_threshold: Consecutive failures before the circuit opens
        reset_timeout_seconds: Seconds before an open circuit is probed again
    """

    base_url: str = Field(default_factory=lambda: os.getenv("DIRWATCH_BACKEND_URL", "http://localhost:34216"))
    api_token: str | None = Field(default_factory=lambda: os.getenv("DIRWATCH_BACKEND_TOKEN"))
    timeout_seconds: float = Field(default=60.0, gt=0)
    page_size: int = Field(default=MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    write_retries: int = Field(default=3, ge=1, le=10)
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_seconds: float = Field(default=30.0, gt=0)


class AgentSettings(BaseSettings):
    """Agent-level settings.

    Attributes:
        mode: Backend mode (lite = in-memory, standard = HTTP)
        configuration_folders: Folders holding one connection config per file
        backend: Remote backend settings
        metrics_enabled: Expose Prometheus metrics
        metrics_port: Port for the Prometheus scrape endpoint
        log_level: Root log level
        environment: Deployment environment label
    """

    mode: str = "standard"
    configuration_folders: list[Path] = Field(default_factory=list)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    metrics_enabled: bool = False
    metrics_port: int = Field(default=9464, ge=1, le=65535)
    log_level: str = "INFO"
    environment: str = Field(default_factory=lambda: os.getenv("DIRWATCH_ENVIRONMENT", "development"))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_prefix="dirwatch_",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Rank environment variables above init values, which carry the YAML file."""
        return env_settings, init_settings, dotenv_settings, file_secret_settings


# ============================================================================
# Per-connection configuration
# ============================================================================


def _compile(pattern: str, field_name: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ValueError(f"{field_name} is not a valid regular expression: {e}") from e
    return pattern


class WatchConfig(BaseModel):
    """What to watch and how often.

    Attributes:
        directories: Root directories to watch
        include_subdirectories: Watch matching subdirectories too
        filename_filter: Regex a file name must match to be claimed
        subdirectory_filter: Regex a subdirectory's full path must match
        poll_interval_seconds: How often the detection loop wakes up
        debounce_seconds: Quiet period after the last event before re-fingerprinting
        max_files_per_directory: Startup ceiling on files per watched directory
        max_file_size_kb: Files larger than this are rejected before claiming
        recover_abandoned_claims: Rename leftover .importing files back on startup
        recovered_extension: Extension given to recovered files
    """

    model_config = {"frozen": True}

    directories: list[Path] = Field(..., min_length=1)
    include_subdirectories: bool = False
    filename_filter: str = DEFAULT_FILENAME_FILTER
    subdirectory_filter: str = DEFAULT_SUBDIRECTORY_FILTER
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    debounce_seconds: float = Field(default=1.0, ge=0)
    max_files_per_directory: int = Field(default=500, ge=1)
    max_file_size_kb: int = Field(default=50, ge=1)
    recover_abandoned_claims: bool = False
    recovered_extension: str = ".csv"

    @field_validator("filename_filter", "subdirectory_filter", mode="before")
    @classmethod
    def default_blank_filters(cls, v: Any, info: ValidationInfo) -> Any:
        """Treat blank filters as unconfigured and validate the regex."""
        if v is None or (isinstance(v, str) and not v.strip()):
            if info.field_name == "filename_filter":
                return DEFAULT_FILENAME_FILTER
            return DEFAULT_SUBDIRECTORY_FILTER
        return _compile(v, info.field_name)

    @field_validator("recovered_extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        if not v.startswith(".") or v in (".importing", ".imported"):
            raise ValueError("recovered_extension must start with '.' and not be a claim suffix")
        return v


class SignalConfig(BaseModel):
    """Leaf definition for a series (scalar signal)."""

    name: str = Field(..., min_length=1)
    name_in_file: str | None = None
    description: str | None = None
    unit: str | None = None
    interpolation: Literal["linear", "step"] = "linear"
    maximum_interpolation: str | None = None
    required: bool = False


class CapsulePropertyConfig(BaseModel):
    """A property carried by each interval of a condition."""

    name: str = Field(..., min_length=1)
    name_in_file: str | None = None
    unit: str | None = None
    required: bool = False


class ConditionConfig(BaseModel):
    """Leaf definition for a condition (bounded intervals)."""

    name: str = Field(..., min_length=1)
    start_field: str | None = None
    end_field: str | None = None
    duration_field: str | None = None
    default_duration: str | None = None
    maximum_duration: str = "1d"
    required: bool = False
    capsule_properties: list[CapsulePropertyConfig] = Field(default_factory=list)


class IngestionOptions(BaseModel):
    """Caller policy for the ingestion pipeline.

    Attributes:
        path_separator: Separator splitting target names into hierarchy segments
        root_name: Name of the tree root created once when the connection starts
        skip_bad_samples: Skip malformed samples instead of failing the packet
        post_invalid_samples_instead_of_skipping: Post malformed samples as nulls
        throw_on_invalid_timestamps: Invalid interval bounds fail the packet
        ignore_unspecified_properties: Allow interval properties not declared in config
        no_tree: Create leaves only, without hierarchy nodes or relationships
    """

    path_separator: str = Field(default=">>", min_length=1)
    root_name: str = "Dirwatch"
    skip_bad_samples: bool = True
    post_invalid_samples_instead_of_skipping: bool = False
    throw_on_invalid_timestamps: bool = False
    ignore_unspecified_properties: bool = True
    no_tree: bool = False


# Extraction strategies (tagged union over reader options)


class _CsvOptions(BaseModel):
    header_row: int = Field(default=1, ge=1)
    first_data_row: int = Field(default=2, ge=2)
    delimiter: str = ","
    timestamp_headers: list[str] = Field(default_factory=lambda: ["Timestamp"])
    timestamp_format: str | None = None
    time_zone: str | None = None
    records_per_packet: int = Field(default=10_000, ge=1)
    use_file_path_for_hierarchy: bool = False
    file_path_hierarchy_root: Path | None = None
    file_path_hierarchy_includes_filename: bool = False

    @field_validator("timestamp_headers", mode="before")
    @classmethod
    def split_headers(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [h.strip() for h in v.split(",") if h.strip()]
        return v

    @model_validator(mode="after")
    def check_rows(self) -> "_CsvOptions":
        if self.header_row >= self.first_data_row:
            raise ValueError("first_data_row must be greater than header_row")
        return self


class TimestampTagsExtraction(_CsvOptions):
    """Wide layout: timestamp column(s) followed by one column per signal."""

    strategy: Literal["timestamp_tags"] = "timestamp_tags"
    enforce_timestamp_order: bool = True


class NarrowExtraction(_CsvOptions):
    """Narrow layout: timestamp, signal name, value."""

    strategy: Literal["narrow"] = "narrow"
    signal_name_header: str = "Signal"
    value_header: str = "Value"
    signal_prefix: str = ""


class ConditionsExtraction(_CsvOptions):
    """One row per interval with start, end/duration and property columns."""

    strategy: Literal["conditions"] = "conditions"


ExtractionStrategy = Annotated[
    TimestampTagsExtraction | NarrowExtraction | ConditionsExtraction,
    Field(discriminator="strategy"),
]


class ConnectionConfig(BaseModel):
    """One watched source: directories, reader, leaf definitions and policy."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str | None = None
    enabled: bool = True
    watch: WatchConfig
    reader: str = Field(..., min_length=1)
    extraction: ExtractionStrategy
    signal_configurations: list[SignalConfig] | None = None
    condition_configurations: list[ConditionConfig] | None = None
    ingestion: IngestionOptions = Field(default_factory=IngestionOptions)

    @model_validator(mode="after")
    def check_leaf_definitions(self) -> "ConnectionConfig":
        """A connection ingests either series or conditions, never both."""
        if self.signal_configurations is not None and self.condition_configurations is not None:
            raise ValueError(
                f"Connection {self.id} has both signal_configurations and condition_configurations"
            )
        return self

    @property
    def ingests_conditions(self) -> bool:
        return self.condition_configurations is not None


# ============================================================================
# Loading
# ============================================================================


def load_config_from_file(config_path: str | Path) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary (empty if the file does not exist)

    Raises:
        ConfigurationError: If the file exists but cannot be parsed
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    logger.info(f"Loaded configuration from {config_path}")
    return config


def _read_connection_file(path: Path) -> ConnectionConfig:
    try:
        text = path.read_text(encoding="utf-8")
        raw = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read connection config {path}: {e}") from e

    try:
        return ConnectionConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid connection config {path}: {e}") from e


def load_connection_configs(folders: list[Path]) -> list[ConnectionConfig]:
    """Read every connection config file found in the given folders.

    Args:
        folders: Configuration folders to scan (non-recursive)

    Returns:
        Parsed connection configurations, sorted by file name within a folder

    Raises:
        ConfigurationError: On an unreadable or invalid file, or duplicate ids
    """
    configs: list[ConnectionConfig] = []
    for folder in folders:
        folder = Path(folder).expanduser()
        if not folder.is_dir():
            logger.error(f"Configuration folder does not exist: {folder}")
            continue

        for path in sorted(folder.iterdir()):
            if path.suffix.lower() not in (".yaml", ".yml", ".json") or not path.is_file():
                continue
            configs.append(_read_connection_file(path))
            logger.debug(f"Loaded connection config {path}")

    counts = Counter(c.id for c in configs)
    duplicates = sorted(config_id for config_id, n in counts.items() if n > 1)
    if duplicates:
        raise ConfigurationError(f"Duplicate connection ids in configuration: {', '.join(duplicates)}")

    return configs


def get_settings(config_path: str | Path | None = None) -> AgentSettings:
    """Get agent settings.

    Args:
        config_path: Optional path to YAML settings file

    Returns:
        AgentSettings instance

    Raises:
        ConfigurationError: If the file cannot be read or a setting is invalid
    """
    file_config = load_config_from_file(config_path) if config_path else {}
    try:
        return AgentSettings(**file_config)
    except ValidationError as e:
        source = config_path or "environment"
        raise ConfigurationError(f"Invalid agent settings from {source}: {e}") from e
