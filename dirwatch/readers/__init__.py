"""Data file readers.

Readers are looked up by name in an explicit registry populated at import
time. Additional readers register themselves with :func:`register_reader`.
"""

from __future__ import annotations

from collections.abc import Callable

from dirwatch.config import ConnectionConfig
from dirwatch.exceptions import ConfigurationError
from dirwatch.readers.base import DataFileReader, coerce_value, resolve_header
from dirwatch.readers.conditions import ConditionsCsvReader
from dirwatch.readers.narrow import NarrowFileReader
from dirwatch.readers.timestamp_tags import TimestampTagsCsvReader

ReaderFactory = Callable[[ConnectionConfig], DataFileReader]

# Reader registry
_READER_REGISTRY: dict[str, ReaderFactory] = {}


def register_reader(name: str, factory: ReaderFactory) -> None:
    """Register a reader factory under a name.

    Raises:
        ValueError: If the name is already registered
    """
    if name in _READER_REGISTRY:
        raise ValueError(f"Reader already registered: {name}")
    _READER_REGISTRY[name] = factory


def get_reader(name: str, config: ConnectionConfig) -> DataFileReader:
    """Build the named reader for a connection.

    Raises:
        ConfigurationError: If no reader is registered under that name

    Examples:
        >>> reader = get_reader("NarrowFileReader", config)
        >>> reader.name
        'NarrowFileReader'
    """
    factory = _READER_REGISTRY.get(name)
    if factory is None:
        raise ConfigurationError(f"Unknown reader: {name}. Available readers: {', '.join(list_readers())}")
    return factory(config)


def list_readers() -> list[str]:
    """List registered reader names."""
    return sorted(_READER_REGISTRY)


for _reader in (TimestampTagsCsvReader, NarrowFileReader, ConditionsCsvReader):
    register_reader(_reader.name, _reader)


__all__ = [
    "ConditionsCsvReader",
    "DataFileReader",
    "NarrowFileReader",
    "TimestampTagsCsvReader",
    "coerce_value",
    "get_reader",
    "list_readers",
    "register_reader",
    "resolve_header",
]
