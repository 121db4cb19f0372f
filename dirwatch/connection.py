"""A watched connection: directories, a reader and an ingestion pipeline."""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from dirwatch.context import ComponentContext
from dirwatch.exceptions import ConfigurationError, DirwatchError, FileProcessingError
from dirwatch.ingestion.pipeline import IngestionPipeline
from dirwatch.readers import get_reader
from dirwatch.watching.monitor import DirectoryTreeMonitor

if TYPE_CHECKING:
    from dirwatch.backend.base import Backend
    from dirwatch.config import ConnectionConfig
    from dirwatch.ingestion.models import PacketResult
    from dirwatch.readers.base import DataFileReader

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DirectoryWatchConnection:
    """Binds one connection config to its monitors, reader and pipeline.

    The connection is the file handler for every monitor it owns: a claimed
    file is read packet by packet and each packet is ingested before the next
    one is read. The first unsuccessful packet aborts the file, which then
    stays claimed (``.importing``) for an operator to inspect.

    Example:
        >>> connection = DirectoryWatchConnection(config, InMemoryBackend())
        >>> connection.initialize()
        >>> connection.connect()
        >>> connection.state
        <ConnectionState.CONNECTED: 'connected'>
    """

    def __init__(
        self,
        config: ConnectionConfig,
        backend: Backend,
        reader: DataFileReader | None = None,
        write_retries: int = 3,
        monitor_factory: type[DirectoryTreeMonitor] = DirectoryTreeMonitor,
    ) -> None:
        """Initialize connection.

        Args:
            config: Connection configuration
            backend: Remote backend shared by all connections
            reader: Reader to use (default: looked up by ``config.reader``)
            write_retries: Attempts for each leaf's sample/interval write
            monitor_factory: Builds the monitor for one root directory
        """
        self.config = config
        self.backend = backend
        self.reader = reader
        self.write_retries = write_retries
        self.context = ComponentContext.create(f"connection[{config.name}]")
        self.state = ConnectionState.DISCONNECTED
        self.pipeline: IngestionPipeline | None = None
        self.monitors: list[DirectoryTreeMonitor] = []
        self._monitor_factory = monitor_factory

    @property
    def name(self) -> str:
        return self.config.name

    def initialize(self) -> None:
        """Build and validate the reader and the pipeline.

        Raises:
            ConfigurationError: If the reader is unknown or rejects the config
        """
        if self.reader is None:
            self.reader = get_reader(self.config.reader, self.config)
        self.reader.initialize()

        self.pipeline = IngestionPipeline(
            self.backend,
            self.config.ingestion,
            signal_configurations=self.config.signal_configurations,
            condition_configurations=self.config.condition_configurations,
            source=self.config.name,
            write_retries=self.write_retries,
            context=self.context.child("pipeline"),
        )
        self.context.logger.info(f"Initialized with reader {self.reader.name}")

    def connect(self) -> None:
        """Create the hierarchy root and start a monitor per watched directory.

        Directories that do not exist, or that exceed the file-count ceiling,
        are logged and skipped. The connection is CONNECTED when at least one
        monitor started.
        """
        if self.pipeline is None:
            self.initialize()

        self.state = ConnectionState.CONNECTING
        if not self.config.ingestion.no_tree:
            self.pipeline.ensure_root(self.config.ingestion.root_name)

        for directory in self.config.watch.directories:
            directory = Path(directory).expanduser()
            if not directory.is_dir():
                self.context.logger.error(f"Watched directory does not exist: {directory}")
                continue

            monitor = self._monitor_factory(
                directory,
                self.config.watch,
                self,
                context=self.context.child(f"monitor[{directory.name}]"),
            )
            try:
                monitor.initialize()
            except ConfigurationError as e:
                self.context.logger.error(f"Not watching {directory}: {e}")
                monitor.stop()
                continue
            except DirwatchError as e:
                self.context.logger.error(f"Failed to start watching {directory}: {e}")
                monitor.stop()
                continue
            self.monitors.append(monitor)

        if self.monitors:
            self.state = ConnectionState.CONNECTED
            self.context.logger.info(f"Connected; watching {len(self.monitors)} root directories")
        else:
            self.state = ConnectionState.DISCONNECTED
            self.context.logger.error("No watched directory could be monitored")

    def monitor(self) -> bool:
        """Health check: connected and the backend is reachable."""
        return self.state == ConnectionState.CONNECTED and self.backend.health_check()

    def disconnect(self) -> None:
        for monitor in self.monitors:
            monitor.stop()
        self.monitors.clear()
        self.state = ConnectionState.DISCONNECTED
        self.context.logger.info("Disconnected")

    # ------------------------------------------------------------------
    # File handler
    # ------------------------------------------------------------------

    def validate_file_size(self, path: Path, original_name: str) -> None:
        self.reader.validate_file_size(path, original_name)

    def process_file(self, claimed_path: Path, original_name: str) -> list[PacketResult]:
        """Read a claimed file and ingest its packets in order.

        Returns:
            One result per packet

        Raises:
            FileProcessingError: On the first packet that did not ingest cleanly
        """
        started = time.monotonic()
        results = []
        for packet in self.reader.read_packets(claimed_path, original_name):
            result = self.pipeline.ingest(packet)
            results.append(result)
            if not result.success:
                problems = result.errors + [
                    f"{leaf.path}: {leaf.error}" for leaf in result.leaves if leaf.failed
                ]
                raise FileProcessingError(f"Ingestion of {original_name} failed: {'; '.join(problems)}")

        written = sum(leaf.items_written for result in results for leaf in result.leaves)
        self.context.logger.info(
            f"Ingested {original_name}: {len(results)} packets, {written} items "
            f"in {time.monotonic() - started:.2f}s"
        )
        return results
