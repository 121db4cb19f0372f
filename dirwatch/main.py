"""Dirwatch agent: owns the backend and every configured connection."""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from dirwatch.backend import get_backend
from dirwatch.backend.base import Backend
from dirwatch.config import AgentSettings, load_connection_configs
from dirwatch.connection import ConnectionState, DirectoryWatchConnection
from dirwatch.exceptions import ConfigurationError, DirwatchError
from dirwatch.monitoring.metrics import start_metrics_server

logger = logging.getLogger(__name__)


class DirwatchAgent:
    """Agent with lifecycle management.

    Supports backend modes for different deployment scenarios:
    - Lite mode: in-memory backend, nothing leaves the process
    - Standard mode: REST backend over HTTP

    Attributes:
        settings: Agent settings
        backend: Backend shared by all connections
        connections: Connections that were started
        shutdown_event: Event for graceful shutdown
    """

    def __init__(self, settings: AgentSettings, backend: Backend | None = None) -> None:
        """Initialize agent.

        Args:
            settings: Agent settings
            backend: Backend to use (default: built from ``settings.mode``)
        """
        self.settings = settings
        self.backend = backend or get_backend(settings.mode, settings)
        self.connections: list[DirectoryWatchConnection] = []
        self.shutdown_event = threading.Event()
        logger.info(f"Initialized {settings.mode} mode with {type(self.backend).__name__}")

    def start(self) -> None:
        """Load connection configs and connect every enabled connection.

        Raises:
            ConfigurationError: If the configuration folders cannot be loaded
        """
        logger.info("Starting Dirwatch agent")
        configs = load_connection_configs(self.settings.configuration_folders)
        if not configs:
            logger.warning("No connection configurations found")

        for config in configs:
            if not config.enabled:
                logger.info(f"Connection {config.name} is disabled, skipping")
                continue

            connection = DirectoryWatchConnection(
                config, self.backend, write_retries=self.settings.backend.write_retries
            )
            try:
                connection.initialize()
                connection.connect()
            except ConfigurationError as e:
                logger.error(f"Connection {config.name} is misconfigured, skipping: {e}")
                continue
            except DirwatchError as e:
                logger.error(f"Connection {config.name} failed to connect: {e}")
                connection.disconnect()
                continue

            if connection.state == ConnectionState.CONNECTED:
                self.connections.append(connection)

        if self.settings.metrics_enabled:
            start_metrics_server(self.settings.metrics_port)

        logger.info(f"✅ Dirwatch agent started with {len(self.connections)} connections")

    def run(self) -> None:
        """Start, then block until SIGINT/SIGTERM and stop."""
        self.start()

        logger.info("Setting up signal handlers for graceful shutdown")
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        try:
            self.shutdown_event.wait()
        finally:
            self.stop()

    def _handle_shutdown(self, signum: int, _frame: Any = None) -> None:
        """Handle shutdown signal.

        Args:
            signum: Signal number (SIGINT or SIGTERM)
            _frame: Current stack frame (unused)
        """
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown")
        self.shutdown_event.set()

    def stop(self) -> None:
        """Disconnect every connection and release the backend."""
        logger.info("Stopping connections")
        for connection in self.connections:
            connection.disconnect()
        self.connections.clear()
        self.backend.close()
        self.shutdown_event.set()
        logger.info("✅ Dirwatch agent stopped")

    def health(self) -> dict[str, bool]:
        """Health of every running connection, by name."""
        return {connection.name: connection.monitor() for connection in self.connections}
