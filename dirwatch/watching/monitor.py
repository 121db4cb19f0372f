"""Directory tree monitor: one change detector per watched directory."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dirwatch.context import ComponentContext
from dirwatch.exceptions import ConfigurationError, DirwatchError
from dirwatch.watching.claim import ClaimedFile, FileHandler, claim_and_process, recover_abandoned_claims
from dirwatch.watching.detector import DirectoryChangeDetector

if TYPE_CHECKING:
    from collections.abc import Callable

    from dirwatch.config import WatchConfig


class DirectoryTreeMonitor:
    """Watches a root directory (and optionally its subdirectories) for data files.

    Every detector callback funnels through a single lock, so the detector set
    and file claiming for this tree are serialized. Monitors for different
    roots share nothing and run fully in parallel.

    The monitor never trusts the kind of event it was told about: on every
    callback it re-enumerates subdirectories and rescans the triggering
    directory.
    """

    def __init__(
        self,
        root: Path,
        watch: WatchConfig,
        handler: FileHandler,
        context: ComponentContext | None = None,
        detector_factory: Callable[..., Any] = DirectoryChangeDetector,
    ) -> None:
        """Initialize monitor.

        Args:
            root: Root directory of the tree
            watch: Watch configuration (filters, intervals, ceilings)
            handler: Validates and processes each claimed file
            context: Component context (logger and lock)
            detector_factory: Builds a detector for one directory
        """
        self.root = Path(root).resolve()
        self.watch = watch
        self.handler = handler
        self.context = context or ComponentContext.create(f"monitor[{self.root.name}]")
        self._detector_factory = detector_factory
        self._filename_regex = re.compile(watch.filename_filter)
        self._subdirectory_regex = re.compile(watch.subdirectory_filter)
        self._detectors: dict[Path, Any] = {}
        self._stopped = False

    @property
    def watched_directories(self) -> list[Path]:
        with self.context.lock:
            return sorted(self._detectors)

    def matched_directories(self) -> list[Path]:
        """Directories this monitor should currently watch, root first."""
        if not self.watch.include_subdirectories:
            return [self.root]

        matched = []
        for current, _dirs, _files in os.walk(self.root):
            path = Path(current)
            if self._subdirectory_regex.search(str(path)):
                matched.append(path)
        return sorted(matched)

    def initialize(self) -> None:
        """Enforce the file-count ceiling, start detectors and scan existing files.

        Raises:
            ConfigurationError: If any matched directory holds more files than
                allowed; no detector is started in that case
        """
        with self.context.lock:
            directories = self.matched_directories()
            for directory in directories:
                self._check_file_count(directory)

            self._stopped = False
            for directory in directories:
                if self.watch.recover_abandoned_claims:
                    recover_abandoned_claims(directory, self.watch.recovered_extension)
                # Detector first, so a file landing mid-scan is not already in its baseline
                self._start_detector(directory)
                self.scan_directory(directory)

            self.context.logger.info(f"Monitoring {len(self._detectors)} directories under {self.root}")

    def _check_file_count(self, directory: Path) -> None:
        file_count = sum(1 for entry in directory.iterdir() if entry.is_file())
        if file_count > self.watch.max_files_per_directory:
            self.context.logger.error(
                f"Directory '{directory}' has {file_count} files which exceeds the maximum allowed: "
                f"{self.watch.max_files_per_directory}"
            )
            raise ConfigurationError(
                f"The number of files in {directory} ({file_count}) exceeds the configured limit "
                f"of {self.watch.max_files_per_directory}"
            )

    def _start_detector(self, directory: Path) -> None:
        detector = self._detector_factory(
            directory,
            self,
            self.watch.poll_interval_seconds,
            self.watch.debounce_seconds,
            context=self.context.child(f"detector[{directory.name}]"),
        )
        detector.start()
        self._detectors[directory] = detector

    def on_file_modify(self, directory: Path) -> None:
        self._on_change(directory)

    def on_file_delete(self, directory: Path) -> None:
        self._on_change(directory)

    def _on_change(self, directory: Path) -> None:
        with self.context.lock:
            if self._stopped:
                return

            if self.watch.include_subdirectories:
                self._refresh_detectors()

            if Path(directory).is_dir():
                self.scan_directory(Path(directory))

    def _refresh_detectors(self) -> None:
        current = set(self.matched_directories())
        known = set(self._detectors)

        for directory in sorted(current - known):
            self.context.logger.info(f"Started watching new directory {directory}")
            try:
                self._start_detector(directory)
            except DirwatchError as e:
                self.context.logger.error(f"Could not watch {directory}: {e}")
            self.scan_directory(directory)

        for directory in sorted(known - current):
            self.context.logger.info(f"Stopped watching removed directory {directory}")
            self._detectors.pop(directory).stop()

    def scan_directory(self, directory: Path) -> list[ClaimedFile]:
        """Claim and process every matching file directly inside ``directory``."""
        try:
            candidates = sorted(
                entry for entry in directory.iterdir()
                if entry.is_file() and self._filename_regex.search(entry.name)
            )
        except OSError as e:
            self.context.logger.warning(f"Could not list {directory}, will retry on next change: {e}")
            return []

        return [claim_and_process(path, self.handler) for path in candidates]

    def stop(self) -> None:
        """Stop every detector. In-flight file processing runs to completion."""
        with self.context.lock:
            self._stopped = True
            for detector in self._detectors.values():
                detector.stop()
            self._detectors.clear()
            self.context.logger.info(f"Stopped monitoring {self.root}")
