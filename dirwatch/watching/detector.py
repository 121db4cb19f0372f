"""Debounced, fingerprint-verified change detection for a single directory."""

from __future__ import annotations

import threading
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from dirwatch.context import ComponentContext
from dirwatch.exceptions import DirwatchError, ErrorKind, TransientIOError
from dirwatch.monitoring.metrics import record_directory_change, track_detector
from dirwatch.watching.fingerprint import Fingerprint, fingerprint_directory

if TYPE_CHECKING:
    from collections.abc import Callable

# Opened/closed-without-write events are pure access and never count as changes
_CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED, EVENT_TYPE_CLOSED}
)

DEFAULT_STARTUP_TIMEOUT = 10.0


class ChangeListener(Protocol):
    """Owner notified when a watched directory meaningfully changes."""

    def on_file_modify(self, directory: Path) -> None: ...

    def on_file_delete(self, directory: Path) -> None: ...


class DetectorState(Enum):
    """Lifecycle states of a detector."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class _ChangeRecorder(FileSystemEventHandler):
    """Forwards OS notifications to the detector as bare timestamps."""

    def __init__(self, detector: DirectoryChangeDetector) -> None:
        super().__init__()
        self._detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _CHANGE_EVENTS:
            self._detector.record_change()


class DirectoryChangeDetector:
    """Watches one directory (non-recursively) and reports meaningful changes.

    OS notifications only record *when* something happened. A background loop
    wakes every ``poll_interval`` seconds; once ``debounce`` seconds have passed
    since the latest notification, the directory is re-fingerprinted and the
    listener is invoked on a fresh thread if, and only if, the fingerprint
    differs from the previous baseline. The fresh thread lets the listener stop
    this detector without deadlocking the loop.

    Example:
        >>> detector = DirectoryChangeDetector(Path("/data/in"), monitor, 5.0, 1.0)
        >>> detector.start()
        >>> # ... listener receives on_file_modify(Path("/data/in")) ...
        >>> detector.stop()
    """

    def __init__(
        self,
        directory: Path,
        listener: ChangeListener,
        poll_interval: float,
        debounce: float,
        context: ComponentContext | None = None,
        observer_factory: Callable[[], Any] = Observer,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
    ) -> None:
        """Initialize detector.

        Args:
            directory: Directory to watch; created if missing
            listener: Owner notified of meaningful changes
            poll_interval: Seconds between debounce checks
            debounce: Quiet period required after the last notification
            context: Component context (logger and lock)
            observer_factory: Builds the watchdog observer
            startup_timeout: Seconds to wait for the OS watch to be registered
        """
        self.directory = Path(directory)
        self.listener = listener
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.context = context or ComponentContext.create(f"detector[{self.directory.name}]")
        self._observer_factory = observer_factory
        self._startup_timeout = startup_timeout

        self._state = DetectorState.STOPPED
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._ready_event = threading.Event()
        self._startup_error: BaseException | None = None

        self._change_lock = threading.Lock()
        self._change_detected_at: float | None = None
        self._fingerprint = Fingerprint()

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def fingerprint(self) -> Fingerprint:
        """Baseline fingerprint the next change is compared against."""
        return self._fingerprint

    def is_running(self) -> bool:
        with self.context.lock:
            return self._thread is not None

    def record_change(self) -> None:
        """Note that the OS reported a change just now."""
        with self._change_lock:
            self._change_detected_at = time.monotonic()

    def start(self) -> None:
        """Register the OS watch and start the detection loop.

        Raises:
            DirwatchError: If the watch is not ready within the startup timeout
        """
        with self.context.lock:
            if self._thread is not None:
                return

            self._state = DetectorState.STARTING
            self.directory.mkdir(parents=True, exist_ok=True)
            try:
                self._fingerprint = fingerprint_directory(self.directory)
            except TransientIOError as e:
                self.context.logger.warning(f"Initial fingerprint failed, using empty baseline: {e}")
                self._fingerprint = Fingerprint()

            self._stop_event = threading.Event()
            self._ready_event = threading.Event()
            self._startup_error = None
            with self._change_lock:
                self._change_detected_at = None

            self._thread = threading.Thread(
                target=self._run,
                name=f"DirectoryWatcher: {self.directory}",
                daemon=True,
            )
            self._thread.start()

            if not self._ready_event.wait(self._startup_timeout) or self._startup_error is not None:
                reason = self._startup_error or "timed out waiting for the OS watch"
                self._stop_event.set()
                self._thread.join(self._startup_timeout)
                self._thread = None
                self._state = DetectorState.STOPPED
                raise DirwatchError(
                    f"Could not start change detector for {self.directory}: {reason}",
                    kind=ErrorKind.ABORT_DIRECTORY,
                )

            self._state = DetectorState.RUNNING
            self.context.logger.debug(f"Change detector started for {self.directory}")

    def stop(self) -> None:
        """Stop the detection loop and release the OS watch."""
        with self.context.lock:
            if self._thread is None:
                return

            self._stop_event.set()
            if self._thread is not threading.current_thread():
                self._thread.join()
            self._thread = None
            self._state = DetectorState.STOPPED
            self.context.logger.debug(f"Change detector stopped for {self.directory}")

    def _run(self) -> None:
        observer = None
        try:
            observer = self._observer_factory()
            observer.schedule(_ChangeRecorder(self), str(self.directory), recursive=False)
            observer.start()
        except Exception as e:
            self._startup_error = e
            self._ready_event.set()
            if observer is not None:
                observer.stop()
            return

        self._ready_event.set()
        try:
            with track_detector():
                while not self._stop_event.wait(self.poll_interval):
                    try:
                        self.check_for_change()
                    except Exception as e:
                        self.context.logger.error(
                            f"Change detector for {self.directory} encountered exception: {e}",
                            exc_info=True,
                        )
        finally:
            observer.stop()
            observer.join()

    def check_for_change(self) -> bool:
        """Run one debounce check.

        Returns:
            True if the listener was invoked
        """
        with self._change_lock:
            detected_at = self._change_detected_at
            if detected_at is None or time.monotonic() - detected_at < self.debounce:
                return False
            self._change_detected_at = None

        try:
            current = fingerprint_directory(self.directory)
        except TransientIOError as e:
            self.context.logger.warning(f"{e}; retrying on next poll")
            with self._change_lock:
                if self._change_detected_at is None:
                    self._change_detected_at = detected_at
            return False

        if current == self._fingerprint and self.directory.exists():
            self.context.logger.debug(f"Change notification for {self.directory} suppressed: content unchanged")
            record_directory_change(fired=False)
            return False

        self._fingerprint = current
        record_directory_change(fired=True)
        callback_thread = threading.Thread(
            target=self._notify,
            name=f"DirectoryWatcher callback: {self.directory}",
            daemon=True,
        )
        callback_thread.start()
        return True

    def _notify(self) -> None:
        try:
            if self.directory.exists():
                self.listener.on_file_modify(self.directory)
            else:
                self.listener.on_file_delete(self.directory)
        except Exception as e:
            self.context.logger.error(
                f"Listener for {self.directory} raised: {e}",
                exc_info=True,
            )
