"""Error taxonomy for the dirwatch agent.

Every error carries an explicit :class:`ErrorKind` describing how far the
failure reaches:

- ``ABORT_DIRECTORY`` - configuration problems; the affected directory is not
  monitored.
- ``ABORT_FILE`` - the file (or packet) being processed is abandoned; it stays
  claimed as ``.importing``.
- ``ABORT_LEAF`` - one series or condition in a packet failed; the remaining
  leaves are still attempted.
- ``TRANSIENT`` - retried implicitly on the next poll cycle.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """How far a failure propagates."""

    ABORT_DIRECTORY = "abort_directory"
    ABORT_FILE = "abort_file"
    ABORT_LEAF = "abort_leaf"
    TRANSIENT = "transient"


class DirwatchError(Exception):
    """Base class for all dirwatch errors."""

    kind: ErrorKind = ErrorKind.ABORT_FILE

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ConfigurationError(DirwatchError):
    """Bad predicates, duplicate ids, or a ceiling exceeded at startup."""

    kind = ErrorKind.ABORT_DIRECTORY


class FileProcessingError(DirwatchError):
    """A claimed file could not be parsed or ingested."""

    kind = ErrorKind.ABORT_FILE


class StructuralBatchError(DirwatchError):
    """A paged node, leaf or relationship upsert failed.

    Sample writes depend on the hierarchy, so the whole packet is abandoned.
    """

    kind = ErrorKind.ABORT_FILE


class LeafIngestionError(DirwatchError):
    """Validation or write failure isolated to a single leaf."""

    kind = ErrorKind.ABORT_LEAF

    def __init__(self, message: str, leaf_path: str | None = None) -> None:
        super().__init__(message)
        self.leaf_path = leaf_path


class TransientIOError(DirwatchError):
    """Filesystem hiccup that the next poll cycle will retry."""

    kind = ErrorKind.TRANSIENT


class BackendError(DirwatchError):
    """The remote backend rejected or failed a call."""

    kind = ErrorKind.ABORT_FILE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CircuitBreakerError(BackendError):
    """Raised when the circuit breaker is open and blocks a call."""

    def __init__(self, message: str, state: object) -> None:
        super().__init__(message)
        self.state = state
