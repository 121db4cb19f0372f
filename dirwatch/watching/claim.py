"""Rename-based claim protocol: ``name.ext -> name.importing -> name.imported``."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from dirwatch.exceptions import DirwatchError, FileProcessingError
from dirwatch.monitoring.metrics import record_file_event

logger = logging.getLogger(__name__)

IMPORTING_SUFFIX = ".importing"
IMPORTED_SUFFIX = ".imported"


class FileHandler(Protocol):
    """Whatever turns a claimed file into backend writes."""

    def validate_file_size(self, path: Path, original_name: str) -> None: ...

    def process_file(self, claimed_path: Path, original_name: str) -> None: ...


class ClaimState(Enum):
    """Where a file is in the claim protocol. Transitions never go backwards."""

    DISCOVERED = "discovered"
    CLAIMED = "claimed"
    DONE = "done"
    ABANDONED = "abandoned"


@dataclass
class ClaimedFile:
    """A file seen by the monitor and its progress through the protocol.

    Attributes:
        original_path: Where the file was discovered
        claimed_path: Current location once renamed
        state: Claim state
        error: Failure message when the file was rejected or abandoned
    """

    original_path: Path
    claimed_path: Path | None = None
    state: ClaimState = ClaimState.DISCOVERED
    error: str | None = None

    @property
    def original_name(self) -> str:
        return self.original_path.name

    @property
    def importing_path(self) -> Path:
        return self.original_path.with_suffix(IMPORTING_SUFFIX)

    @property
    def imported_path(self) -> Path:
        return self.original_path.with_suffix(IMPORTED_SUFFIX)


def _replace(source: Path, target: Path) -> None:
    # A leftover target is assumed to be garbage from an earlier run
    if target.exists():
        logger.warning(f"Deleting stale {target} before rename")
        target.unlink()
    source.rename(target)


def claim_and_process(path: Path, handler: FileHandler) -> ClaimedFile:
    """Claim one file, hand it to the handler and mark it consumed.

    Failures never propagate: an oversized file is left where it is, and a
    file whose processing fails stays in its ``.importing`` form.

    Args:
        path: Discovered file matching the filename filter
        handler: Size check and processing callbacks

    Returns:
        The claim record in its final state
    """
    claim = ClaimedFile(original_path=Path(path))
    started = time.monotonic()

    if claim.original_path.suffix in (IMPORTING_SUFFIX, IMPORTED_SUFFIX):
        claim.error = f"{claim.original_name} already carries a claim suffix"
        logger.warning(f"Skipping {claim.original_path}: the filename filter matched a claimed file")
        return claim

    try:
        handler.validate_file_size(claim.original_path, claim.original_name)
    except (FileProcessingError, OSError) as e:
        claim.error = str(e)
        logger.error(f"Rejected {claim.original_path} before claiming: {e}")
        record_file_event("rejected")
        return claim

    try:
        _replace(claim.original_path, claim.importing_path)
        claim.claimed_path = claim.importing_path
        claim.state = ClaimState.CLAIMED

        handler.process_file(claim.claimed_path, claim.original_name)

        _replace(claim.importing_path, claim.imported_path)
        claim.claimed_path = claim.imported_path
        claim.state = ClaimState.DONE
    except Exception as e:
        claim.state = ClaimState.ABANDONED
        claim.error = str(e)
        logger.error(
            f"Processing of {claim.original_name} failed, left as {claim.claimed_path or claim.original_path}: {e}",
            exc_info=not isinstance(e, DirwatchError),
        )
        record_file_event("failed", time.monotonic() - started)
        return claim

    logger.info(f"Imported {claim.original_name} as {claim.imported_path.name}")
    record_file_event("imported", time.monotonic() - started)
    return claim


def recover_abandoned_claims(directory: Path, extension: str) -> list[Path]:
    """Rename leftover ``.importing`` files back so they are claimed again.

    Args:
        directory: Directory to sweep (non-recursive)
        extension: Extension given to each recovered file, e.g. ``.csv``

    Returns:
        The recovered file paths
    """
    recovered = []
    for importing in sorted(Path(directory).glob(f"*{IMPORTING_SUFFIX}")):
        if not importing.is_file():
            continue
        target = importing.with_suffix(extension)
        if target.exists():
            logger.warning(f"Not recovering {importing}: {target.name} already exists")
            continue
        importing.rename(target)
        logger.info(f"Recovered abandoned claim {importing.name} as {target.name}")
        recovered.append(target)
    return recovered
