"""Directory watching: fingerprints, change detection, tree monitoring and claims."""

from dirwatch.watching.claim import (
    ClaimedFile,
    ClaimState,
    FileHandler,
    claim_and_process,
    recover_abandoned_claims,
)
from dirwatch.watching.detector import ChangeListener, DetectorState, DirectoryChangeDetector
from dirwatch.watching.fingerprint import (
    Fingerprint,
    combine_all,
    fingerprint_directory,
    fingerprint_file,
)
from dirwatch.watching.monitor import DirectoryTreeMonitor

__all__ = [
    "ChangeListener",
    "ClaimState",
    "ClaimedFile",
    "DetectorState",
    "DirectoryChangeDetector",
    "DirectoryTreeMonitor",
    "FileHandler",
    "Fingerprint",
    "claim_and_process",
    "combine_all",
    "fingerprint_directory",
    "fingerprint_file",
    "recover_abandoned_claims",
]
