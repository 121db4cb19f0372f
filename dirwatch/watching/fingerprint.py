"""Order-independent 128-bit content fingerprints.

A fingerprint is an MD5 digest viewed as two little-endian 64-bit lanes.
Fingerprints combine by lane-wise addition modulo 2**64, which is commutative
and associative, so the fingerprint of a set of entries does not depend on the
order the filesystem enumerates them in.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

from dirwatch.exceptions import TransientIOError

_MASK = (1 << 64) - 1
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Fingerprint:
    """A 128-bit digest split into two 64-bit lanes."""

    high: int = 0
    low: int = 0

    @classmethod
    def of_bytes(cls, data: bytes | None) -> Fingerprint:
        """Fingerprint an arbitrary byte buffer (``None`` gives the empty fingerprint)."""
        if data is None:
            return cls()
        return cls._from_digest(hashlib.md5(data).digest())

    @classmethod
    def _from_digest(cls, digest: bytes) -> Fingerprint:
        return cls(
            high=int.from_bytes(digest[:8], "little"),
            low=int.from_bytes(digest[8:16], "little"),
        )

    def combine(self, other: Fingerprint) -> Fingerprint:
        """Return the lane-wise sum of two fingerprints."""
        return Fingerprint(
            high=(self.high + other.high) & _MASK,
            low=(self.low + other.low) & _MASK,
        )

    __add__ = combine

    @property
    def is_empty(self) -> bool:
        return self.high == 0 and self.low == 0

    def hexdigest(self) -> str:
        return (self.high.to_bytes(8, "little") + self.low.to_bytes(8, "little")).hex().upper()

    def __str__(self) -> str:
        return self.hexdigest()


def combine_all(fingerprints: list[Fingerprint]) -> Fingerprint:
    """Combine any number of fingerprints; the empty list gives the zero fingerprint."""
    result = Fingerprint()
    for fp in fingerprints:
        result = result.combine(fp)
    return result


def fingerprint_file(path: str | Path) -> Fingerprint:
    """Fingerprint a file's content.

    A missing path yields the empty fingerprint.

    Raises:
        TransientIOError: If the file exists but cannot be read
    """
    path = Path(path)
    if not path.is_file():
        return Fingerprint()

    md5 = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                md5.update(chunk)
    except OSError as e:
        raise TransientIOError(f"Could not read {path} for fingerprinting: {e}") from e
    return Fingerprint._from_digest(md5.digest())


def _entry_fingerprint(kind: str, name: str, size: int, mtime_ns: int) -> Fingerprint:
    return Fingerprint.of_bytes(f"{kind}\0{name}\0{size}\0{mtime_ns}".encode())


def fingerprint_directory(directory: str | Path, recursive: bool = False) -> Fingerprint:
    """Fingerprint the meaningful metadata of a directory.

    Every file contributes its name, size and modification time. Subdirectories
    always contribute their name so that a new subdirectory is noticed; when
    ``recursive`` is set their contents are folded in as well. Access times are
    ignored, so read-only access never changes the fingerprint.

    A missing directory yields the empty fingerprint.

    Raises:
        TransientIOError: If the directory or an entry cannot be read
    """
    directory = Path(directory)
    if not directory.is_dir():
        return Fingerprint()

    result = Fingerprint()
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    result = result.combine(_entry_fingerprint("D", entry.name, 0, 0))
                    if recursive:
                        result = result.combine(fingerprint_directory(entry.path, recursive=True))
                else:
                    stat = entry.stat(follow_symlinks=False)
                    result = result.combine(
                        _entry_fingerprint("F", entry.name, stat.st_size, stat.st_mtime_ns)
                    )
    except OSError as e:
        raise TransientIOError(f"Could not fingerprint directory {directory}: {e}") from e
    return result
