"""Single-pass content digests.

Digests are rendered ``sha256:<hex>``, the same form used for every content
address in the system.
"""

from __future__ import annotations

import hashlib
import threading
from typing import BinaryIO

from appshelf.core.errors import ReconcileCancelled

DIGEST_ALGORITHM = "sha256"


class SourceReadError(OSError):
    """Reading the source stream failed mid-copy."""


class SinkWriteError(OSError):
    """Writing the destination failed mid-copy."""


class DigestingCopier:
    """Copies a stream to a sink while hashing it in a single pass.

    Read-side and write-side failures raise distinct exception types so the
    caller can tell a download fault from a disk fault.

    Parameters
    ----------
    chunk_size:
        Bytes per read.
    cancel:
        Checked between chunks; raises ``ReconcileCancelled`` when set.
    """

    def __init__(
        self, chunk_size: int = 1024 * 1024, cancel: threading.Event | None = None
    ) -> None:
        self._chunk_size = chunk_size
        self._cancel = cancel
        self._hash = hashlib.sha256()
        self.bytes_copied = 0

    @property
    def digest(self) -> str:
        return f"{DIGEST_ALGORITHM}:{self._hash.hexdigest()}"

    def copy(self, source: BinaryIO, sink: BinaryIO) -> str:
        """Copy ``source`` into ``sink``; return the digest of the bytes."""
        while True:
            if self._cancel is not None and self._cancel.is_set():
                raise ReconcileCancelled("copy cancelled")
            try:
                chunk = source.read(self._chunk_size)
            except OSError as exc:
                raise SourceReadError(str(exc)) from exc
            if not chunk:
                break
            self._hash.update(chunk)
            try:
                sink.write(chunk)
            except OSError as exc:
                raise SinkWriteError(str(exc)) from exc
            self.bytes_copied += len(chunk)
        return self.digest
