"""
Content hashing for submitted artifacts.

The digest is both the dedup key in the artifact store and the payload
anchored on the ledger, so it must be stable: sha256, lowercase hex.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Any, BinaryIO

from .errors import InvalidDigest

DEFAULT_CHUNK_SIZE = 64 * 1024

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def is_digest(value: str) -> bool:
    """Check whether value is a canonical (lowercase, unprefixed) digest."""
    return bool(_DIGEST_RE.match(value))


def normalize_digest(value: str) -> str:
    """
    Canonicalize a digest string.

    Accepts an optional ``0x`` prefix and any letter case.

    Raises:
        InvalidDigest: If the value is not a sha256 hex digest
    """
    candidate = value.strip().lower()
    if candidate.startswith("0x"):
        candidate = candidate[2:]
    if not is_digest(candidate):
        raise InvalidDigest(f"Not a sha256 hex digest: {value!r}")
    return candidate


class ContentHasher:
    """
    Streaming sha256 hasher.

    File objects and paths are read in chunks so large uploads never need
    to be resident in memory.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def digest(self, data: bytes | str | BinaryIO | Path) -> str:
        """
        Compute the sha256 digest of data.

        Args:
            data: Raw bytes, text (utf-8 encoded), a binary file object,
                or a path to a file

        Returns:
            Lowercase hex sha256 digest
        """
        h = hashlib.sha256()
        if isinstance(data, str):
            data = data.encode("utf-8")
        if isinstance(data, (bytes, bytearray, memoryview)):
            h.update(data)
        elif isinstance(data, Path):
            with data.open("rb") as f:
                self._consume(h, f)
        else:
            self._consume(h, data)
        return h.hexdigest()

    def _consume(self, h: Any, stream: BinaryIO) -> None:
        while True:
            chunk = stream.read(self.chunk_size)
            if not chunk:
                break
            h.update(chunk)


_default_hasher = ContentHasher()


def compute_digest(data: bytes | str | BinaryIO | Path) -> str:
    """Compute sha256 digest with the default chunk size."""
    return _default_hasher.digest(data)
