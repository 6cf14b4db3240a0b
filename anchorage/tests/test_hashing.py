"""Tests for content hashing."""

from __future__ import annotations

import hashlib
import io
from pathlib import Path

import pytest

from anchorage.errors import InvalidDigest
from anchorage.hashing import ContentHasher, compute_digest, is_digest, normalize_digest


class TestComputeDigest:
    def test_matches_sha256_hex(self) -> None:
        assert compute_digest(b"pdf-A") == hashlib.sha256(b"pdf-A").hexdigest()

    def test_is_deterministic(self) -> None:
        assert compute_digest(b"same bytes") == compute_digest(b"same bytes")

    def test_text_is_utf8_encoded(self) -> None:
        assert compute_digest("héllo") == hashlib.sha256("héllo".encode("utf-8")).hexdigest()

    def test_stream_and_path_match_bytes(self, tmp_path: Path) -> None:
        payload = b"x" * 200_000
        path = tmp_path / "big.bin"
        path.write_bytes(payload)

        hasher = ContentHasher(chunk_size=4096)
        expected = hashlib.sha256(payload).hexdigest()
        assert hasher.digest(io.BytesIO(payload)) == expected
        assert hasher.digest(path) == expected

    def test_rejects_non_positive_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            ContentHasher(chunk_size=0)


class TestNormalizeDigest:
    def test_lowercases_and_strips_prefix(self) -> None:
        digest = compute_digest(b"abc")
        assert normalize_digest("0x" + digest.upper()) == digest

    @pytest.mark.parametrize("value", ["", "abc", "z" * 64, "0x" + "a" * 63])
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(InvalidDigest):
            normalize_digest(value)

    def test_is_digest_requires_canonical_form(self) -> None:
        digest = compute_digest(b"abc")
        assert is_digest(digest)
        assert not is_digest(digest.upper())
