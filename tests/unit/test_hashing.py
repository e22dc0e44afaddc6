"""Tests for content addressing."""

import hashlib

from changeflow.hashing import hash_bytes, hash_file, short_hash

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


class TestHashBytes:
    """Tests for hash_bytes."""

    def test_known_digest(self):
        """SHA-256 hex digest of a known input."""
        assert hash_bytes(b"abc") == ABC_SHA256

    def test_deterministic(self):
        """Same bytes always give the same digest."""
        assert hash_bytes(b"payload") == hash_bytes(b"payload")
        assert hash_bytes(b"payload") != hash_bytes(b"payload ")


class TestHashFile:
    """Tests for hash_file."""

    def test_matches_hash_bytes(self, tmp_path):
        """File digest equals the digest of its bytes."""
        path = tmp_path / "data.bin"
        data = bytes(range(256)) * 10
        path.write_bytes(data)

        assert hash_file(path) == hash_bytes(data)
        assert hash_file(path) == hashlib.sha256(data).hexdigest()

    def test_missing_file_is_none(self, tmp_path):
        """Missing file yields None, not an error."""
        assert hash_file(tmp_path / "missing.txt") is None

    def test_directory_is_none(self, tmp_path):
        """A directory is not hashable."""
        assert hash_file(tmp_path) is None

    def test_empty_file(self, tmp_path):
        """Empty file hashes like empty bytes."""
        path = tmp_path / "empty"
        path.write_bytes(b"")
        assert hash_file(path) == hash_bytes(b"")


class TestShortHash:
    """Tests for short_hash."""

    def test_truncates(self):
        assert short_hash(ABC_SHA256) == "ba7816b"
        assert short_hash(ABC_SHA256, length=4) == "ba78"

    def test_none_is_placeholder(self):
        assert short_hash(None) == "N/A"
        assert short_hash("") == "N/A"
