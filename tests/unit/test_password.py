"""Unit tests for secret hashing."""

import pytest

from orgdir.kernel.identity.password import SecretHasher


@pytest.fixture
def hasher():
    return SecretHasher(rounds=4)


class TestSecretHasher:
    """Tests for SecretHasher."""

    def test_hash_creates_different_hashes(self, hasher):
        """Same secret should create different hashes (due to salt)."""
        hash1 = hasher.hash("TestPassword123")
        hash2 = hasher.hash("TestPassword123")

        assert hash1 != hash2
        assert hash1.startswith("$2b$")  # bcrypt prefix

    def test_verify_correct_secret(self, hasher):
        hashed = hasher.hash("TestPassword123")
        assert hasher.verify("TestPassword123", hashed) is True

    def test_verify_wrong_secret(self, hasher):
        hashed = hasher.hash("TestPassword123")
        assert hasher.verify("WrongPassword", hashed) is False

    def test_verify_malformed_hash(self, hasher):
        assert hasher.verify("TestPassword123", "not-a-hash") is False

    def test_ensure_hashed_is_idempotent(self, hasher):
        """Material already carrying the bcrypt marker is not hashed twice."""
        hashed = hasher.ensure_hashed("TestPassword123")
        assert hasher.is_hashed(hashed)
        assert hasher.ensure_hashed(hashed) == hashed

    def test_plain_secret_with_marker_prefix_is_still_hashed(self, hasher):
        plain = "$2b$not really a hash"
        assert not hasher.is_hashed(plain)
        assert hasher.ensure_hashed(plain) != plain

    def test_needs_rehash(self, hasher):
        hashed = hasher.hash("TestPassword123")
        assert hasher.needs_rehash(hashed) is False
        assert SecretHasher(rounds=5).needs_rehash(hashed) is True
