"""
Secret hashing for principal credentials using bcrypt.
"""

from typing import Optional

import bcrypt

from orgdir.config import get_settings

# Prefixes of bcrypt hashes; material carrying one is never hashed again
BCRYPT_MARKERS = ("$2a$", "$2b$", "$2y$")


class SecretHasher:
    """One-way transform applied to principal secrets before storage."""

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or get_settings().bcrypt_rounds

    @staticmethod
    def _truncate(secret: str) -> bytes:
        """
        Encode and truncate to 72 bytes.

        bcrypt only uses the first 72 bytes of its input.
        """
        return secret.encode("utf-8")[:72]

    @staticmethod
    def is_hashed(value: str) -> bool:
        """True when value already carries the bcrypt hash-format marker."""
        return value.startswith(BCRYPT_MARKERS) and len(value) == 60

    def hash(self, secret: str) -> str:
        """Hash a plain secret."""
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(self._truncate(secret), salt).decode("utf-8")

    def ensure_hashed(self, secret: str) -> str:
        """Hash secret unless it is already a bcrypt hash."""
        if self.is_hashed(secret):
            return secret
        return self.hash(secret)

    def verify(self, plain_secret: str, hashed_secret: str) -> bool:
        """
        Verify a plain secret against its stored hash.

        Malformed stored hashes verify as False.
        """
        try:
            return bcrypt.checkpw(self._truncate(plain_secret), hashed_secret.encode("utf-8"))
        except ValueError:
            return False

    def needs_rehash(self, hashed_secret: str) -> bool:
        """
        Check whether a hash was produced with a different cost factor.

        Format: $2b$XX$... where XX is the rounds.
        """
        parts = hashed_secret.split("$")
        if len(parts) < 3 or not parts[2].isdigit():
            return True
        return int(parts[2]) != self.rounds
