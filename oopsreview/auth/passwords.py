"""Salted PBKDF2-SHA256 password hashing with constant-time verification.

Salts and hashes are stored base64-encoded. The iteration count is a
process-wide constant: every stored hash is derived with the same work
factor, so verification cost never depends on which account is checked.
"""

import base64
import binascii
import hashlib
import hmac
import secrets

SALT_SIZE = 16  # 128 bits
HASH_SIZE = 32  # 256 bits
ITERATIONS = 600_000
MIN_ITERATIONS = 100_000


class InvalidPasswordInput(ValueError):
    """Raised when a password or salt cannot be hashed."""


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


class PasswordHasher:
    """Derives and checks PBKDF2-HMAC-SHA256 password hashes."""

    def __init__(self, iterations: int = ITERATIONS) -> None:
        if iterations < MIN_ITERATIONS:
            raise ValueError(f"iterations must be at least {MIN_ITERATIONS}")
        self.iterations = iterations

    @staticmethod
    def generate_salt() -> str:
        """Return a fresh random salt from the OS CSPRNG."""
        return base64.b64encode(secrets.token_bytes(SALT_SIZE)).decode("ascii")

    def hash_password(self, password: str, salt: str) -> str:
        """Hash a password with the given base64 salt."""
        if not password:
            raise InvalidPasswordInput("Password cannot be empty")
        if not salt:
            raise InvalidPasswordInput("Salt cannot be empty")
        try:
            salt_bytes = _b64decode(salt)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise InvalidPasswordInput("Salt is not valid base64") from e

        derived = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt_bytes, self.iterations, dklen=HASH_SIZE
        )
        return base64.b64encode(derived).decode("ascii")

    def verify_password(self, password: str, salt: str, expected_hash: str) -> bool:
        """Recompute the hash and compare it to ``expected_hash`` in constant time.

        A stored hash that is undecodable or of the wrong length simply fails
        to match. Unusable password or salt input raises InvalidPasswordInput.
        """
        computed = _b64decode(self.hash_password(password, salt))
        try:
            expected = _b64decode(expected_hash or "")
        except (binascii.Error, UnicodeEncodeError):
            return False
        return hmac.compare_digest(computed, expected)
