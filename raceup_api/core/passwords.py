"""Password hashing: PBKDF2-HMAC-SHA256, stored as ``salt_hex:key_hex``.

Hashes created with a non-default iteration count are stored as
``iterations$salt_hex:key_hex`` so the count can be raised later without
breaking verification of existing hashes.
"""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Callable
from functools import lru_cache

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

PBKDF2_ITERATIONS = 50_000
SALT_LENGTH = 16
KEY_LENGTH = 32  # 256 bits


def _derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def hash_password(
    password: str,
    iterations: int = PBKDF2_ITERATIONS,
    random_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> str:
    """Hash password with a fresh random salt."""
    salt = random_bytes(SALT_LENGTH)
    key = _derive_key(password, salt, iterations)
    encoded = f"{salt.hex()}:{key.hex()}"
    if iterations != PBKDF2_ITERATIONS:
        return f"{iterations}${encoded}"
    return encoded


def verify_password(password: str, stored_hash: str) -> bool:
    """Check password against a stored hash. Malformed hashes never verify."""
    if not stored_hash:
        return False
    iterations = PBKDF2_ITERATIONS
    body = stored_hash
    if "$" in stored_hash:
        prefix, body = stored_hash.split("$", 1)
        if not prefix.isdigit() or int(prefix) <= 0:
            return False
        iterations = int(prefix)
    salt_hex, sep, key_hex = body.partition(":")
    if not sep or not salt_hex or not key_hex:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(key_hex)
    except ValueError:
        return False
    actual = _derive_key(password, salt, iterations)
    # compare_digest is constant-time and returns False on length mismatch
    return hmac.compare_digest(expected, actual)


@lru_cache(maxsize=4)
def dummy_hash(iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash used to equalize login timing when the email is unknown.

    Built with the same iteration count as real hashes so both checks cost the same.
    """
    return hash_password("raceup_timing_dummy", iterations=iterations)
