"""
CredGuard Cryptographic Operations

Wrapper around the cryptography library for secret hashing and token
generation. Uses established libraries - NO custom cryptographic
implementations.

Hash encoding:
    pbkdf2_sha256$<iterations>$<salt b64>$<digest b64>

The algorithm parameters travel with the hash, so verification never
depends on the current configuration.

Security:
- Salted, iterated one-way hash (PBKDF2-HMAC-SHA256)
- Constant-time verification (``PBKDF2HMAC.verify``)
- Raw secrets are never stored or logged
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Tuple

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credguard.core.exceptions import CredGuardError


ALGORITHM = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 310_000
SALT_BYTES = 16
DIGEST_BYTES = 32
TOKEN_BYTES = 32


# =============================================================================
# SECRET HASHING
# =============================================================================


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=DIGEST_BYTES,
        salt=salt,
        iterations=iterations,
    )


def hash_secret(secret: str, iterations: int = DEFAULT_ITERATIONS) -> str:
    """
    Hash a secret with a fresh random salt.

    Args:
        secret: Raw secret (PIN or password)
        iterations: PBKDF2 iteration count

    Returns:
        Encoded hash string carrying algorithm, iterations and salt
    """
    if iterations < 1:
        raise ValueError("iterations must be positive")

    salt = secrets.token_bytes(SALT_BYTES)
    digest = _kdf(salt, iterations).derive(secret.encode("utf-8"))

    return "$".join(
        (
            ALGORITHM,
            str(iterations),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        )
    )


def parse_hash(encoded: str) -> Tuple[int, bytes, bytes]:
    """
    Split an encoded hash into (iterations, salt, digest).

    Raises:
        CredGuardError: If the encoding is malformed or uses another algorithm
    """
    parts = encoded.split("$")
    if len(parts) != 4 or parts[0] != ALGORITHM:
        raise CredGuardError("Unsupported secret hash encoding")

    try:
        iterations = int(parts[1])
        salt = base64.b64decode(parts[2], validate=True)
        digest = base64.b64decode(parts[3], validate=True)
    except ValueError as e:
        raise CredGuardError(f"Malformed secret hash: {e}") from e

    if iterations < 1 or not salt or len(digest) != DIGEST_BYTES:
        raise CredGuardError("Malformed secret hash")

    return iterations, salt, digest


def verify_secret(secret: str, encoded: str) -> bool:
    """
    Verify a candidate secret against an encoded hash.

    The digest comparison is constant-time, so timing does not reveal how
    much of the candidate matched.

    Args:
        secret: Candidate secret
        encoded: Hash produced by ``hash_secret``

    Returns:
        True if the secret matches, False otherwise (including malformed hashes)
    """
    try:
        iterations, salt, digest = parse_hash(encoded)
    except CredGuardError:
        return False

    try:
        _kdf(salt, iterations).verify(secret.encode("utf-8"), digest)
    except InvalidKey:
        return False
    return True


def dummy_verify(secret: str, iterations: int = DEFAULT_ITERATIONS) -> bool:
    """
    Burn the same work as a real verification and return False.

    Used when the principal does not exist so response timing does not
    reveal account existence.
    """
    _kdf(b"\x00" * SALT_BYTES, iterations).derive(secret.encode("utf-8"))
    return False


# =============================================================================
# SESSION TOKENS
# =============================================================================


def generate_session_token() -> str:
    """Generate an opaque, URL-safe session token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def token_fingerprint(token: str) -> str:
    """
    Short non-reversible fingerprint of a token, safe to log.

    Returns:
        First 12 hex characters of SHA-256(token)
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
