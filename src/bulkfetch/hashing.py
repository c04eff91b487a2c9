"""
Identifier Hashing

The claims source indexes patients by a peppered PBKDF2 hash of their
Medicare Beneficiary Identifier (MBI). Raw identifiers never leave the
engine; only the hash is sent.
"""

import hashlib

import structlog

from bulkfetch.exceptions import HashingError

logger = structlog.get_logger(__name__)

HASH_ALGORITHM = "sha256"
HASH_LENGTH_BYTES = 32


def decode_pepper(pepper_hex: str | None) -> bytes:
    """Decode the hex-encoded pepper from configuration."""
    if not pepper_hex:
        raise HashingError("Identifier hash pepper is not configured")
    try:
        return bytes.fromhex(pepper_hex)
    except ValueError as e:
        raise HashingError("Identifier hash pepper is not valid hex") from e


def hash_identifier(identifier: str | None, pepper: bytes, iterations: int) -> str:
    """
    Hash an identifier with PBKDF2-HMAC-SHA256 (256-bit output).

    Args:
        identifier: Raw patient identifier (MBI)
        pepper: Server-held secret used as the PBKDF2 salt
        iterations: PBKDF2 iteration count

    Returns:
        Hex-encoded hash, or an empty string for a blank identifier
    """
    if identifier is None or not identifier.strip():
        logger.error("Could not generate hash; provided identifier was null or empty")
        return ""

    try:
        derived = hashlib.pbkdf2_hmac(
            HASH_ALGORITHM,
            identifier.encode("utf-8"),
            pepper,
            iterations,
            dklen=HASH_LENGTH_BYTES,
        )
    except (ValueError, TypeError) as e:
        logger.error(
            "Key derivation failed",
            algorithm=HASH_ALGORITHM,
            iterations=iterations,
            error=str(e),
        )
        raise HashingError(f"Unable to hash identifier with {HASH_ALGORITHM}") from e

    return derived.hex()
