# crypto_logic.py
# -*- coding: utf-8 -*-
"""Core cryptographic primitives: key derivation, salt and nonce generation."""

import logging
import argon2
from argon2.exceptions import HashingError # Import specific exception
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from Crypto.Random import get_random_bytes

from ..utils.constants import (
    AES_KEY_BYTES,
    SALT_BYTES,
    GCM_IV_BYTES,
    KDF_PBKDF2,
    KDF_ARGON2ID,
    SUPPORTED_KDFS,
    DEFAULT_PBKDF2_ITERATIONS,
    MIN_PBKDF2_ITERATIONS,
    MAX_PBKDF2_ITERATIONS,
    ARGON2_TIME_COST,
    MIN_ARGON2_TIME_COST,
    MAX_ARGON2_TIME_COST,
    ARGON2_MEMORY_COST_KIB,
    ARGON2_PARALLELISM
)
from ..utils.exceptions import CryptoBatchError, ArgumentError

logger = logging.getLogger(__name__)

def generate_salt() -> bytes:
    """Generates a cryptographically secure random salt."""
    return get_random_bytes(SALT_BYTES)

def generate_nonce(size: int = GCM_IV_BYTES) -> bytes:
    """Generates a cryptographically secure random GCM nonce (or nonce prefix)."""
    return get_random_bytes(size)

def default_cost(kdf: str) -> int:
    """Returns the default work factor for the given KDF."""
    if kdf == KDF_ARGON2ID:
        return ARGON2_TIME_COST
    return DEFAULT_PBKDF2_ITERATIONS

def validate_kdf_params(kdf: str, iterations: int) -> None:
    """
    Checks the KDF name and its work factor against the safety floor and the
    ceiling beyond which derivation would take unreasonably long.

    Raises:
        ArgumentError: If the KDF is unknown or the cost is out of range.
    """
    if kdf not in SUPPORTED_KDFS:
        raise ArgumentError(f"Unsupported KDF '{kdf}'. Expected one of: {', '.join(SUPPORTED_KDFS)}.")
    if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations <= 0:
        raise ArgumentError(f"KDF iteration count must be a positive integer, got {iterations!r}.")
    if kdf == KDF_ARGON2ID:
        floor, ceiling = MIN_ARGON2_TIME_COST, MAX_ARGON2_TIME_COST
    else:
        floor, ceiling = MIN_PBKDF2_ITERATIONS, MAX_PBKDF2_ITERATIONS
    if iterations < floor:
        raise ArgumentError(f"KDF cost {iterations} for {kdf} is below the minimum of {floor}.")
    if iterations > ceiling:
        raise ArgumentError(f"KDF cost {iterations} for {kdf} exceeds the maximum of {ceiling}.")

def _password_bytes(password: str | bytes) -> bytes:
    if isinstance(password, str):
        return password.encode('utf-8')
    if isinstance(password, (bytes, bytearray)):
        return bytes(password)
    raise ArgumentError("Password must be str or bytes.")

def derive_key(
    password: str | bytes,
    salt: bytes,
    iterations: int = DEFAULT_PBKDF2_ITERATIONS,
    kdf: str = KDF_PBKDF2
) -> bytearray:
    """
    Derives a 256-bit key from the password and salt.

    PBKDF2-HMAC-SHA256 is the default; Argon2id is available with
    ``kdf=KDF_ARGON2ID``, in which case ``iterations`` is the Argon2 time cost.

    Args:
        password: The password (str is UTF-8 encoded).
        salt: The salt bytes, must not be empty.
        iterations: PBKDF2 iteration count or Argon2 time cost.
        kdf: Either KDF_PBKDF2 or KDF_ARGON2ID.

    Returns:
        A mutable buffer of AES_KEY_BYTES; callers wipe it with ``wipe()``.

    Raises:
        ArgumentError: On empty salt, bad KDF name or a cost below the floor.
        CryptoBatchError: If the KDF backend fails for other reasons.
    """
    if not salt:
        raise ArgumentError("Salt must not be empty for key derivation.")
    validate_kdf_params(kdf, iterations)
    secret = _password_bytes(password)
    logger.debug(f"Deriving key using {kdf} (cost={iterations}, salt={len(salt)} bytes)...")

    try:
        if kdf == KDF_ARGON2ID:
            # Use argon2 low-level API for direct control over parameters
            key = argon2.low_level.hash_secret_raw(
                secret=secret,
                salt=salt,
                time_cost=iterations,
                memory_cost=ARGON2_MEMORY_COST_KIB,
                parallelism=ARGON2_PARALLELISM,
                hash_len=AES_KEY_BYTES,
                type=argon2.Type.ID
            )
        else:
            key = PBKDF2(secret, salt, dkLen=AES_KEY_BYTES, count=iterations, hmac_hash_module=SHA256)
        logger.debug(f"Key derived successfully ({len(key)} bytes).")
        return bytearray(key)
    except HashingError as e:
        msg = f"Argon2 key derivation failed: {e}"
        logger.error(msg)
        raise CryptoBatchError(msg) from e
    except (ValueError, TypeError) as e:
        msg = f"Key derivation failed: {e}"
        logger.error(msg)
        raise CryptoBatchError(msg) from e

def wipe(buffer: bytearray | None) -> None:
    """Overwrites a key buffer with zeros in place."""
    if buffer is None:
        return
    for i in range(len(buffer)):
        buffer[i] = 0
