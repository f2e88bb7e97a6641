"""Seed commitment helpers for the commit/reveal protocol."""

from __future__ import annotations

import hashlib
import secrets

MIN_SECRET_BYTES = 32


def generate_secret(num_bytes: int = MIN_SECRET_BYTES) -> str:
    """Return a hex encoded secret drawn from the OS CSPRNG.

    Parameters
    ----------
    num_bytes : int, default: 32
        Number of random bytes. Values below 32 are rejected.

    Returns
    -------
    str
        Lower-case hex string of length ``2 * num_bytes``.
    """

    if num_bytes < MIN_SECRET_BYTES:
        raise ValueError(f"secret must be at least {MIN_SECRET_BYTES} bytes")
    return secrets.token_hex(num_bytes)


def sha256_hexdigest(value: str) -> str:
    """Return the SHA-256 hex digest of ``value`` encoded as UTF-8."""
    if not isinstance(value, str):
        raise TypeError("value must be a string")
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def commit(secret: str) -> str:
    """Return the public commitment (SHA-256 hex digest) for ``secret``."""
    if not secret:
        raise ValueError("secret must not be empty")
    return sha256_hexdigest(secret)


__all__ = ["MIN_SECRET_BYTES", "commit", "generate_secret", "sha256_hexdigest"]
