"""Deterministic draw hash and winner index derivation.

The draw input is the canonical string ``"{secret}:{entry_count}:{timestamp}"``
hashed with SHA-256. The winner index is the leading 16 hex characters of the
digest (64 bits) read as an unsigned integer, reduced modulo ``entry_count``.

The digest is treated as uniformly distributed over its range, so the
reduction is a fairness approximation: for an entry count ``n`` the bias is at
most ``n / 2**64``. It is kept as-is so that previously published proofs stay
reproducible; switching to rejection sampling would change past results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .commitment import commit, sha256_hexdigest
from .errors import InvalidStateError

INDEX_HEX_CHARS = 16
PROOF_DELIMITER = ":"

VERIFICATION_RECIPE = (
    "1. commitment == SHA256(secret)\n"
    "2. proof == SHA256(secret + \":\" + entry_count + \":\" + timestamp)\n"
    "3. winner_index == int(proof[0:16], 16) % entry_count\n"
    "4. winner == entries ordered by (recorded_at, id) at winner_index"
)

Timestamp = Union[int, str]


def _require_entry_count(entry_count: int) -> int:
    if isinstance(entry_count, bool) or not isinstance(entry_count, int):
        raise TypeError("entry_count must be an integer")
    if entry_count < 1:
        raise InvalidStateError(
            f"entry_count must be at least 1 to draw a winner (got {entry_count})"
        )
    return entry_count


def draw_input(secret: str, entry_count: int, timestamp: Timestamp) -> str:
    """Return the canonical ``secret:entry_count:timestamp`` string."""

    if not secret:
        raise ValueError("secret must not be empty")
    count = _require_entry_count(entry_count)
    return PROOF_DELIMITER.join((secret, str(count), str(timestamp)))


def draw_proof(secret: str, entry_count: int, timestamp: Timestamp) -> str:
    """Compute the draw proof for a snapshot of ``entry_count`` entries.

    Parameters
    ----------
    secret : str
        The raffle's revealed secret.
    entry_count : int
        Size of the entry snapshot. Must be at least 1.
    timestamp : int or str
        Draw time, conventionally epoch milliseconds.

    Returns
    -------
    str
        Lower-case SHA-256 hex digest of :func:`draw_input`.

    Raises
    ------
    InvalidStateError
        If ``entry_count`` is less than 1.
    """

    return sha256_hexdigest(draw_input(secret, entry_count, timestamp))


def winner_index(proof: str, entry_count: int) -> int:
    """Map ``proof`` to an index in ``[0, entry_count)``.

    Raises
    ------
    InvalidStateError
        If ``entry_count`` is less than 1.
    ValueError
        If ``proof`` is not a hex digest of at least 16 characters.
    """

    count = _require_entry_count(entry_count)
    prefix = proof[:INDEX_HEX_CHARS]
    if len(prefix) < INDEX_HEX_CHARS:
        raise ValueError(f"proof must contain at least {INDEX_HEX_CHARS} hex characters")
    return int(prefix, 16) % count


@dataclass(frozen=True)
class DrawVerification:
    """Outcome of recomputing a published draw.

    Attributes
    ----------
    commitment_matches : bool
        ``SHA256(secret)`` equals the published commitment.
    proof_matches : bool
        The recomputed proof equals the published proof.
    index_matches : Optional[bool]
        The recomputed index equals the published index; ``None`` when no
        index was supplied.
    recomputed_proof : str
    recomputed_index : int
    """

    commitment_matches: bool
    proof_matches: bool
    index_matches: Optional[bool]
    recomputed_proof: str
    recomputed_index: int

    @property
    def valid(self) -> bool:
        return (
            self.commitment_matches
            and self.proof_matches
            and self.index_matches is not False
        )


def verify_draw(
    *,
    secret: str,
    commitment: str,
    entry_count: int,
    timestamp: Timestamp,
    proof: str,
    index: Optional[int] = None,
) -> DrawVerification:
    """Independently recompute a draw from its published values."""

    recomputed_proof = draw_proof(secret, entry_count, timestamp)
    recomputed_index = winner_index(recomputed_proof, entry_count)
    return DrawVerification(
        commitment_matches=commit(secret) == commitment.lower(),
        proof_matches=recomputed_proof == proof.lower(),
        index_matches=None if index is None else recomputed_index == index,
        recomputed_proof=recomputed_proof,
        recomputed_index=recomputed_index,
    )


__all__ = [
    "DrawVerification",
    "INDEX_HEX_CHARS",
    "VERIFICATION_RECIPE",
    "draw_input",
    "draw_proof",
    "verify_draw",
    "winner_index",
]
