"""Provably-fair draw engine: commitment, draw hash, lifecycle and coordinator."""

from .commitment import commit, generate_secret
from .coordinator import (
    DrawCoordinator,
    DrawExtended,
    DrawOutcome,
    DrawRejected,
    DrawSucceeded,
    FinalizedDraw,
)
from .errors import (
    AlreadyClosedError,
    DrawError,
    DrawErrorKind,
    InvalidStateError,
    NoEntriesError,
    RaffleNotFoundError,
    StorageFailure,
)
from .hashing import (
    VERIFICATION_RECIPE,
    DrawVerification,
    draw_proof,
    verify_draw,
    winner_index,
)
from .lifecycle import Extension, RaffleLifecycle
from .repositories import EntryRepository, LedgerEntry, RaffleRepository

__all__ = [
    "AlreadyClosedError",
    "DrawCoordinator",
    "DrawError",
    "DrawErrorKind",
    "DrawExtended",
    "DrawOutcome",
    "DrawRejected",
    "DrawSucceeded",
    "DrawVerification",
    "EntryRepository",
    "Extension",
    "FinalizedDraw",
    "InvalidStateError",
    "LedgerEntry",
    "NoEntriesError",
    "RaffleLifecycle",
    "RaffleNotFoundError",
    "RaffleRepository",
    "StorageFailure",
    "VERIFICATION_RECIPE",
    "commit",
    "draw_proof",
    "generate_secret",
    "verify_draw",
    "winner_index",
]
