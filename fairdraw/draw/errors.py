"""Typed failures raised and reported by the draw engine."""

from __future__ import annotations

import enum


class DrawErrorKind(str, enum.Enum):
    """Categories of draw failures reported back to callers."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    NO_ENTRIES = "NO_ENTRIES"
    ALREADY_CLOSED = "ALREADY_CLOSED"
    STORAGE_FAILURE = "STORAGE_FAILURE"


class DrawError(Exception):
    """Base class for draw engine errors; ``kind`` classifies the failure."""

    kind: DrawErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RaffleNotFoundError(DrawError, LookupError):
    kind = DrawErrorKind.NOT_FOUND


class InvalidStateError(DrawError, ValueError):
    kind = DrawErrorKind.INVALID_STATE


class NoEntriesError(DrawError, ValueError):
    kind = DrawErrorKind.NO_ENTRIES


class AlreadyClosedError(DrawError):
    kind = DrawErrorKind.ALREADY_CLOSED


class StorageFailure(DrawError):
    """Repository I/O failed; the underlying exception is chained as ``__cause__``."""

    kind = DrawErrorKind.STORAGE_FAILURE


__all__ = [
    "AlreadyClosedError",
    "DrawError",
    "DrawErrorKind",
    "InvalidStateError",
    "NoEntriesError",
    "RaffleNotFoundError",
    "StorageFailure",
]
