"""Raffle lifecycle state machine: DRAFT -> LIVE -> CLOSED."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models import Raffle, RaffleStatus
from .errors import InvalidStateError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = timedelta(days=1)

ALLOWED_TRANSITIONS: dict[RaffleStatus, frozenset[RaffleStatus]] = {
    RaffleStatus.DRAFT: frozenset({RaffleStatus.LIVE}),
    RaffleStatus.LIVE: frozenset({RaffleStatus.CLOSED}),
    RaffleStatus.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class Extension:
    """Decision to push a raffle's deadline instead of drawing it."""

    previous_end_at: datetime
    new_end_at: datetime
    entry_count: int
    min_entries: int

    @property
    def reason(self) -> str:
        return (
            f"Minimum {self.min_entries} entries not met "
            f"({self.entry_count} current). Extended by {_describe(self.new_end_at - self.previous_end_at)}."
        )


def _describe(delta: timedelta) -> str:
    if delta.seconds == 0 and delta.microseconds == 0:
        return "1 day" if delta.days == 1 else f"{delta.days} days"
    hours = delta.total_seconds() / 3600
    return f"{hours:g} hours"


class RaffleLifecycle:
    """Pure rules governing raffle status transitions.

    The lifecycle never touches the database or the environment; thresholds
    come from the raffle itself and the extension length is injected.
    """

    def __init__(self, extension: timedelta = DEFAULT_EXTENSION) -> None:
        if extension <= timedelta(0):
            raise ValueError("extension must be a positive duration")
        self.extension = extension

    @staticmethod
    def check_transition(current: RaffleStatus, target: RaffleStatus) -> None:
        """Raise :class:`InvalidStateError` unless ``current -> target`` is allowed."""
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot transition raffle from {current.value} to {target.value}"
            )

    def publish(self, raffle: Raffle) -> Raffle:
        """Move a DRAFT raffle to LIVE so it starts accepting entries."""
        self.check_transition(raffle.lifecycle_status, RaffleStatus.LIVE)
        if not raffle.secret_commitment:
            raise InvalidStateError("Raffle must have a published commitment before going LIVE")
        raffle.status = RaffleStatus.LIVE.value
        logger.info(f"Raffle {raffle.id} is now LIVE")
        return raffle

    @staticmethod
    def accepts_entries(raffle: Raffle) -> bool:
        return raffle.lifecycle_status is RaffleStatus.LIVE

    def ensure_drawable(self, raffle: Raffle) -> None:
        """Raise :class:`InvalidStateError` unless ``raffle`` may be drawn now."""
        status = raffle.lifecycle_status
        if status is not RaffleStatus.LIVE:
            raise InvalidStateError(
                f"Raffle {raffle.id} must be LIVE to draw a winner (is {status.value})"
            )

    def check_minimum(self, raffle: Raffle, entry_count: int) -> Optional[Extension]:
        """Return an :class:`Extension` when ``entry_count`` is below ``min_entries``."""
        if not raffle.min_entries or entry_count >= raffle.min_entries:
            return None
        return Extension(
            previous_end_at=raffle.end_at,
            new_end_at=raffle.end_at + self.extension,
            entry_count=entry_count,
            min_entries=raffle.min_entries,
        )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "DEFAULT_EXTENSION",
    "Extension",
    "RaffleLifecycle",
]
