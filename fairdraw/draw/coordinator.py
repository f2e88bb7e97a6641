"""Orchestration of a single provably-fair draw attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from ..db.utils import to_epoch_ms
from ..models import Raffle
from .errors import (
    AlreadyClosedError,
    DrawError,
    DrawErrorKind,
    NoEntriesError,
    RaffleNotFoundError,
    StorageFailure,
)
from .hashing import draw_proof, winner_index
from .lifecycle import Extension, RaffleLifecycle
from .repositories import EntryRepository, RaffleRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizedDraw:
    """Result fields persisted on a closed raffle."""

    winner_id: int
    proof: str
    entry_count: Optional[int]
    timestamp: Optional[int]

    @classmethod
    def from_raffle(cls, raffle: Raffle) -> Optional["FinalizedDraw"]:
        if not raffle.is_closed or raffle.draw_proof is None or raffle.winner_id is None:
            return None
        return cls(
            winner_id=raffle.winner_id,
            proof=raffle.draw_proof,
            entry_count=raffle.draw_entry_count,
            timestamp=raffle.draw_timestamp,
        )


@dataclass(frozen=True)
class DrawSucceeded:
    """The attempt closed the raffle and selected a winner.

    Attributes
    ----------
    raffle_id : int
    winner_id : int
        Entrant owning the winning entry.
    winner_entry_id : int
        The entry found at ``winner_index`` in the snapshot.
    proof : str
        Draw hash over ``secret:entry_count:timestamp``.
    entry_count : int
        Snapshot size.
    winner_index : int
        Index into the snapshot ordered by ``(recorded_at, id)``.
    timestamp : int
        Draw time in epoch milliseconds.
    """

    raffle_id: int
    winner_id: int
    winner_entry_id: int
    proof: str
    entry_count: int
    winner_index: int
    timestamp: int

    is_failure = False


@dataclass(frozen=True)
class DrawExtended:
    """The snapshot was below ``min_entries``; the deadline moved instead.

    ``applied`` is ``False`` when a concurrent attempt moved the deadline
    first. ``new_end_at`` is then the deadline that attempt wrote.
    """

    raffle_id: int
    previous_end_at: datetime
    new_end_at: datetime
    reason: str
    applied: bool = True

    is_failure = False


@dataclass(frozen=True)
class DrawRejected:
    """The attempt did not draw.

    ``ALREADY_CLOSED`` covers both a repeated trigger on a CLOSED raffle and
    a lost race at the final write. ``existing`` then carries the persisted
    result, so the caller can show it instead of an error.
    """

    raffle_id: int
    kind: DrawErrorKind
    message: str
    existing: Optional[FinalizedDraw] = None

    @property
    def is_failure(self) -> bool:
        return self.kind is not DrawErrorKind.ALREADY_CLOSED


DrawOutcome = Union[DrawSucceeded, DrawExtended, DrawRejected]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DrawCoordinator:
    """Runs draw attempts against raffles stored through a SQLAlchemy session.

    The coordinator holds no state between attempts. It only flushes; the
    caller owns the transaction and commits it.
    """

    def __init__(
        self,
        session: Session,
        *,
        lifecycle: Optional[RaffleLifecycle] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Create a coordinator bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active session used for the snapshot and the conditional commit.
        lifecycle : Optional[RaffleLifecycle], default: None
            Lifecycle rules, typically built from
            :class:`~fairdraw.config.DrawSettings`. Defaults to a one-day
            extension.
        clock : Optional[Callable[[], datetime]], default: None
            Source of the draw timestamp. Defaults to the current UTC time.
        """

        self._session = session
        self._raffles = RaffleRepository(session)
        self._entries = EntryRepository(session)
        self._lifecycle = lifecycle or RaffleLifecycle()
        self._clock = clock or _utc_now

    def attempt_draw(self, raffle_id: int) -> DrawOutcome:
        """Attempt to draw ``raffle_id`` once.

        Parameters
        ----------
        raffle_id : int
            Identifier of the raffle to draw.

        Returns
        -------
        DrawOutcome
            :class:`DrawSucceeded` when this call closed the raffle,
            :class:`DrawExtended` when the minimum entry count was not met,
            or :class:`DrawRejected` with the failure kind.

        Notes
        -----
        1. Load the raffle (``NOT_FOUND``).
        2. Require ``LIVE``: ``ALREADY_CLOSED`` when it was drawn before,
           ``INVALID_STATE`` otherwise.
        3. Snapshot the ordered entries (``NO_ENTRIES`` when empty).
        4. Extend the deadline if below ``min_entries``; the secret is not used.
           When a concurrent attempt extended first, report its deadline.
        5. Compute the proof and the winner index.
        6. Commit status, proof and winner in one write guarded by
           ``status = 'LIVE'``; losing that race yields ``ALREADY_CLOSED``.

        Steps 1-4 do not mutate anything besides the deadline extension and
        are safe to retry. A lost race is never retried.
        """

        try:
            return self._attempt(raffle_id)
        except DrawError as exc:
            return self._reject(raffle_id, exc)

    def _attempt(self, raffle_id: int) -> DrawOutcome:
        raffle = self._raffles.get(raffle_id)
        if raffle is None:
            raise RaffleNotFoundError(f"Raffle {raffle_id} not found")
        if raffle.is_closed:
            raise AlreadyClosedError(f"Raffle {raffle_id} was already drawn")
        self._lifecycle.ensure_drawable(raffle)

        snapshot = self._entries.snapshot(raffle_id)
        entry_count = len(snapshot)
        if entry_count == 0:
            raise NoEntriesError(f"Raffle {raffle_id} has no entries to draw from")
        logger.debug(f"Raffle {raffle_id} snapshot holds {entry_count} entries")

        extension = self._lifecycle.check_minimum(raffle, entry_count)
        if extension is not None:
            applied = self._raffles.extend_deadline(
                raffle_id,
                previous_end_at=extension.previous_end_at,
                new_end_at=extension.new_end_at,
            )
            if not applied:
                return self._concurrent_extension(raffle_id, extension)
            logger.info(f"Raffle {raffle_id} extended to {extension.new_end_at}: {extension.reason}")
            return DrawExtended(
                raffle_id=raffle_id,
                previous_end_at=extension.previous_end_at,
                new_end_at=extension.new_end_at,
                reason=extension.reason,
            )

        timestamp = to_epoch_ms(self._clock())
        proof = draw_proof(raffle.secret, entry_count, timestamp)
        index = winner_index(proof, entry_count)
        winner_entry = snapshot[index]

        committed = self._raffles.finalize(
            raffle_id,
            draw_proof=proof,
            winner_id=winner_entry.user_id,
            entry_count=entry_count,
            timestamp=timestamp,
        )
        if not committed:
            raise AlreadyClosedError(f"Raffle {raffle_id} was closed by a concurrent draw")

        logger.info(
            f"Drew raffle {raffle_id}: entries={entry_count} index={index} "
            f"winner={winner_entry.user_id} proof={proof}"
        )
        return DrawSucceeded(
            raffle_id=raffle_id,
            winner_id=winner_entry.user_id,
            winner_entry_id=winner_entry.id,
            proof=proof,
            entry_count=entry_count,
            winner_index=index,
            timestamp=timestamp,
        )

    def _concurrent_extension(self, raffle_id: int, extension: Extension) -> DrawExtended:
        current = self._raffles.get(raffle_id)
        if current is None:
            raise RaffleNotFoundError(f"Raffle {raffle_id} disappeared while extending")
        if current.is_closed:
            raise AlreadyClosedError(f"Raffle {raffle_id} was drawn while extending")
        logger.info(
            f"Raffle {raffle_id} was already extended to {current.end_at} by a concurrent attempt"
        )
        return DrawExtended(
            raffle_id=raffle_id,
            previous_end_at=extension.previous_end_at,
            new_end_at=current.end_at,
            reason=extension.reason,
            applied=False,
        )

    def _reject(self, raffle_id: int, exc: DrawError) -> DrawRejected:
        existing: Optional[FinalizedDraw] = None
        if exc.kind is DrawErrorKind.ALREADY_CLOSED:
            existing = self._existing_result(raffle_id)

        if exc.kind is DrawErrorKind.ALREADY_CLOSED:
            logger.warning(f"Draw for raffle {raffle_id} skipped: {exc.message}")
        elif exc.kind is DrawErrorKind.STORAGE_FAILURE:
            logger.error(f"Draw for raffle {raffle_id} failed: {exc.message}")
        else:
            logger.info(f"Draw for raffle {raffle_id} rejected ({exc.kind.value}): {exc.message}")

        return DrawRejected(
            raffle_id=raffle_id,
            kind=exc.kind,
            message=exc.message,
            existing=existing,
        )

    def _existing_result(self, raffle_id: int) -> Optional[FinalizedDraw]:
        try:
            raffle = self._raffles.get(raffle_id)
        except StorageFailure as exc:
            logger.error(f"Could not load existing result for raffle {raffle_id}: {exc}")
            return None
        if raffle is None:
            return None
        return FinalizedDraw.from_raffle(raffle)


__all__ = [
    "DrawCoordinator",
    "DrawExtended",
    "DrawOutcome",
    "DrawRejected",
    "DrawSucceeded",
    "FinalizedDraw",
]
