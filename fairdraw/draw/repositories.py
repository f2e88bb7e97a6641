"""Persistence adapters used by the draw engine.

Both repositories wrap :class:`sqlalchemy.exc.SQLAlchemyError` into
:class:`~fairdraw.draw.errors.StorageFailure` so that the engine only ever
deals with its own error types.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StorageFailure
from ..models import Entry, Raffle, RaffleStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """Read-only view of an :class:`Entry` captured in a draw snapshot."""

    id: int
    user_id: int
    source: str
    recorded_at: datetime


class RaffleRepository:
    """Reads raffles and applies conditional (status-guarded) updates."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, raffle_id: int) -> Optional[Raffle]:
        """Load ``raffle_id`` fresh from the database, bypassing stale identity-map state."""
        try:
            return self._session.scalar(
                select(Raffle)
                .where(Raffle.id == raffle_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            logger.error(f"Failed to load raffle {raffle_id}: {exc}")
            raise StorageFailure(f"Failed to load raffle {raffle_id}") from exc

    def extend_deadline(
        self, raffle_id: int, *, previous_end_at: datetime, new_end_at: datetime
    ) -> bool:
        """Move ``end_at`` forward if the raffle is still LIVE with ``previous_end_at``.

        Returns ``False`` when another writer changed the raffle first.
        """
        stmt = (
            update(Raffle)
            .where(
                Raffle.id == raffle_id,
                Raffle.status == RaffleStatus.LIVE.value,
                Raffle.end_at == previous_end_at,
            )
            .values(end_at=new_end_at)
            .execution_options(synchronize_session=False)
        )
        return self._conditional_write(raffle_id, stmt, "extend")

    def finalize(
        self,
        raffle_id: int,
        *,
        draw_proof: str,
        winner_id: int,
        entry_count: int,
        timestamp: int,
    ) -> bool:
        """Close the raffle and record its result in one statement.

        The ``WHERE status = 'LIVE'`` clause is the optimistic lock: only one
        concurrent caller can match it. Returns ``False`` for the losers.
        """
        stmt = (
            update(Raffle)
            .where(
                Raffle.id == raffle_id,
                Raffle.status == RaffleStatus.LIVE.value,
            )
            .values(
                status=RaffleStatus.CLOSED.value,
                draw_proof=draw_proof,
                winner_id=winner_id,
                draw_entry_count=entry_count,
                draw_timestamp=timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        return self._conditional_write(raffle_id, stmt, "finalize")

    def _conditional_write(self, raffle_id: int, stmt, action: str) -> bool:
        try:
            result = self._session.execute(stmt)
            matched = result.rowcount == 1
            # Bring any loaded instance in line with what the database now holds.
            self._session.get(Raffle, raffle_id, populate_existing=True)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to {action} raffle {raffle_id}: {exc}")
            raise StorageFailure(f"Failed to {action} raffle {raffle_id}") from exc
        logger.debug(f"Conditional {action} on raffle {raffle_id} matched={matched}")
        return matched


class EntryRepository:
    """Ordered, read-only access to the entry ledger."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def snapshot(self, raffle_id: int) -> list[LedgerEntry]:
        """Return all entries for ``raffle_id`` ordered by ``(recorded_at, id)``."""
        stmt = (
            select(Entry.id, Entry.user_id, Entry.source, Entry.recorded_at)
            .where(Entry.raffle_id == raffle_id)
            .order_by(Entry.recorded_at.asc(), Entry.id.asc())
        )
        try:
            rows = self._session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"Failed to snapshot entries for raffle {raffle_id}: {exc}")
            raise StorageFailure(
                f"Failed to snapshot entries for raffle {raffle_id}"
            ) from exc
        return [
            LedgerEntry(id=row.id, user_id=row.user_id, source=row.source, recorded_at=row.recorded_at)
            for row in rows
        ]


__all__ = ["EntryRepository", "LedgerEntry", "RaffleRepository"]
