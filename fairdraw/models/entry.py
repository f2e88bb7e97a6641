"""Database model for raffle entries (the entry ledger)."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .raffle import Raffle
    from .user import User


class EntrySource(str, enum.Enum):
    """How an entry was obtained."""

    SUBSCRIPTION = "SUBSCRIPTION"
    """Paid entry consumed from the user's subscription allowance."""

    NPN = "NPN"
    """Free "no purchase necessary" entry, one per user per raffle."""


class Entry(Base):
    """A single ticket in a raffle. Rows are never updated once recorded."""

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EntrySource.SUBSCRIPTION.value
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    raffle: Mapped["Raffle"] = relationship(back_populates="entries")
    user: Mapped["User"] = relationship(back_populates="entries")

    __table_args__ = (
        CheckConstraint("source IN ('SUBSCRIPTION','NPN')", name="entry_source_enum"),
        Index("ix_entries_raffle_recorded", "raffle_id", "recorded_at", "id"),
    )

    def __init__(
        self,
        *,
        raffle_id: Optional[int] = None,
        user_id: Optional[int] = None,
        raffle: Optional["Raffle"] = None,
        user: Optional["User"] = None,
        source: EntrySource = EntrySource.SUBSCRIPTION,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        if raffle is not None:
            self.raffle = raffle
        if raffle_id is not None:
            self.raffle_id = raffle_id
        if user is not None:
            self.user = user
        if user_id is not None:
            self.user_id = user_id
        self.source = EntrySource(source).value
        if recorded_at is not None:
            self.recorded_at = recorded_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Entry(id={id}, raffle_id={raffle}, user_id={user}, source={source})>".format(
            id=self.id,
            raffle=self.raffle_id,
            user=self.user_id,
            source=self.source,
        )

    @classmethod
    def count_for_user(
        cls,
        session: Session,
        raffle_id: int,
        user_id: int,
        source: Optional[EntrySource] = None,
    ) -> int:
        """Return how many entries ``user_id`` holds in ``raffle_id``."""

        stmt = select(func.count(cls.id)).where(
            cls.raffle_id == raffle_id, cls.user_id == user_id
        )
        if source is not None:
            stmt = stmt.where(cls.source == EntrySource(source).value)
        return int(session.scalar(stmt) or 0)


__all__ = ["Entry", "EntrySource"]
