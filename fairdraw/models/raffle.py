"""Database model for raffles and their provably-fair draw fields."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import to_utc
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .entry import Entry
    from .user import User


class RaffleStatus(str, enum.Enum):
    """Lifecycle states of a raffle. ``CLOSED`` is terminal."""

    DRAFT = "DRAFT"
    LIVE = "LIVE"
    CLOSED = "CLOSED"


class Raffle(Base):
    """A raffle whose winner is selected by a commit/reveal draw.

    The ``secret`` is generated at creation and stays private until the
    raffle is ``CLOSED``; ``secret_commitment`` is public from the start.
    ``draw_proof`` and ``winner_id`` are written together, exactly once, by
    :class:`~fairdraw.draw.coordinator.DrawCoordinator`.
    """

    __tablename__ = "raffles"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=RaffleStatus.DRAFT.value, index=True
    )
    """One of ``DRAFT``, ``LIVE`` or ``CLOSED``."""

    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Deadline after which the raffle may be drawn."""

    min_entries: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Minimum snapshot size required for a draw; ``None`` disables the check."""

    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    """Hex encoded random seed. Only readable publicly once the raffle is closed."""

    secret_commitment: Mapped[str] = mapped_column(String(64), nullable=False)
    """SHA-256 hex digest of ``secret``; published immediately."""

    draw_proof: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """SHA-256 hex digest of ``secret:entry_count:timestamp``."""

    winner_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    """Entrant who won the draw."""

    draw_entry_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Snapshot size the proof was computed over."""

    draw_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    """Draw time in epoch milliseconds, as fed into the proof."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="Entry.id",
    )
    winner: Mapped[Optional["User"]] = relationship(foreign_keys=[winner_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT','LIVE','CLOSED')", name="raffle_status_enum"
        ),
        CheckConstraint(
            "(draw_proof IS NULL AND winner_id IS NULL) OR "
            "(draw_proof IS NOT NULL AND winner_id IS NOT NULL)",
            name="raffle_result_all_or_nothing",
        ),
        Index("ix_raffles_status_end_at", "status", "end_at"),
    )

    def __init__(
        self,
        *,
        title: str,
        end_at: datetime,
        secret: str,
        secret_commitment: str,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        min_entries: Optional[int] = None,
        status: RaffleStatus = RaffleStatus.DRAFT,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.title = title
        self.description = description
        self.image_url = image_url
        self.end_at = to_utc(end_at)
        self.min_entries = min_entries
        self.secret = secret
        self.secret_commitment = secret_commitment
        self.status = RaffleStatus(status).value
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        # Never include ``secret``.
        return "<Raffle(id={id}, title={title!r}, status={status}, winner_id={winner})>".format(
            id=self.id,
            title=self.title,
            status=self.status,
            winner=self.winner_id,
        )

    @property
    def lifecycle_status(self) -> RaffleStatus:
        return RaffleStatus(self.status)

    @property
    def is_closed(self) -> bool:
        return self.status == RaffleStatus.CLOSED.value

    @property
    def revealed_secret(self) -> Optional[str]:
        """Return ``secret`` once the raffle is closed, otherwise ``None``."""
        return self.secret if self.is_closed else None

    @classmethod
    def get_live_past_deadline(
        cls, session: Session, now: Optional[datetime] = None
    ) -> list["Raffle"]:
        """Return LIVE raffles whose ``end_at`` has passed, oldest deadline first."""

        moment = to_utc(now) if now is not None else datetime.now(timezone.utc)
        stmt = (
            select(cls)
            .where(cls.status == RaffleStatus.LIVE.value, cls.end_at <= moment)
            .order_by(cls.end_at.asc(), cls.id.asc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["Raffle", "RaffleStatus"]
