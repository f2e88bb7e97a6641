from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base


class EventLog(Base):
    """Append-only audit trail of draw events."""

    __tablename__ = "event_logs"

    WINNER_DRAW = "WINNER_DRAW"
    DRAW_EXTENDED = "DRAW_EXTENDED"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('WINNER_DRAW','DRAW_EXTENDED')", name="event_type_enum"
        ),
    )

    def __init__(
        self,
        *,
        type: str,
        payload: dict[str, Any],
        occurred_at: Optional[datetime] = None,
    ) -> None:
        self.type = type
        self.payload = payload
        if occurred_at is not None:
            self.occurred_at = occurred_at

    @classmethod
    def for_raffle(cls, session: Session, raffle_id: int) -> list["EventLog"]:
        """Return events whose payload references ``raffle_id``, oldest first."""

        stmt = (
            select(cls)
            .where(cls.payload["raffle_id"].as_integer() == raffle_id)
            .order_by(cls.occurred_at, cls.id)
        )
        return list(session.scalars(stmt).all())
