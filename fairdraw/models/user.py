from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Integer, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .entry import Entry


class User(Base):
    """An entrant on the raffle platform."""

    def __init__(
        self,
        email: str,
        full_name: Optional[str] = None,
        entries_remaining: int = 0,
        created_at: Optional[datetime] = None,
    ):
        """Create a new :class:`User` record.

        Parameters
        ----------
        email : str
            User's login email address.
        full_name : str, optional
            Display name shown on winner announcements.
        entries_remaining : int, default: 0
            Subscription entries the user can still redeem.
        created_at : datetime, optional
            Explicit creation timestamp.
        """

        self.email = email
        self.full_name = full_name
        self.entries_remaining = entries_remaining
        if created_at is not None:
            self.created_at = created_at

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    entries_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # relationships
    entries: Mapped[list["Entry"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, email='{self.email}', "
            f"entries_remaining={self.entries_remaining})>"
        )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]

    @classmethod
    def get_by_email(cls, session: Session, email: str) -> Optional["User"]:
        """Retrieve a user by email address."""

        return session.scalar(select(cls).where(cls.email == email))
