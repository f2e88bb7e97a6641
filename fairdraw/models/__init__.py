from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import User  # noqa: F401
from .raffle import Raffle, RaffleStatus  # noqa: F401
from .entry import Entry, EntrySource  # noqa: F401
from .event_log import EventLog  # noqa: F401

__all__ = [
    "Base",
    "User",
    "Raffle",
    "RaffleStatus",
    "Entry",
    "EntrySource",
    "EventLog",
]
