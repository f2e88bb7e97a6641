from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Resolve 'sqlite:///./relative/path' to an absolute sqlite:/// URL.

    Keeps other URL forms unchanged.
    """
    prefix = "sqlite:///./"
    if not url.startswith(prefix):
        return url
    rel = url[len(prefix) :]
    return f"sqlite:///{(project_root / rel).resolve()}"


def ensure_aware(dt: datetime) -> datetime:
    """Return ``dt`` as a timezone-aware datetime, assuming UTC when naive.

    SQLite drops tzinfo on round-trip, so values read back from it are naive.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to integer milliseconds since the Unix epoch."""
    aware = ensure_aware(dt)
    return (aware - _EPOCH) // timedelta(milliseconds=1)


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO 8601 string in UTC, or return None.

    This is a small helper intended for serializing timestamps in JSON.
    """
    if dt is None:
        return None
    return ensure_aware(dt).astimezone(timezone.utc).isoformat()


def to_utc(dt: datetime) -> datetime:
    """Return ``dt`` converted to UTC, assuming UTC when naive.

    Store deadlines through this so that SQLite, which keeps only the wall
    clock, compares them on the same basis as ``datetime.now(timezone.utc)``.
    """
    return ensure_aware(dt).astimezone(timezone.utc)
