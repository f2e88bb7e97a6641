"""Runtime settings read from the environment (and ``.env``)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from .draw.commitment import MIN_SECRET_BYTES
from .draw.lifecycle import RaffleLifecycle

DEFAULT_EXTENSION_HOURS = 24
DEFAULT_NOTIFICATION_TIMEOUT = 10


@dataclass(frozen=True)
class DrawSettings:
    """Explicit configuration handed to the draw engine.

    Attributes
    ----------
    extension : timedelta
        How far ``end_at`` moves when a raffle misses ``min_entries``.
    secret_bytes : int
        Random bytes per raffle secret; at least 32.
    notification_url : Optional[str]
        Endpoint of the notification service. Notifications are skipped when unset.
    notification_api_key : Optional[str]
        Bearer token for the notification service.
    notification_timeout : int
        Request timeout in seconds.
    """

    extension: timedelta = timedelta(hours=DEFAULT_EXTENSION_HOURS)
    secret_bytes: int = MIN_SECRET_BYTES
    notification_url: Optional[str] = None
    notification_api_key: Optional[str] = None
    notification_timeout: int = DEFAULT_NOTIFICATION_TIMEOUT

    def __post_init__(self) -> None:
        if self.secret_bytes < MIN_SECRET_BYTES:
            raise ValueError(f"secret_bytes must be at least {MIN_SECRET_BYTES}")
        if self.extension <= timedelta(0):
            raise ValueError("extension must be a positive duration")

    def lifecycle(self) -> RaffleLifecycle:
        return RaffleLifecycle(extension=self.extension)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer") from exc


def load_settings() -> DrawSettings:
    """Build :class:`DrawSettings` from environment variables.

    Recognised variables: ``RAFFLE_EXTENSION_HOURS``, ``RAFFLE_SECRET_BYTES``,
    ``NOTIFICATION_URL``, ``NOTIFICATION_API_KEY`` and ``NOTIFICATION_TIMEOUT``.
    """

    load_dotenv()
    return DrawSettings(
        extension=timedelta(
            hours=_int_env("RAFFLE_EXTENSION_HOURS", DEFAULT_EXTENSION_HOURS)
        ),
        secret_bytes=_int_env("RAFFLE_SECRET_BYTES", MIN_SECRET_BYTES),
        notification_url=os.getenv("NOTIFICATION_URL") or None,
        notification_api_key=os.getenv("NOTIFICATION_API_KEY") or None,
        notification_timeout=_int_env(
            "NOTIFICATION_TIMEOUT", DEFAULT_NOTIFICATION_TIMEOUT
        ),
    )


__all__ = ["DrawSettings", "load_settings"]
