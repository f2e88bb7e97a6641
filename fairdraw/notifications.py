import os
import logging
from typing import Any, Mapping, Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class NotificationClient:
    """HTTP client for the external notification service.

    The service owns email content and delivery; this client only posts the
    event type and identifiers.
    """

    ENTRY_CONFIRMATION = "entry_confirmation"
    WINNER_NOTIFICATION = "winner_notification"
    RAFFLE_RESULT = "raffle_result"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = base_url or os.getenv("NOTIFICATION_URL")
        if not url:
            raise ValueError("Environment variable 'NOTIFICATION_URL' is not set")

        self.url = url.rstrip("/")
        self.api_key = api_key or os.getenv("NOTIFICATION_API_KEY")
        self.timeout = timeout
        self.session = session or requests.Session()

    # -------- headers --------
    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    # -------- core request --------
    def send(
        self,
        type: str,
        raffle_id: int,
        *,
        user_id: Optional[int] = None,
        **extra: Any,
    ) -> Any:
        """POST a notification event and return the decoded JSON body, if any."""
        payload: dict[str, Any] = {"type": type, "raffleId": raffle_id}
        if user_id is not None:
            payload["userId"] = user_id
        payload.update({key: value for key, value in extra.items() if value is not None})

        # Never log the API key
        logger.debug(f"Sending {type} notification for raffle {raffle_id}")
        r = self.session.post(
            self.url,
            json=payload,
            headers=self.headers,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def notify_winner(self, raffle_id: int, winner_id: int) -> Any:
        return self.send(self.WINNER_NOTIFICATION, raffle_id, user_id=winner_id)

    def notify_result(self, raffle_id: int, user_id: int) -> Any:
        return self.send(self.RAFFLE_RESULT, raffle_id, user_id=user_id)

    def notify_entry_confirmation(
        self,
        raffle_id: int,
        user_id: int,
        *,
        entry_count: int,
        email: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> Any:
        return self.send(
            self.ENTRY_CONFIRMATION,
            raffle_id,
            user_id=user_id,
            entryCount=entry_count,
            email=email,
            userName=user_name,
        )
