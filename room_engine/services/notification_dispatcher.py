"""Notification dispatcher collaborators for guest and staff messages."""

from __future__ import annotations

from threading import RLock
from typing import Any, Optional, Protocol

import requests

from room_engine.domain.errors import NotificationFailedError
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    def send(self, channel: str, payload: dict[str, Any]) -> bool:
        """Deliver one payload; raise NotificationFailedError on transport errors."""
        ...


class LoggingNotificationDispatcher:
    """Records payloads in memory and logs them; used when no service is configured."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._sent: list[tuple[str, dict[str, Any]]] = []

    @property
    def sent(self) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return list(self._sent)

    def send(self, channel: str, payload: dict[str, Any]) -> bool:
        with self._lock:
            self._sent.append((channel, payload))
        logger.info(
            "Notification recorded | channel=%s | type=%s | booking_id=%s",
            channel,
            payload.get("type"),
            payload.get("booking_id"),
        )
        return True


class HttpNotificationDispatcher:
    """Posts payloads to the communications service, one endpoint per channel."""

    def __init__(
        self,
        base_url: str,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def send(self, channel: str, payload: dict[str, Any]) -> bool:
        try:
            response = self._session.post(
                f"{self._base_url}/channels/{channel}/send",
                json=payload,
                timeout=self._settings.notification_timeout_seconds,
            )
        except requests.exceptions.RequestException as exc:
            raise NotificationFailedError(f"{channel} delivery failed: {exc}") from exc
        if not response.ok:
            logger.warning(
                "Notification rejected | channel=%s | status_code=%s",
                channel,
                response.status_code,
            )
        return response.ok
