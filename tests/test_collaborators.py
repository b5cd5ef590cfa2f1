from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
import requests

from room_engine.domain.errors import NotificationFailedError, ProviderUnavailableError
from room_engine.domain.models import RoomInventoryRecord, RoomStatus, StayWindow
from room_engine.services.inventory_provider import HttpInventoryProvider, InMemoryInventoryProvider
from room_engine.services.notification_dispatcher import (
    HttpNotificationDispatcher,
    LoggingNotificationDispatcher,
)
from room_engine.utils.config import get_settings


CHECK_IN = datetime(2026, 10, 1, 15, 0, tzinfo=timezone.utc)
CHECK_OUT = datetime(2026, 10, 3, 11, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, dict, float]] = []

    def post(self, url: str, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def _settings(**overrides):
    get_settings.cache_clear()
    return replace(get_settings(), **overrides)


def test_demo_inventory_seed_is_deterministic_and_idempotent() -> None:
    settings = _settings(demo_inventory_floors=10, demo_rooms_per_floor=8)
    first = InMemoryInventoryProvider(settings)
    second = InMemoryInventoryProvider(settings)

    assert first.seed_demo_inventory("hotel-1") == 80
    assert first.seed_demo_inventory("hotel-1") == 0
    second.seed_demo_inventory("hotel-1")

    assert first.list_rooms("hotel-1") == second.list_rooms("hotel-1")
    types = {room.room_type for room in first.list_rooms("hotel-1")}
    assert types == {"standard", "deluxe", "suite", "presidential"}


def test_in_memory_provider_hides_occupied_and_unavailable_rooms() -> None:
    provider = InMemoryInventoryProvider(_settings())
    provider.set_rooms(
        "hotel-1",
        [
            RoomInventoryRecord(room_number="101", room_type="standard", floor=1),
            RoomInventoryRecord(room_number="102", room_type="standard", floor=1),
            RoomInventoryRecord(room_number="103", room_type="standard", floor=1),
        ],
    )
    provider.update_status("hotel-1", "103", RoomStatus.DIRTY)
    provider.add_occupancy("hotel-1", "101", StayWindow(CHECK_IN - timedelta(days=1), CHECK_IN + timedelta(hours=1)))

    rooms = provider.get_available_rooms("hotel-1", CHECK_IN, CHECK_OUT)

    assert [room.room_number for room in rooms] == ["102"]


def test_http_provider_parses_rooms_and_applies_timeout() -> None:
    session = FakeSession(
        FakeResponse(
            payload=[
                {"room_number": "201", "room_type": "deluxe", "floor": 2},
                {"room_number": "202", "room_type": "deluxe", "floor": 2, "status": "maintenance"},
            ]
        )
    )
    provider = HttpInventoryProvider(
        "http://inventory.local/",
        settings=_settings(inventory_fetch_timeout_seconds=2.5),
        session=session,
    )

    rooms = provider.get_available_rooms("hotel-1", CHECK_IN, CHECK_OUT)

    assert [room.room_number for room in rooms] == ["201"]
    url, body, timeout = session.calls[0]
    assert url == "http://inventory.local/properties/hotel-1/rooms/available"
    assert body["check_in"] == CHECK_IN.isoformat()
    assert timeout == 2.5


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.exceptions.ConnectTimeout("timed out")),
        FakeSession(FakeResponse(status_code=502)),
        FakeSession(FakeResponse(payload={"unexpected": True})),
    ],
)
def test_http_provider_failures_raise_provider_unavailable(session: FakeSession) -> None:
    provider = HttpInventoryProvider("http://inventory.local", settings=_settings(), session=session)
    with pytest.raises(ProviderUnavailableError):
        provider.get_available_rooms("hotel-1", CHECK_IN, CHECK_OUT)


def test_http_dispatcher_reports_rejections_and_transport_errors() -> None:
    accepted = HttpNotificationDispatcher(
        "http://notify.local",
        settings=_settings(notification_timeout_seconds=1.0),
        session=FakeSession(FakeResponse(status_code=202)),
    )
    rejected = HttpNotificationDispatcher(
        "http://notify.local",
        settings=_settings(),
        session=FakeSession(FakeResponse(status_code=422)),
    )
    broken = HttpNotificationDispatcher(
        "http://notify.local",
        settings=_settings(),
        session=FakeSession(error=requests.exceptions.ConnectionError("refused")),
    )

    assert accepted.send("email", {"booking_id": "b-1"}) is True
    assert rejected.send("email", {"booking_id": "b-1"}) is False
    with pytest.raises(NotificationFailedError):
        broken.send("sms", {"booking_id": "b-1"})


def test_logging_dispatcher_records_payloads() -> None:
    dispatcher = LoggingNotificationDispatcher()
    assert dispatcher.send("internal", {"type": "room_assignment", "booking_id": "b-1"}) is True
    assert dispatcher.sent == [("internal", {"type": "room_assignment", "booking_id": "b-1"})]
