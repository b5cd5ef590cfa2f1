"""Inventory provider collaborators for available-room lookups."""

from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Optional, Protocol

import requests
from pydantic import TypeAdapter, ValidationError

from room_engine.domain.errors import ProviderUnavailableError
from room_engine.domain.models import (
    AccessibilityFeatures,
    RoomFeatures,
    RoomInventoryRecord,
    RoomStatus,
    StayWindow,
)
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

_ROOM_LIST_ADAPTER = TypeAdapter(list[RoomInventoryRecord])


class InventoryProvider(Protocol):
    def get_available_rooms(
        self,
        property_id: str,
        check_in: datetime,
        check_out: datetime,
    ) -> list[RoomInventoryRecord]:
        """Return only rooms free for the entire [check_in, check_out) window."""
        ...


class InMemoryInventoryProvider:
    """Process-local inventory with externally booked occupancy windows."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._lock = RLock()
        self._rooms: dict[str, dict[str, RoomInventoryRecord]] = {}
        self._occupancy: dict[str, list[tuple[str, StayWindow]]] = {}

    def set_rooms(self, property_id: str, rooms: list[RoomInventoryRecord]) -> None:
        with self._lock:
            self._rooms[property_id] = {room.room_number: room for room in rooms}

    def update_status(self, property_id: str, room_number: str, status: RoomStatus) -> None:
        with self._lock:
            room = self._rooms.get(property_id, {}).get(room_number)
            if room is None:
                raise KeyError(room_number)
            self._rooms[property_id][room_number] = replace(room, status=status)

    def add_occupancy(self, property_id: str, room_number: str, window: StayWindow) -> None:
        with self._lock:
            self._occupancy.setdefault(property_id, []).append((room_number, window))

    def list_rooms(self, property_id: str) -> list[RoomInventoryRecord]:
        with self._lock:
            return list(self._rooms.get(property_id, {}).values())

    def get_available_rooms(
        self,
        property_id: str,
        check_in: datetime,
        check_out: datetime,
    ) -> list[RoomInventoryRecord]:
        window = StayWindow(check_in, check_out)
        with self._lock:
            occupied = {
                room_number
                for room_number, booked in self._occupancy.get(property_id, [])
                if booked.overlaps(window)
            }
            return [
                room
                for room in self._rooms.get(property_id, {}).values()
                if room.status == RoomStatus.AVAILABLE and room.room_number not in occupied
            ]

    def seed_demo_inventory(self, property_id: str, seed: int = 42) -> int:
        """Seed a deterministic demo property only when it has no rooms yet."""
        with self._lock:
            if self._rooms.get(property_id):
                logger.info("Demo inventory already present; skipping seed | property_id=%s", property_id)
                return 0

            generator = random.Random(seed)
            views = ["city", "garden", "ocean", "courtyard"]
            bed_types = ["king", "queen", "twin", "double"]
            rooms: list[RoomInventoryRecord] = []
            floors = self._settings.demo_inventory_floors
            per_floor = self._settings.demo_rooms_per_floor
            for floor in range(1, floors + 1):
                for index in range(1, per_floor + 1):
                    if floor >= floors - 1:
                        room_type = "suite" if index > 2 else "presidential"
                    elif floor >= floors - 4:
                        room_type = "deluxe"
                    else:
                        room_type = "standard"
                    amenities = ["wifi", "minibar"]
                    if index in (1, 2):
                        amenities.append("elevator_adjacent")
                    rooms.append(
                        RoomInventoryRecord(
                            room_number=f"{floor}{index:02d}",
                            room_type=room_type,
                            floor=floor,
                            view=generator.choice(views),
                            amenities=amenities,
                            features=RoomFeatures(
                                bed_type=generator.choice(bed_types),
                                bed_count=1 if room_type != "standard" else generator.choice([1, 2]),
                                max_occupancy=4 if room_type in ("suite", "presidential") else 2,
                                smoking_allowed=floor == 2 and index > per_floor - 2,
                                accessibility=AccessibilityFeatures(
                                    wheelchair_accessible=floor <= 2 and index <= 2,
                                    hearing_impaired=floor <= 2 and index == 1,
                                    visually_impaired=floor <= 2 and index == 1,
                                ),
                                balcony=room_type != "standard",
                                kitchenette=room_type in ("suite", "presidential"),
                                workspace=generator.random() < 0.5,
                            ),
                        )
                    )
            self._rooms[property_id] = {room.room_number: room for room in rooms}
        logger.info("Demo inventory seeded | property_id=%s | rooms=%s", property_id, len(rooms))
        return len(rooms)


class HttpInventoryProvider:
    """Fetches availability from the property-management inventory API."""

    def __init__(
        self,
        base_url: str,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def get_available_rooms(
        self,
        property_id: str,
        check_in: datetime,
        check_out: datetime,
    ) -> list[RoomInventoryRecord]:
        url = f"{self._base_url}/properties/{property_id}/rooms/available"
        try:
            response = self._session.post(
                url,
                json={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
                timeout=self._settings.inventory_fetch_timeout_seconds,
            )
            response.raise_for_status()
            rooms = _ROOM_LIST_ADAPTER.validate_python(response.json())
        except requests.exceptions.RequestException as exc:
            raise ProviderUnavailableError(f"Inventory fetch failed: {exc}") from exc
        except (ValidationError, ValueError) as exc:
            raise ProviderUnavailableError(f"Inventory response was malformed: {exc}") from exc
        return [room for room in rooms if room.status == RoomStatus.AVAILABLE]
