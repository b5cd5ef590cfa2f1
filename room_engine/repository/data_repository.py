"""Repository layer for assignment history, configurations and room holds."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Optional, Protocol

from pydantic import TypeAdapter

from room_engine.domain.models import (
    AssignmentConfig,
    RoomAssignmentResult,
    StayWindow,
    as_utc,
)
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

_RESULT_ADAPTER = TypeAdapter(RoomAssignmentResult)
_CONFIG_ADAPTER = TypeAdapter(AssignmentConfig)


@dataclass(frozen=True)
class RoomHold:
    """A room held by a booking for a stay window."""

    property_id: str
    room_number: str
    booking_id: str
    check_in: datetime
    check_out: datetime

    @property
    def window(self) -> StayWindow:
        return StayWindow(self.check_in, self.check_out)


class ConfigurationRepository(Protocol):
    def get(self, property_id: str) -> Optional[AssignmentConfig]: ...

    def save(self, config: AssignmentConfig) -> None: ...


class AssignmentRepository(Protocol):
    def get_current(self, booking_id: str) -> Optional[RoomAssignmentResult]: ...

    def append(self, result: RoomAssignmentResult) -> None: ...

    def update_current(self, result: RoomAssignmentResult) -> None: ...

    def history(self, booking_id: str) -> list[RoomAssignmentResult]: ...

    def list_history(
        self,
        property_id: str,
        start: datetime,
        end: datetime,
    ) -> list[RoomAssignmentResult]: ...


class ReservationLedger(Protocol):
    def reserve(self, property_id: str, room_number: str, booking_id: str, window: StayWindow) -> bool: ...

    def release(self, property_id: str, room_number: str, booking_id: str) -> bool: ...

    def is_free(
        self,
        property_id: str,
        room_number: str,
        window: StayWindow,
        exclude_booking_id: Optional[str] = None,
    ) -> bool: ...

    def list_holds(self, property_id: str) -> list[RoomHold]: ...


class InMemoryConfigurationRepository:
    def __init__(self) -> None:
        self._lock = RLock()
        self._configs: dict[str, AssignmentConfig] = {}

    def get(self, property_id: str) -> Optional[AssignmentConfig]:
        with self._lock:
            return self._configs.get(property_id)

    def save(self, config: AssignmentConfig) -> None:
        with self._lock:
            self._configs[config.property_id] = config


class InMemoryAssignmentRepository:
    """Append-only history with a current pointer per booking."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._history: list[RoomAssignmentResult] = []
        self._current: dict[str, int] = {}

    def get_current(self, booking_id: str) -> Optional[RoomAssignmentResult]:
        with self._lock:
            index = self._current.get(booking_id)
            if index is None:
                return None
            return self._history[index]

    def append(self, result: RoomAssignmentResult) -> None:
        with self._lock:
            self._history.append(result)
            self._current[result.booking_id] = len(self._history) - 1

    def update_current(self, result: RoomAssignmentResult) -> None:
        with self._lock:
            index = self._current.get(result.booking_id)
            if index is None:
                raise KeyError(result.booking_id)
            self._history[index] = result

    def history(self, booking_id: str) -> list[RoomAssignmentResult]:
        with self._lock:
            return [item for item in self._history if item.booking_id == booking_id]

    def list_history(
        self,
        property_id: str,
        start: datetime,
        end: datetime,
    ) -> list[RoomAssignmentResult]:
        lower, upper = as_utc(start), as_utc(end)
        with self._lock:
            return [
                item
                for item in self._history
                if item.property_id == property_id
                and lower <= as_utc(item.assigned_at) <= upper
            ]


class InMemoryReservationLedger:
    """Room holds guarded by one lock so reserve is a compare-and-swap."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._holds: list[RoomHold] = []

    def _conflicts(
        self,
        property_id: str,
        room_number: str,
        window: StayWindow,
        exclude_booking_id: Optional[str],
    ) -> bool:
        return any(
            hold.property_id == property_id
            and hold.room_number == room_number
            and hold.booking_id != exclude_booking_id
            and hold.window.overlaps(window)
            for hold in self._holds
        )

    def reserve(self, property_id: str, room_number: str, booking_id: str, window: StayWindow) -> bool:
        with self._lock:
            if self._conflicts(property_id, room_number, window, booking_id):
                return False
            for hold in self._holds:
                if (
                    hold.property_id == property_id
                    and hold.room_number == room_number
                    and hold.booking_id == booking_id
                ):
                    return True
            self._holds.append(
                RoomHold(
                    property_id=property_id,
                    room_number=room_number,
                    booking_id=booking_id,
                    check_in=window.check_in,
                    check_out=window.check_out,
                )
            )
            return True

    def release(self, property_id: str, room_number: str, booking_id: str) -> bool:
        with self._lock:
            remaining = [
                hold
                for hold in self._holds
                if not (
                    hold.property_id == property_id
                    and hold.room_number == room_number
                    and hold.booking_id == booking_id
                )
            ]
            released = len(remaining) != len(self._holds)
            self._holds = remaining
            return released

    def is_free(
        self,
        property_id: str,
        room_number: str,
        window: StayWindow,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        with self._lock:
            return not self._conflicts(property_id, room_number, window, exclude_booking_id)

    def list_holds(self, property_id: str) -> list[RoomHold]:
        with self._lock:
            return [hold for hold in self._holds if hold.property_id == property_id]


def _to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so SQL string comparison orders correctly."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class SqliteDataRepository:
    """SQLite-backed configurations, assignment history and room holds.

    Implements the configuration, assignment and reservation-ledger
    protocols against one database file so business logic stays
    storage-agnostic.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        connection = self._connect()
        try:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS AssignmentConfigs (
                    property_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS AssignmentHistory (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    booking_id TEXT NOT NULL,
                    property_id TEXT NOT NULL,
                    room_number TEXT NOT NULL,
                    assignment_method TEXT NOT NULL,
                    assigned_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS CurrentAssignments (
                    booking_id TEXT PRIMARY KEY,
                    history_id INTEGER NOT NULL,
                    FOREIGN KEY (history_id) REFERENCES AssignmentHistory(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS RoomHolds (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    property_id TEXT NOT NULL,
                    room_number TEXT NOT NULL,
                    booking_id TEXT NOT NULL,
                    check_in TEXT NOT NULL,
                    check_out TEXT NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_history_property_assigned
                ON AssignmentHistory(property_id, assigned_at);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_holds_property_room
                ON RoomHolds(property_id, room_number);
                """
            )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc
        finally:
            connection.close()

    # --- configurations ---

    def get(self, property_id: str) -> Optional[AssignmentConfig]:
        connection = self._connect()
        try:
            row = connection.execute(
                "SELECT payload FROM AssignmentConfigs WHERE property_id = ?;",
                (property_id,),
            ).fetchone()
        finally:
            connection.close()
        if row is None:
            return None
        return _CONFIG_ADAPTER.validate_json(row["payload"])

    def save(self, config: AssignmentConfig) -> None:
        payload = _CONFIG_ADAPTER.dump_json(config).decode("utf-8")
        connection = self._connect()
        try:
            connection.execute(
                """
                INSERT INTO AssignmentConfigs (property_id, payload, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(property_id) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = CURRENT_TIMESTAMP;
                """,
                (config.property_id, payload),
            )
        finally:
            connection.close()

    # --- assignment history ---

    def get_current(self, booking_id: str) -> Optional[RoomAssignmentResult]:
        connection = self._connect()
        try:
            row = connection.execute(
                """
                SELECT h.payload
                FROM CurrentAssignments AS c
                INNER JOIN AssignmentHistory AS h ON h.id = c.history_id
                WHERE c.booking_id = ?;
                """,
                (booking_id,),
            ).fetchone()
        finally:
            connection.close()
        if row is None:
            return None
        return _RESULT_ADAPTER.validate_json(row["payload"])

    def append(self, result: RoomAssignmentResult) -> None:
        payload = _RESULT_ADAPTER.dump_json(result).decode("utf-8")
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            cursor = connection.execute(
                """
                INSERT INTO AssignmentHistory (
                    booking_id,
                    property_id,
                    room_number,
                    assignment_method,
                    assigned_at,
                    payload
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    result.booking_id,
                    result.property_id,
                    result.assigned_room.room_number,
                    result.assignment_method.value,
                    _to_db_timestamp(result.assigned_at),
                    payload,
                ),
            )
            connection.execute(
                """
                INSERT INTO CurrentAssignments (booking_id, history_id)
                VALUES (?, ?)
                ON CONFLICT(booking_id) DO UPDATE SET history_id = excluded.history_id;
                """,
                (result.booking_id, int(cursor.lastrowid)),
            )
            connection.execute("COMMIT;")
        except sqlite3.Error:
            connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def update_current(self, result: RoomAssignmentResult) -> None:
        payload = _RESULT_ADAPTER.dump_json(result).decode("utf-8")
        connection = self._connect()
        try:
            cursor = connection.execute(
                """
                UPDATE AssignmentHistory
                SET payload = ?
                WHERE id = (
                    SELECT history_id FROM CurrentAssignments WHERE booking_id = ?
                );
                """,
                (payload, result.booking_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(result.booking_id)
        finally:
            connection.close()

    def history(self, booking_id: str) -> list[RoomAssignmentResult]:
        connection = self._connect()
        try:
            rows = connection.execute(
                "SELECT payload FROM AssignmentHistory WHERE booking_id = ? ORDER BY id ASC;",
                (booking_id,),
            ).fetchall()
        finally:
            connection.close()
        return [_RESULT_ADAPTER.validate_json(row["payload"]) for row in rows]

    def list_history(
        self,
        property_id: str,
        start: datetime,
        end: datetime,
    ) -> list[RoomAssignmentResult]:
        connection = self._connect()
        try:
            rows = connection.execute(
                """
                SELECT payload
                FROM AssignmentHistory
                WHERE property_id = ?
                  AND assigned_at >= ?
                  AND assigned_at <= ?
                ORDER BY id ASC;
                """,
                (property_id, _to_db_timestamp(start), _to_db_timestamp(end)),
            ).fetchall()
        finally:
            connection.close()
        return [_RESULT_ADAPTER.validate_json(row["payload"]) for row in rows]

    def count_history(self) -> int:
        connection = self._connect()
        try:
            row = connection.execute("SELECT COUNT(*) AS count FROM AssignmentHistory;").fetchone()
        finally:
            connection.close()
        return int(row["count"])

    # --- reservation ledger ---

    def reserve(self, property_id: str, room_number: str, booking_id: str, window: StayWindow) -> bool:
        check_in, check_out = _to_db_timestamp(window.check_in), _to_db_timestamp(window.check_out)
        connection = self._connect()
        try:
            # IMMEDIATE takes the write lock before the overlap check.
            connection.execute("BEGIN IMMEDIATE;")
            conflict = connection.execute(
                """
                SELECT 1
                FROM RoomHolds
                WHERE property_id = ?
                  AND room_number = ?
                  AND booking_id != ?
                  AND check_in < ?
                  AND ? < check_out
                LIMIT 1;
                """,
                (property_id, room_number, booking_id, check_out, check_in),
            ).fetchone()
            if conflict is not None:
                connection.execute("ROLLBACK;")
                return False
            existing = connection.execute(
                """
                SELECT 1 FROM RoomHolds
                WHERE property_id = ? AND room_number = ? AND booking_id = ?
                LIMIT 1;
                """,
                (property_id, room_number, booking_id),
            ).fetchone()
            if existing is None:
                connection.execute(
                    """
                    INSERT INTO RoomHolds (property_id, room_number, booking_id, check_in, check_out)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    (property_id, room_number, booking_id, check_in, check_out),
                )
            connection.execute("COMMIT;")
            return True
        except sqlite3.Error:
            connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def release(self, property_id: str, room_number: str, booking_id: str) -> bool:
        connection = self._connect()
        try:
            cursor = connection.execute(
                """
                DELETE FROM RoomHolds
                WHERE property_id = ? AND room_number = ? AND booking_id = ?;
                """,
                (property_id, room_number, booking_id),
            )
            return cursor.rowcount > 0
        finally:
            connection.close()

    def is_free(
        self,
        property_id: str,
        room_number: str,
        window: StayWindow,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        connection = self._connect()
        try:
            row = connection.execute(
                """
                SELECT 1
                FROM RoomHolds
                WHERE property_id = ?
                  AND room_number = ?
                  AND booking_id != ?
                  AND check_in < ?
                  AND ? < check_out
                LIMIT 1;
                """,
                (
                    property_id,
                    room_number,
                    exclude_booking_id or "",
                    _to_db_timestamp(window.check_out),
                    _to_db_timestamp(window.check_in),
                ),
            ).fetchone()
        finally:
            connection.close()
        return row is None

    def list_holds(self, property_id: str) -> list[RoomHold]:
        connection = self._connect()
        try:
            rows = connection.execute(
                """
                SELECT property_id, room_number, booking_id, check_in, check_out
                FROM RoomHolds
                WHERE property_id = ?
                ORDER BY id ASC;
                """,
                (property_id,),
            ).fetchall()
        finally:
            connection.close()
        return [
            RoomHold(
                property_id=str(row["property_id"]),
                room_number=str(row["room_number"]),
                booking_id=str(row["booking_id"]),
                check_in=datetime.fromisoformat(str(row["check_in"])),
                check_out=datetime.fromisoformat(str(row["check_out"])),
            )
            for row in rows
        ]
