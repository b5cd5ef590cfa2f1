#!/usr/bin/env python3
"""Validate local room assignment engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from room_engine.domain.models import RoomAssignmentRequest
from room_engine.repository.data_repository import SqliteDataRepository
from room_engine.services.assignment_service import RoomAssignmentService
from room_engine.services.config_service import ConfigurationStore
from room_engine.services.inventory_provider import InMemoryInventoryProvider
from room_engine.services.notification_dispatcher import LoggingNotificationDispatcher
from room_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
VALIDATION_PROPERTY_ID = "validation-property"


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="room-engine-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("requests", "requests"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    from importlib.metadata import PackageNotFoundError, version

    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        base_settings = get_settings()
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "room_engine_validation.db",
            storage_backend="sqlite",
        )
        repository = SqliteDataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo inventory seeding
        inventory = InMemoryInventoryProvider(validation_settings)
        expected_rooms = (
            validation_settings.demo_inventory_floors * validation_settings.demo_rooms_per_floor
        )
        try:
            seeded = inventory.seed_demo_inventory(VALIDATION_PROPERTY_ID)
            if seeded != expected_rooms:
                raise RuntimeError(f"expected {expected_rooms} rooms, got {seeded}")
            ok, line = _print_result("Demo inventory", True, f": {seeded} rooms")
        except Exception as exc:
            ok, line = _print_result("Demo inventory", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: End-to-end assignment against SQLite storage
        service = RoomAssignmentService(
            config_store=ConfigurationStore(repository, settings=validation_settings),
            inventory_provider=inventory,
            notification_dispatcher=LoggingNotificationDispatcher(),
            assignment_repository=repository,
            reservation_ledger=repository,
            settings=validation_settings,
        )
        try:
            check_in = datetime.now(timezone.utc).replace(hour=15, minute=0, second=0, microsecond=0)
            result = service.assign_room(
                RoomAssignmentRequest(
                    booking_id="validation-booking",
                    guest_id="validation-guest",
                    property_id=VALIDATION_PROPERTY_ID,
                    check_in=check_in,
                    check_out=check_in + timedelta(days=2),
                    room_type_booked="standard",
                )
            )
            if repository.count_history() != 1:
                raise RuntimeError("assignment history was not persisted")
            ok, line = _print_result(
                "Room assignment",
                True,
                f": room={result.assigned_room.room_number} confidence={result.confidence:.2f}",
            )
        except Exception as exc:
            ok, line = _print_result("Room assignment", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Room Assignment Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
