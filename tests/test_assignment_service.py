from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from room_engine.domain.defaults import default_assignment_config
from room_engine.domain.errors import (
    ConfigurationMissingOrDisabledError,
    DuplicateAssignmentError,
    InvalidAssignmentRequestError,
    InvalidReassignmentError,
    ManualAssignmentRequiredError,
    ManualOverrideNotAllowedError,
    NoRoomsAvailableError,
    NotificationFailedError,
    ProviderUnavailableError,
    RoomNotAvailableError,
)
from room_engine.domain.models import (
    AccessibilityFeatures,
    AssignmentConfig,
    AssignmentConstraints,
    AssignmentMethod,
    AutomationSettings,
    ConflictResolutionPolicy,
    NotificationStatus,
    OverrideSettings,
    RoomAssignmentRequest,
    RoomFeatures,
    RoomInventoryRecord,
    StayWindow,
)
from room_engine.repository.data_repository import (
    InMemoryAssignmentRepository,
    InMemoryConfigurationRepository,
    InMemoryReservationLedger,
)
from room_engine.services.assignment_service import RoomAssignmentService, fallback_windows
from room_engine.services.config_service import ConfigurationStore
from room_engine.services.inventory_provider import InMemoryInventoryProvider
from room_engine.utils.config import get_settings


PROPERTY_ID = "hotel-1"
NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
CHECK_IN = datetime(2026, 6, 10, 15, 0, tzinfo=timezone.utc)
CHECK_OUT = datetime(2026, 6, 12, 11, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    def __init__(self, fail_channels: tuple[str, ...] = ()) -> None:
        self.fail_channels = set(fail_channels)
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def send(self, channel: str, payload: dict[str, Any]) -> bool:
        if channel in self.fail_channels:
            raise NotificationFailedError(f"{channel} gateway timeout")
        self.sent.append((channel, payload))
        return True


class FlakyInventory:
    """Delegates to an in-memory provider but can fail on demand."""

    def __init__(self, inner: InMemoryInventoryProvider, failures: int = 0) -> None:
        self.inner = inner
        self.failures = failures
        self.down = False
        self.calls = 0

    def get_available_rooms(self, property_id, check_in, check_out):
        self.calls += 1
        if self.down or self.failures > 0:
            self.failures = max(0, self.failures - 1)
            raise ProviderUnavailableError("inventory service timed out")
        return self.inner.get_available_rooms(property_id, check_in, check_out)


def _quiet_config(**overrides) -> AssignmentConfig:
    """Default config without inventory floors so results carry no floor conflicts."""
    base = replace(
        default_assignment_config(PROPERTY_ID),
        constraints=AssignmentConstraints(),
    )
    return replace(base, **overrides)


def _request(booking_id: str = "b-1", **overrides) -> RoomAssignmentRequest:
    defaults = {
        "booking_id": booking_id,
        "guest_id": f"guest-{booking_id}",
        "property_id": PROPERTY_ID,
        "check_in": CHECK_IN,
        "check_out": CHECK_OUT,
        "room_type_booked": "standard",
    }
    defaults.update(overrides)
    return RoomAssignmentRequest(**defaults)


def _rooms() -> list[RoomInventoryRecord]:
    return [
        RoomInventoryRecord(room_number="101", room_type="standard", floor=1),
        RoomInventoryRecord(room_number="102", room_type="standard", floor=1),
        RoomInventoryRecord(room_number="501", room_type="deluxe", floor=5),
        RoomInventoryRecord(room_number="901", room_type="suite", floor=9),
    ]


def _build_service(
    config: Optional[AssignmentConfig] = None,
    rooms: Optional[list[RoomInventoryRecord]] = None,
    dispatcher: Optional[RecordingDispatcher] = None,
    flaky: Optional[FlakyInventory] = None,
    **settings_overrides,
):
    get_settings.cache_clear()
    settings = replace(get_settings(), **settings_overrides)
    store = ConfigurationStore(InMemoryConfigurationRepository(), settings=settings)
    store.replace(PROPERTY_ID, config or _quiet_config())

    inventory = InMemoryInventoryProvider(settings)
    inventory.set_rooms(PROPERTY_ID, _rooms() if rooms is None else rooms)
    provider = flaky or inventory
    if flaky is not None:
        flaky.inner = inventory

    repository = InMemoryAssignmentRepository()
    ledger = InMemoryReservationLedger()
    sleeps: list[float] = []
    service = RoomAssignmentService(
        config_store=store,
        inventory_provider=provider,
        notification_dispatcher=dispatcher or RecordingDispatcher(),
        assignment_repository=repository,
        reservation_ledger=ledger,
        settings=settings,
        clock=lambda: NOW,
        sleep=sleeps.append,
    )
    return service, inventory, repository, ledger, sleeps


# --- automatic assignment ---

def test_assign_room_picks_exact_match_with_full_confidence() -> None:
    service, _, _, ledger, _ = _build_service()

    result = service.assign_room(_request())

    assert result.assigned_room.room_number == "101"
    assert result.assignment_method == AssignmentMethod.AUTOMATIC
    assert result.confidence == pytest.approx(0.9)
    assert result.assigned_room.rate == 150.0
    assert result.assigned_room.currency == "USD"
    assert result.upgrades == []
    assert result.conflicts == []
    assert [hold.room_number for hold in ledger.list_holds(PROPERTY_ID)] == ["101"]


def test_assign_room_is_idempotent() -> None:
    service, _, repository, ledger, _ = _build_service()

    first = service.assign_room(_request())
    second = service.assign_room(_request())

    assert second == first
    assert len(repository.history("b-1")) == 1
    assert len(ledger.list_holds(PROPERTY_ID)) == 1


def test_accessible_standard_preferred_over_inaccessible_deluxe() -> None:
    rooms = [
        RoomInventoryRecord(room_number="501", room_type="deluxe", floor=5),
        RoomInventoryRecord(
            room_number="104",
            room_type="standard",
            floor=1,
            features=RoomFeatures(accessibility=AccessibilityFeatures(wheelchair_accessible=True)),
        ),
    ]
    service, _, _, _, _ = _build_service(rooms=rooms)

    result = service.assign_room(
        _request(accessibility_needs=AccessibilityFeatures(wheelchair_accessible=True))
    )

    assert result.assigned_room.room_number == "104"
    assert result.confidence == pytest.approx(1.0)


def test_second_booking_gets_next_room() -> None:
    service, _, _, _, _ = _build_service()

    first = service.assign_room(_request("b-1"))
    second = service.assign_room(_request("b-2"))

    assert first.assigned_room.room_number == "101"
    assert second.assigned_room.room_number == "102"


def test_vip_upgrade_records_value_and_uses_upgrade_template() -> None:
    rooms = [RoomInventoryRecord(room_number="901", room_type="suite", floor=9)]
    dispatcher = RecordingDispatcher()
    service, _, _, _, _ = _build_service(rooms=rooms, dispatcher=dispatcher)

    result = service.assign_room(_request(loyalty_tier="gold"))

    assert len(result.upgrades) == 1
    upgrade = result.upgrades[0]
    assert (upgrade.from_room_type, upgrade.to_room_type) == ("standard", "suite")
    assert upgrade.value == 100.0
    assert upgrade.reason == "vip-upgrade"
    assert result.confidence == pytest.approx(0.75)
    guest_payloads = [payload for channel, payload in dispatcher.sent if channel == "email"]
    assert guest_payloads[0]["type"] == "upgrade_notification"
    assert guest_payloads[0]["template"] == "upgrade-notification-template"


def test_fallback_window_used_when_requested_dates_are_full() -> None:
    rooms = [RoomInventoryRecord(room_number="101", room_type="standard", floor=1)]
    service, inventory, _, _, _ = _build_service(rooms=rooms)
    inventory.add_occupancy(PROPERTY_ID, "101", StayWindow(CHECK_IN, CHECK_IN + timedelta(days=1)))

    result = service.assign_room(_request())

    assert result.assignment_method == AssignmentMethod.FALLBACK
    assert result.assigned_room.room_number == "101"
    assert result.confidence == pytest.approx(0.85)
    assert "widened" in (result.notes or "")


def test_no_rooms_available_after_fallback() -> None:
    service, _, repository, _, _ = _build_service(rooms=[])

    with pytest.raises(NoRoomsAvailableError):
        service.assign_room(_request())
    assert repository.get_current("b-1") is None


def test_fallback_windows_skip_empty_stays() -> None:
    window = StayWindow(CHECK_IN, CHECK_IN + timedelta(days=1))
    windows = fallback_windows(window)
    assert windows == [
        StayWindow(CHECK_IN - timedelta(days=1), CHECK_IN + timedelta(days=1)),
        StayWindow(CHECK_IN, CHECK_IN + timedelta(days=2)),
    ]


def test_empty_stay_window_rejected() -> None:
    service, _, _, _, _ = _build_service()
    with pytest.raises(InvalidAssignmentRequestError):
        service.assign_room(_request(check_out=CHECK_IN))


def test_low_confidence_flags_manual_review() -> None:
    config = _quiet_config(
        automation=AutomationSettings(
            conflict_resolution=ConflictResolutionPolicy(manual_review_threshold=0.9)
        )
    )
    rooms = [RoomInventoryRecord(room_number="501", room_type="deluxe", floor=5)]
    service, _, _, _, _ = _build_service(config=config, rooms=rooms)

    result = service.assign_room(_request())

    assert result.confidence == pytest.approx(0.75)
    assert [conflict.type for conflict in result.conflicts] == ["low_confidence"]
    assert result.conflicts[0].resolved is False


def test_inventory_floor_conflict_sets_staff_severity_warning() -> None:
    dispatcher = RecordingDispatcher()
    service, _, _, _, _ = _build_service(config=default_assignment_config(PROPERTY_ID), dispatcher=dispatcher)

    result = service.assign_room(_request())

    assert [conflict.type for conflict in result.conflicts] == ["inventory_floor"]
    staff = [payload for channel, payload in dispatcher.sent if channel == "internal"]
    assert staff[0]["severity"] == "warning"
    assert staff[0]["booking_id"] == "b-1"


# --- configuration gates ---

def test_disabled_config_raises() -> None:
    service, _, _, _, _ = _build_service(config=_quiet_config(enabled=False))
    with pytest.raises(ConfigurationMissingOrDisabledError):
        service.assign_room(_request())


def test_missing_config_raises_when_defaults_not_seeded() -> None:
    service, _, _, _, _ = _build_service(seed_default_config=False)
    with pytest.raises(ConfigurationMissingOrDisabledError):
        service.assign_room(_request(property_id="unknown-hotel"))


def test_disabled_automation_records_pending_manual() -> None:
    config = _quiet_config(automation=AutomationSettings(enable_automatic_assignment=False))
    service, _, _, ledger, _ = _build_service(config=config)

    with pytest.raises(ManualAssignmentRequiredError) as excinfo:
        service.assign_room(_request())

    assert excinfo.value.booking_id == "b-1"
    assert [request.booking_id for request in service.list_pending_manual(PROPERTY_ID)] == ["b-1"]
    assert ledger.list_holds(PROPERTY_ID) == []

    service.manual_assignment(_request(), room_number="102", assigned_by="front-desk")
    assert service.list_pending_manual(PROPERTY_ID) == []


# --- provider resilience ---

def test_provider_retried_with_exponential_backoff() -> None:
    flaky = FlakyInventory(inner=None, failures=2)  # type: ignore[arg-type]
    service, _, _, _, sleeps = _build_service(flaky=flaky)

    result = service.assign_room(_request())

    assert result.assigned_room.room_number == "101"
    assert flaky.calls == 3
    assert sleeps == [0.5, 1.0]


def test_provider_unavailable_without_snapshot() -> None:
    flaky = FlakyInventory(inner=None)  # type: ignore[arg-type]
    flaky.down = True
    service, _, _, _, sleeps = _build_service(flaky=flaky)

    with pytest.raises(ProviderUnavailableError):
        service.assign_room(_request())
    assert flaky.calls == 4
    assert sleeps == [0.5, 1.0, 2.0]


def test_provider_outage_falls_back_to_last_snapshot() -> None:
    flaky = FlakyInventory(inner=None)  # type: ignore[arg-type]
    service, _, _, _, _ = _build_service(flaky=flaky)
    first = service.assign_room(_request("b-1"))

    flaky.down = True
    second = service.assign_room(_request("b-2"))

    assert first.assigned_room.room_number == "101"
    assert second.assigned_room.room_number == "102"


# --- notifications ---

def test_failed_channel_recorded_and_retried() -> None:
    dispatcher = RecordingDispatcher(fail_channels=("sms",))
    service, _, repository, _, _ = _build_service(dispatcher=dispatcher)

    result = service.assign_room(_request())

    statuses = {(item.type, item.channel): item.status for item in result.notifications}
    assert statuses == {
        ("guest_assignment", "email"): NotificationStatus.SENT,
        ("guest_assignment", "sms"): NotificationStatus.FAILED,
        ("staff_alert", "internal"): NotificationStatus.SENT,
    }
    assert repository.get_current("b-1") == result
    assert service.pending_notification_count() == 1

    dispatcher.fail_channels.clear()
    assert service.retry_failed_notifications() == 1

    stored = repository.get_current("b-1")
    sms = [item for item in stored.notifications if item.channel == "sms"][0]
    assert sms.status == NotificationStatus.SENT
    assert sms.attempts == 2
    assert service.pending_notification_count() == 0


def test_notification_retries_stop_after_max_retries() -> None:
    dispatcher = RecordingDispatcher(fail_channels=("sms",))
    config = _quiet_config(automation=AutomationSettings(max_retries=1))
    service, _, _, _, _ = _build_service(config=config, dispatcher=dispatcher)
    service.assign_room(_request())

    assert service.retry_failed_notifications() == 0
    assert service.pending_notification_count() == 0


# --- manual assignment ---

def test_manual_assignment_marks_approval_requirement() -> None:
    service, _, _, ledger, _ = _build_service()

    result = service.manual_assignment(
        _request(), room_number="501", assigned_by="front-desk", notes="Guest asked for a view"
    )

    assert result.assignment_method == AssignmentMethod.MANUAL
    assert result.assigned_by == "front-desk"
    assert result.requires_approval is True
    assert result.notes == "Guest asked for a view"
    assert result.upgrades[0].reason == "manual_override"
    assert [hold.room_number for hold in ledger.list_holds(PROPERTY_ID)] == ["501"]


def test_manual_assignment_of_held_room_rejected_without_mutation() -> None:
    service, _, repository, ledger, _ = _build_service()
    service.assign_room(_request("b-1"))
    holds_before = ledger.list_holds(PROPERTY_ID)

    with pytest.raises(RoomNotAvailableError):
        service.manual_assignment(_request("b-2"), room_number="101", assigned_by="front-desk")

    assert repository.get_current("b-2") is None
    assert ledger.list_holds(PROPERTY_ID) == holds_before


def test_manual_assignment_of_unknown_room_rejected() -> None:
    service, _, repository, _, _ = _build_service()
    with pytest.raises(RoomNotAvailableError):
        service.manual_assignment(_request(), room_number="999", assigned_by="front-desk")
    assert repository.get_current("b-1") is None


def test_manual_assignment_requires_override_permission() -> None:
    config = _quiet_config(overrides=OverrideSettings(allow_manual_override=False))
    service, _, _, _, _ = _build_service(config=config)
    with pytest.raises(ManualOverrideNotAllowedError):
        service.manual_assignment(_request(), room_number="101", assigned_by="front-desk")


def test_manual_assignment_on_assigned_booking_is_duplicate() -> None:
    service, _, _, _, _ = _build_service()
    service.assign_room(_request())
    with pytest.raises(DuplicateAssignmentError):
        service.manual_assignment(_request(), room_number="102", assigned_by="front-desk")


# --- reassignment ---

def test_reassign_to_higher_tier_is_upgrade() -> None:
    service, _, repository, ledger, _ = _build_service()
    service.assign_room(_request())

    result = service.reassign_room("b-1", "501", reason="Air conditioning broken", assigned_by="manager")

    assert result.assignment_method == AssignmentMethod.UPGRADED
    assert result.reassigned_from == "101"
    assert result.notes == "Reassigned from 101. Reason: Air conditioning broken"
    assert [item.assigned_room.room_number for item in repository.history("b-1")] == ["101", "501"]
    assert [hold.room_number for hold in ledger.list_holds(PROPERTY_ID)] == ["501"]


def test_reassign_within_tier_is_manual() -> None:
    service, _, _, _, _ = _build_service()
    service.assign_room(_request())
    result = service.reassign_room("b-1", "102", reason="Guest request")
    assert result.assignment_method == AssignmentMethod.MANUAL


def test_reassign_requires_existing_assignment() -> None:
    service, _, _, _, _ = _build_service()
    with pytest.raises(InvalidReassignmentError):
        service.reassign_room("missing", "101", reason="n/a")


def test_reassign_to_same_room_rejected() -> None:
    service, _, _, _, _ = _build_service()
    service.assign_room(_request())
    with pytest.raises(InvalidReassignmentError):
        service.reassign_room("b-1", "101", reason="n/a")


def test_failed_reassignment_keeps_original_room() -> None:
    service, _, repository, ledger, _ = _build_service()
    service.assign_room(_request("b-1"))
    service.assign_room(_request("b-2"))

    with pytest.raises(RoomNotAvailableError):
        service.reassign_room("b-1", "102", reason="Guest request")

    assert repository.get_current("b-1").assigned_room.room_number == "101"
    assert sorted(hold.room_number for hold in ledger.list_holds(PROPERTY_ID)) == ["101", "102"]


# --- bulk ---

def test_bulk_assignment_skips_failures() -> None:
    rooms = [
        RoomInventoryRecord(room_number="101", room_type="standard", floor=1),
        RoomInventoryRecord(room_number="102", room_type="standard", floor=1),
    ]
    service, _, _, _, _ = _build_service(rooms=rooms)

    results = service.bulk_assignment([_request("b-1"), _request("b-2"), _request("b-3")])

    assert [result.booking_id for result in results] == ["b-1", "b-2"]
    assert service.get_assignment("b-3") is None
