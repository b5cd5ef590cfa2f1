"""Room assignment orchestration: lookup, scoring, fallback, reservation and notification."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Event, Lock, RLock
from typing import Any, Callable, Optional, Sequence

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
    RoomAssignmentError,
    RoomNotAvailableError,
)
from room_engine.domain.models import (
    AssignedRoom,
    AssignmentAnalytics,
    AssignmentConfig,
    AssignmentMethod,
    AssignmentRule,
    ConflictDetail,
    ConflictStrategy,
    NotificationOutcome,
    NotificationStatus,
    RoomAssignmentRequest,
    RoomAssignmentResult,
    RoomInventoryRecord,
    RoomStatus,
    StayWindow,
    UpgradeDetails,
    room_tier,
)
from room_engine.repository.data_repository import (
    AssignmentRepository,
    InMemoryAssignmentRepository,
    InMemoryReservationLedger,
    ReservationLedger,
)
from room_engine.services.analytics_service import AssignmentAnalyticsService
from room_engine.services.config_service import ConfigurationStore
from room_engine.services.inventory_provider import InventoryProvider
from room_engine.services.notification_dispatcher import NotificationDispatcher
from room_engine.services.rule_service import RuleEvaluator
from room_engine.services.scoring_service import RoomScorer, ScoredRoom
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

BASE_CONFIDENCE = 0.7
EXACT_TYPE_CONFIDENCE = 0.15
ACCESSIBILITY_CONFIDENCE = 0.10
AUTOMATIC_CONFIDENCE = 0.05

SYSTEM_ACTOR = "system"

GUEST_NOTIFICATION = "guest_assignment"
UPGRADE_NOTIFICATION = "upgrade_notification"
STAFF_NOTIFICATION = "staff_alert"

AVAILABILITY_UPGRADE_REASON = "availability"
MANUAL_UPGRADE_REASON = "manual_override"
REASSIGNMENT_UPGRADE_REASON = "reassignment"


@dataclass(frozen=True)
class _PendingNotification:
    booking_id: str
    property_id: str
    room_number: str
    assigned_at: datetime
    type: str
    channel: str
    payload: dict[str, Any]
    attempts: int


def accessibility_satisfied(request: RoomAssignmentRequest, room: RoomInventoryRecord) -> bool:
    """True when at least one need was requested and every requested need is present."""
    needs = request.accessibility_needs
    if needs is None:
        return False
    available = room.features.accessibility
    requested = [
        (needs.wheelchair_accessible, available.wheelchair_accessible),
        (needs.hearing_impaired, available.hearing_impaired),
        (needs.visually_impaired, available.visually_impaired),
    ]
    wanted = [present for asked, present in requested if asked]
    return bool(wanted) and all(wanted)


def compute_confidence(
    request: RoomAssignmentRequest,
    room: RoomInventoryRecord,
    method: AssignmentMethod,
) -> float:
    confidence = BASE_CONFIDENCE
    if room.room_type == request.room_type_booked:
        confidence += EXACT_TYPE_CONFIDENCE
    if accessibility_satisfied(request, room):
        confidence += ACCESSIBILITY_CONFIDENCE
    if method == AssignmentMethod.AUTOMATIC:
        confidence += AUTOMATIC_CONFIDENCE
    return round(min(1.0, confidence), 2)


def fallback_windows(window: StayWindow, shift_days: int = 1) -> list[StayWindow]:
    """Widened search windows in the order they are tried; empty windows are skipped."""
    candidates = [
        window.shifted(check_in_days=shift_days),
        window.shifted(check_out_days=-shift_days),
        window.shifted(check_in_days=-shift_days),
        window.shifted(check_out_days=shift_days),
    ]
    return [candidate for candidate in candidates if not candidate.is_empty]


def _same_entry(current: Optional[RoomAssignmentResult], room_number: str, assigned_at: datetime) -> bool:
    return (
        current is not None
        and current.assigned_room.room_number == room_number
        and current.assigned_at == assigned_at
    )


def merge_outcomes(
    existing: Sequence[NotificationOutcome],
    incoming: Sequence[NotificationOutcome],
) -> list[NotificationOutcome]:
    """Existing outcomes win per (type, channel); they can only come from a later retry."""
    merged = list(existing)
    seen = {(outcome.type, outcome.channel) for outcome in existing}
    merged.extend(outcome for outcome in incoming if (outcome.type, outcome.channel) not in seen)
    return merged


def _strategy_name(config: AssignmentConfig) -> str:
    return ConflictStrategy(config.automation.conflict_resolution.strategy).value


def _validate_request(request: RoomAssignmentRequest) -> None:
    if not request.booking_id.strip():
        raise InvalidAssignmentRequestError("booking_id must be non-empty")
    if StayWindow(request.check_in, request.check_out).is_empty:
        raise InvalidAssignmentRequestError("check_out must be after check_in")
    if request.party_size < 1:
        raise InvalidAssignmentRequestError("party_size must be at least 1")


class RoomAssignmentService:
    """Single entry point for automatic, manual and re-assignment of rooms.

    A per-property lock is held from scoring through reservation so two
    concurrent requests cannot select the same room. Inventory fetches and
    notification delivery happen outside the lock.
    """

    def __init__(
        self,
        config_store: ConfigurationStore,
        inventory_provider: InventoryProvider,
        notification_dispatcher: NotificationDispatcher,
        assignment_repository: Optional[AssignmentRepository] = None,
        reservation_ledger: Optional[ReservationLedger] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config_store = config_store
        self._inventory = inventory_provider
        self._dispatcher = notification_dispatcher
        self._repository = assignment_repository or InMemoryAssignmentRepository()
        self._ledger = reservation_ledger or InMemoryReservationLedger()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or time.sleep

        self._rule_evaluator = RuleEvaluator(self._settings)
        self._scorer = RoomScorer()
        self._analytics = AssignmentAnalyticsService(self._repository)

        self._locks_guard = Lock()
        self._property_locks: dict[str, Lock] = {}
        self._state_lock = RLock()
        self._snapshots: dict[str, dict[str, RoomInventoryRecord]] = {}
        self._pending_manual: OrderedDict[str, RoomAssignmentRequest] = OrderedDict()
        self._failed_notifications: list[_PendingNotification] = []
        # Bookings stored but not yet finalized; duplicate callers wait on these.
        self._finalizing: dict[str, tuple[tuple[str, datetime], Event]] = {}

    # --- public operations ---

    def assign_room(self, request: RoomAssignmentRequest) -> RoomAssignmentResult:
        config = self._require_config(request.property_id)

        cached = self._repository.get_current(request.booking_id)
        if cached is not None:
            logger.info(
                "Returning existing assignment | booking_id=%s | room=%s",
                request.booking_id,
                cached.assigned_room.room_number,
            )
            return self._await_finalized(cached)

        _validate_request(request)
        if not config.automation.enable_automatic_assignment:
            with self._state_lock:
                self._pending_manual[request.booking_id] = request
            logger.info(
                "Automatic assignment disabled; booking awaits manual decision | property_id=%s | booking_id=%s",
                request.property_id,
                request.booking_id,
            )
            raise ManualAssignmentRequiredError(request.booking_id)

        rules = self._rule_evaluator.find_applicable_rules(request, config, self._clock())
        stay = StayWindow(request.check_in, request.check_out)
        searches = [(stay, AssignmentMethod.AUTOMATIC)]
        searches.extend(
            (window, AssignmentMethod.FALLBACK)
            for window in fallback_windows(stay, self._settings.fallback_shift_days)
        )

        for window, method in searches:
            rooms = self._fetch_rooms(request.property_id, window, config)
            outcome = self._select_and_reserve(request, config, rules, rooms, window, method)
            if outcome is None:
                logger.info(
                    "No eligible room for window | booking_id=%s | method=%s | check_in=%s | check_out=%s",
                    request.booking_id,
                    method.value,
                    window.check_in.isoformat(),
                    window.check_out.isoformat(),
                )
                continue
            result, created = outcome
            if not created:
                return self._await_finalized(result)
            return self._finalize(result, config)

        logger.warning(
            "No rooms available after widened search | property_id=%s | booking_id=%s | room_type=%s",
            request.property_id,
            request.booking_id,
            request.room_type_booked,
        )
        raise NoRoomsAvailableError(
            f"No rooms available for booking {request.booking_id} even with widened dates"
        )

    def manual_assignment(
        self,
        request: RoomAssignmentRequest,
        room_number: str,
        assigned_by: str,
        notes: Optional[str] = None,
    ) -> RoomAssignmentResult:
        config = self._require_config(request.property_id)
        if not config.overrides.allow_manual_override:
            raise ManualOverrideNotAllowedError(
                f"Manual overrides are disabled for property {request.property_id}"
            )
        if self._repository.get_current(request.booking_id) is not None:
            raise DuplicateAssignmentError(f"Booking {request.booking_id} already has an assignment")
        _validate_request(request)

        window = StayWindow(request.check_in, request.check_out)
        room = self._find_available_room(request.property_id, room_number, window, config)

        with self._property_lock(request.property_id):
            if self._repository.get_current(request.booking_id) is not None:
                raise DuplicateAssignmentError(f"Booking {request.booking_id} already has an assignment")
            if not self._ledger.reserve(request.property_id, room.room_number, request.booking_id, window):
                raise RoomNotAvailableError(f"Room {room_number} is already held for an overlapping stay")
            rules = self._rule_evaluator.find_applicable_rules(request, config, self._clock())
            result = self._build_result(
                request,
                config,
                rules,
                ScoredRoom(room=room, score=self._scorer.score(room, request, rules, config, window)),
                AssignmentMethod.MANUAL,
                pool=[room],
                conflicts=[],
                assigned_by=assigned_by,
                notes=notes,
                requires_approval=config.overrides.override_requires_approval,
                upgrade_reason=MANUAL_UPGRADE_REASON,
            )
            self._store_new_result(result, window)

        logger.info(
            "Manual assignment recorded | booking_id=%s | room=%s | assigned_by=%s | requires_approval=%s",
            request.booking_id,
            room.room_number,
            assigned_by,
            result.requires_approval,
        )
        return self._finalize(result, config)

    def reassign_room(
        self,
        booking_id: str,
        new_room_number: str,
        reason: str,
        assigned_by: str = SYSTEM_ACTOR,
    ) -> RoomAssignmentResult:
        current = self._repository.get_current(booking_id)
        if current is None:
            raise InvalidReassignmentError(f"Booking {booking_id} has no assignment to change")
        old_room_number = current.assigned_room.room_number
        if new_room_number == old_room_number:
            raise InvalidReassignmentError(f"Booking {booking_id} is already in room {new_room_number}")

        request = current.request
        config = self._require_config(request.property_id)
        window = current.stay_window
        room = self._find_available_room(request.property_id, new_room_number, window, config)

        with self._property_lock(request.property_id):
            if not self._ledger.reserve(request.property_id, room.room_number, booking_id, window):
                raise RoomNotAvailableError(f"Room {new_room_number} is already held for an overlapping stay")
            self._ledger.release(request.property_id, old_room_number, booking_id)
            self._mark_snapshot(request.property_id, old_room_number, RoomStatus.AVAILABLE)

            method = (
                AssignmentMethod.UPGRADED
                if room_tier(room.room_type) > room_tier(request.room_type_booked)
                else AssignmentMethod.MANUAL
            )
            rules = self._rule_evaluator.find_applicable_rules(request, config, self._clock())
            result = self._build_result(
                request,
                config,
                rules,
                ScoredRoom(room=room, score=self._scorer.score(room, request, rules, config, window)),
                method,
                pool=[room],
                conflicts=[],
                assigned_by=assigned_by,
                notes=f"Reassigned from {old_room_number}. Reason: {reason}",
                reassigned_from=old_room_number,
                upgrade_reason=REASSIGNMENT_UPGRADE_REASON,
            )
            self._mark_snapshot(request.property_id, room.room_number, RoomStatus.OCCUPIED)
            self._repository.append(result)

        logger.info(
            "Booking reassigned | booking_id=%s | from_room=%s | to_room=%s | method=%s",
            booking_id,
            old_room_number,
            room.room_number,
            method.value,
        )
        return self._finalize(result, config)

    def bulk_assignment(self, requests: Sequence[RoomAssignmentRequest]) -> list[RoomAssignmentResult]:
        results: list[RoomAssignmentResult] = []
        for request in requests:
            try:
                results.append(self.assign_room(request))
            except RoomAssignmentError as exc:
                logger.warning(
                    "Bulk assignment skipped booking | booking_id=%s | error=%s",
                    request.booking_id,
                    exc,
                )
        logger.info("Bulk assignment finished | requested=%s | assigned=%s", len(requests), len(results))
        return results

    def get_assignment(self, booking_id: str) -> Optional[RoomAssignmentResult]:
        return self._repository.get_current(booking_id)

    def get_assignment_history(self, booking_id: str) -> list[RoomAssignmentResult]:
        return self._repository.history(booking_id)

    def list_pending_manual(self, property_id: Optional[str] = None) -> list[RoomAssignmentRequest]:
        with self._state_lock:
            return [
                request
                for request in self._pending_manual.values()
                if property_id is None or request.property_id == property_id
            ]

    def get_configuration(self, property_id: str) -> Optional[AssignmentConfig]:
        return self._config_store.get(property_id)

    def update_configuration(self, property_id: str, config: AssignmentConfig) -> AssignmentConfig:
        return self._config_store.replace(property_id, config)

    def get_analytics(self, property_id: str, start: datetime, end: datetime) -> AssignmentAnalytics:
        return self._analytics.get_analytics(property_id, start, end)

    def retry_failed_notifications(self) -> int:
        """Resend queued failed notifications once; returns how many were delivered."""
        with self._state_lock:
            pending, self._failed_notifications = self._failed_notifications, []
        if not pending:
            return 0

        delivered = 0
        for item in pending:
            attempts = item.attempts + 1
            sent, error = self._send(item.channel, item.payload)
            if sent:
                delivered += 1
                outcome = NotificationOutcome(
                    type=item.type,
                    channel=item.channel,
                    status=NotificationStatus.SENT,
                    sent_at=self._clock(),
                    attempts=attempts,
                )
            else:
                outcome = NotificationOutcome(
                    type=item.type,
                    channel=item.channel,
                    status=NotificationStatus.FAILED,
                    error=error,
                    attempts=attempts,
                )
                config = self._config_store.get(item.property_id)
                if (
                    config is not None
                    and config.automation.retry_failed_assignments
                    and attempts <= config.automation.max_retries
                ):
                    with self._state_lock:
                        self._failed_notifications.append(replace(item, attempts=attempts))
                else:
                    logger.error(
                        "Notification retries exhausted | booking_id=%s | channel=%s | attempts=%s",
                        item.booking_id,
                        item.channel,
                        attempts,
                    )
            self._record_outcome(item, outcome)

        logger.info("Notification retry pass finished | retried=%s | delivered=%s", len(pending), delivered)
        return delivered

    def pending_notification_count(self) -> int:
        with self._state_lock:
            return len(self._failed_notifications)

    # --- internals ---

    def _require_config(self, property_id: str) -> AssignmentConfig:
        config = self._config_store.get(property_id)
        if config is None or not config.enabled:
            raise ConfigurationMissingOrDisabledError(
                f"No enabled assignment configuration for property {property_id}"
            )
        return config

    def _property_lock(self, property_id: str) -> Lock:
        with self._locks_guard:
            lock = self._property_locks.get(property_id)
            if lock is None:
                lock = Lock()
                self._property_locks[property_id] = lock
            return lock

    def _fetch_rooms(
        self,
        property_id: str,
        window: StayWindow,
        config: AssignmentConfig,
    ) -> list[RoomInventoryRecord]:
        retries = max(0, config.automation.max_retries)
        delay = config.automation.retry_backoff_seconds
        last_error: Optional[ProviderUnavailableError] = None
        for attempt in range(retries + 1):
            try:
                rooms = list(
                    self._inventory.get_available_rooms(property_id, window.check_in, window.check_out)
                )
            except ProviderUnavailableError as exc:
                last_error = exc
                logger.warning(
                    "Inventory fetch failed | property_id=%s | attempt=%s | error=%s",
                    property_id,
                    attempt + 1,
                    exc,
                )
                if attempt < retries:
                    self._sleep(delay)
                    delay *= 2
                continue
            with self._state_lock:
                snapshot = self._snapshots.setdefault(property_id, {})
                snapshot.update({room.room_number: room for room in rooms})
            return rooms

        with self._state_lock:
            snapshot = self._snapshots.get(property_id)
            cached_rooms = (
                None
                if snapshot is None
                else [room for room in snapshot.values() if room.status == RoomStatus.AVAILABLE]
            )
        if cached_rooms is None:
            raise ProviderUnavailableError(
                f"Inventory unavailable for property {property_id} and no snapshot exists"
            ) from last_error
        logger.warning(
            "Using last-known inventory snapshot | property_id=%s | rooms=%s",
            property_id,
            len(cached_rooms),
        )
        return cached_rooms

    def _find_available_room(
        self,
        property_id: str,
        room_number: str,
        window: StayWindow,
        config: AssignmentConfig,
    ) -> RoomInventoryRecord:
        rooms = self._fetch_rooms(property_id, window, config)
        for room in rooms:
            if room.room_number == room_number:
                return room
        raise RoomNotAvailableError(f"Room {room_number} is not available for the requested stay")

    def _mark_snapshot(self, property_id: str, room_number: str, status: RoomStatus) -> None:
        with self._state_lock:
            snapshot = self._snapshots.get(property_id)
            if snapshot is None or room_number not in snapshot:
                return
            snapshot[room_number] = replace(snapshot[room_number], status=status)

    def _select_and_reserve(
        self,
        request: RoomAssignmentRequest,
        config: AssignmentConfig,
        rules: list[AssignmentRule],
        rooms: list[RoomInventoryRecord],
        window: StayWindow,
        method: AssignmentMethod,
    ) -> Optional[tuple[RoomAssignmentResult, bool]]:
        with self._property_lock(request.property_id):
            cached = self._repository.get_current(request.booking_id)
            if cached is not None:
                return cached, False

            free_rooms = [
                room
                for room in rooms
                if self._ledger.is_free(
                    request.property_id,
                    room.room_number,
                    window,
                    exclude_booking_id=request.booking_id,
                )
            ]
            scored = self._scorer.score_all(free_rooms, request, rules, config, window)
            conflicts: list[ConflictDetail] = []
            for candidate in scored:
                room_number = candidate.room.room_number
                if not self._ledger.reserve(request.property_id, room_number, request.booking_id, window):
                    logger.warning(
                        "Room taken during selection; trying next candidate | booking_id=%s | room=%s",
                        request.booking_id,
                        room_number,
                    )
                    conflicts.append(
                        ConflictDetail(
                            type="concurrent_reservation",
                            description=f"Room {room_number} was reserved by another booking during selection",
                            resolution_strategy=_strategy_name(config),
                            resolved=True,
                            resolved_at=self._clock(),
                        )
                    )
                    continue

                notes = None
                if method == AssignmentMethod.FALLBACK:
                    notes = (
                        f"Assigned using widened stay window "
                        f"{window.check_in.isoformat()} to {window.check_out.isoformat()}"
                    )
                result = self._build_result(
                    request,
                    config,
                    rules,
                    candidate,
                    method,
                    pool=free_rooms,
                    conflicts=conflicts,
                    assigned_by=SYSTEM_ACTOR,
                    notes=notes,
                )
                self._store_new_result(result, window)
                return result, True
        return None

    def _store_new_result(self, result: RoomAssignmentResult, window: StayWindow) -> None:
        """Persist a freshly reserved result; the caller holds the property lock."""
        room_number = result.assigned_room.room_number
        with self._state_lock:
            self._finalizing[result.booking_id] = ((room_number, result.assigned_at), Event())
        try:
            self._repository.append(result)
        except Exception:
            self._finish_finalizing(result)
            self._ledger.release(result.property_id, room_number, result.booking_id)
            logger.exception(
                "Failed to persist assignment; hold released | booking_id=%s | room=%s",
                result.booking_id,
                room_number,
            )
            raise
        self._mark_snapshot(result.property_id, room_number, RoomStatus.OCCUPIED)
        with self._state_lock:
            self._pending_manual.pop(result.booking_id, None)

    def _upgrade_reason(self, rules: list[AssignmentRule]) -> str:
        for rule in rules:
            if rule.allows_automatic_upgrade:
                return rule.id
        return AVAILABILITY_UPGRADE_REASON

    def _build_result(
        self,
        request: RoomAssignmentRequest,
        config: AssignmentConfig,
        rules: list[AssignmentRule],
        candidate: ScoredRoom,
        method: AssignmentMethod,
        *,
        pool: list[RoomInventoryRecord],
        conflicts: list[ConflictDetail],
        assigned_by: str,
        notes: Optional[str] = None,
        reassigned_from: Optional[str] = None,
        requires_approval: bool = False,
        upgrade_reason: Optional[str] = None,
    ) -> RoomAssignmentResult:
        room = candidate.room
        now = self._clock()
        booked_tier = room_tier(request.room_type_booked)
        assigned_tier = room_tier(room.room_type)

        upgrades: list[UpgradeDetails] = []
        if booked_tier >= 0 and assigned_tier > booked_tier:
            upgrades.append(
                UpgradeDetails(
                    from_room_type=request.room_type_booked,
                    to_room_type=room.room_type,
                    reason=upgrade_reason or self._upgrade_reason(rules),
                    value=(assigned_tier - booked_tier) * self._settings.upgrade_value_per_tier,
                    charged=any(
                        template.upgrades.charge_upgrade
                        for rule in rules
                        for template in rule.assignments
                        if template.upgrades.automatic
                    ),
                    guest_notified=config.notifications.notify_guest,
                )
            )

        confidence = compute_confidence(request, room, method)
        all_conflicts = list(conflicts)
        threshold = config.automation.conflict_resolution.manual_review_threshold
        if confidence < threshold:
            all_conflicts.append(
                ConflictDetail(
                    type="low_confidence",
                    description=f"Confidence {confidence:.2f} is below the review threshold {threshold:.2f}",
                    resolution_strategy=ConflictStrategy.MANUAL_REVIEW.value,
                    resolved=False,
                )
            )
        floor_minimum = config.constraints.minimum_inventory.get(room.room_type)
        if floor_minimum is not None:
            remaining = sum(
                1
                for other in pool
                if other.room_type == room.room_type and other.room_number != room.room_number
            )
            if remaining < floor_minimum:
                all_conflicts.append(
                    ConflictDetail(
                        type="inventory_floor",
                        description=(
                            f"{room.room_type} availability drops to {remaining}, "
                            f"below the minimum of {floor_minimum}"
                        ),
                        resolution_strategy=_strategy_name(config),
                        resolved=True,
                        resolved_at=now,
                    )
                )

        return RoomAssignmentResult(
            booking_id=request.booking_id,
            request=request,
            assigned_room=AssignedRoom(
                room_number=room.room_number,
                room_type=room.room_type,
                floor=room.floor,
                rate=self._settings.base_rates.get(room.room_type, self._settings.default_rate),
                currency=self._settings.currency,
                view=room.view,
                amenities=list(room.amenities),
                features=room.features,
            ),
            assignment_method=method,
            confidence=confidence,
            assigned_at=now,
            assigned_by=assigned_by,
            score=candidate.score,
            upgrades=upgrades,
            conflicts=all_conflicts,
            notes=notes,
            reassigned_from=reassigned_from,
            requires_approval=requires_approval,
        )

    def _finalize(self, result: RoomAssignmentResult, config: AssignmentConfig) -> RoomAssignmentResult:
        logger.info(
            "Room assigned | booking_id=%s | room=%s | method=%s | score=%s | confidence=%.2f",
            result.booking_id,
            result.assigned_room.room_number,
            AssignmentMethod(result.assignment_method).value,
            result.score,
            result.confidence,
        )
        try:
            outcomes = self._dispatch_notifications(result, config)
            if not outcomes:
                return result
            room_number = result.assigned_room.room_number
            with self._property_lock(result.property_id):
                current = self._repository.get_current(result.booking_id)
                if not _same_entry(current, room_number, result.assigned_at):
                    logger.info(
                        "Assignment changed during notification; outcomes not stored | booking_id=%s | room=%s",
                        result.booking_id,
                        room_number,
                    )
                    return replace(result, notifications=outcomes)
                updated = replace(current, notifications=merge_outcomes(current.notifications, outcomes))
                self._repository.update_current(updated)
            return updated
        finally:
            self._finish_finalizing(result)

    def _await_finalized(self, cached: RoomAssignmentResult) -> RoomAssignmentResult:
        """Wait for an in-flight first assignment so duplicates see its notifications."""
        with self._state_lock:
            entry = self._finalizing.get(cached.booking_id)
        if entry is not None:
            entry[1].wait()
        return self._repository.get_current(cached.booking_id) or cached

    def _finish_finalizing(self, result: RoomAssignmentResult) -> None:
        key = (result.assigned_room.room_number, result.assigned_at)
        with self._state_lock:
            entry = self._finalizing.get(result.booking_id)
            if entry is None or entry[0] != key:
                return
            del self._finalizing[result.booking_id]
        entry[1].set()

    def _guest_payload(self, result: RoomAssignmentResult, kind: str, template: str) -> dict[str, Any]:
        room = result.assigned_room
        return {
            "type": kind,
            "template": template,
            "booking_id": result.booking_id,
            "guest_id": result.request.guest_id,
            "room_number": room.room_number,
            "room_type": room.room_type,
            "floor": room.floor,
            "amenities": list(room.amenities),
            "upgrades": [
                {
                    "from": upgrade.from_room_type,
                    "to": upgrade.to_room_type,
                    "reason": upgrade.reason,
                }
                for upgrade in result.upgrades
            ],
        }

    def _staff_payload(self, result: RoomAssignmentResult) -> dict[str, Any]:
        method = AssignmentMethod(result.assignment_method).value
        return {
            "type": "room_assignment",
            "severity": "warning" if result.conflicts else "info",
            "message": f"Room {result.assigned_room.room_number} assigned to booking {result.booking_id} ({method})",
            "booking_id": result.booking_id,
            "room_number": result.assigned_room.room_number,
            "method": method,
            "confidence": result.confidence,
            "timestamp": result.assigned_at.isoformat(),
        }

    def _send(self, channel: str, payload: dict[str, Any]) -> tuple[bool, Optional[str]]:
        try:
            if self._dispatcher.send(channel, payload):
                return True, None
        except NotificationFailedError as exc:
            return False, str(exc)
        return False, f"{channel} rejected the notification"

    def _deliver(
        self,
        result: RoomAssignmentResult,
        kind: str,
        channel: str,
        payload: dict[str, Any],
    ) -> NotificationOutcome:
        sent, error = self._send(channel, payload)
        if sent:
            return NotificationOutcome(
                type=kind,
                channel=channel,
                status=NotificationStatus.SENT,
                sent_at=self._clock(),
            )
        logger.warning(
            "Notification failed; queued for retry | booking_id=%s | channel=%s | type=%s | error=%s",
            result.booking_id,
            channel,
            kind,
            error,
        )
        with self._state_lock:
            self._failed_notifications.append(
                _PendingNotification(
                    booking_id=result.booking_id,
                    property_id=result.property_id,
                    room_number=result.assigned_room.room_number,
                    assigned_at=result.assigned_at,
                    type=kind,
                    channel=channel,
                    payload=payload,
                    attempts=1,
                )
            )
        return NotificationOutcome(
            type=kind,
            channel=channel,
            status=NotificationStatus.FAILED,
            error=error,
        )

    def _dispatch_notifications(
        self,
        result: RoomAssignmentResult,
        config: AssignmentConfig,
    ) -> list[NotificationOutcome]:
        settings = config.notifications
        outcomes: list[NotificationOutcome] = []
        if settings.notify_guest:
            kind = UPGRADE_NOTIFICATION if result.upgrades else GUEST_NOTIFICATION
            payload = self._guest_payload(result, kind, settings.templates.get(kind, kind))
            for channel in settings.channels:
                outcomes.append(self._deliver(result, kind, channel, payload))
        if settings.notify_staff:
            outcomes.append(
                self._deliver(result, STAFF_NOTIFICATION, settings.staff_channel, self._staff_payload(result))
            )
        return outcomes

    def _record_outcome(self, item: _PendingNotification, outcome: NotificationOutcome) -> None:
        with self._property_lock(item.property_id):
            current = self._repository.get_current(item.booking_id)
            if not _same_entry(current, item.room_number, item.assigned_at):
                return
            notifications = [
                outcome if (existing.type, existing.channel) == (outcome.type, outcome.channel) else existing
                for existing in current.notifications
            ]
            if outcome not in notifications:
                notifications.append(outcome)
            self._repository.update_current(replace(current, notifications=notifications))
