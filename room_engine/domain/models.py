"""Domain models for rule-driven room assignment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional


ROOM_TIER_HIERARCHY: tuple[str, ...] = ("standard", "deluxe", "suite", "presidential")


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so mixed inputs stay comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def room_tier(room_type: str) -> int:
    """Rank of a room type in the tier hierarchy; unknown types rank lowest."""
    try:
        return ROOM_TIER_HIERARCHY.index(room_type)
    except ValueError:
        return -1


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    BLOCKED = "blocked"
    DIRTY = "dirty"
    RESERVED = "reserved"


class AssignmentMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    UPGRADED = "upgraded"
    FALLBACK = "fallback"


class ConditionType(str, Enum):
    LOYALTY_TIER = "loyalty_tier"
    BOOKING_VALUE = "booking_value"
    ACCESSIBILITY = "accessibility"
    PARTY_SIZE = "party_size"
    LENGTH_OF_STAY = "length_of_stay"
    ARRIVAL_TIME = "arrival_time"
    GUEST_TYPE = "guest_type"
    ROOM_PREFERENCE = "room_preference"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    BETWEEN = "between"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"


class ConflictStrategy(str, Enum):
    FIRST_COME_FIRST_SERVED = "first_come_first_served"
    PRIORITY_BASED = "priority_based"
    MANUAL_REVIEW = "manual_review"
    UPGRADE_OFFER = "upgrade_offer"


# --- Rules ---


@dataclass(frozen=True)
class RuleCondition:
    # Kept as plain strings so configs carrying unknown types or operators
    # still load; the evaluator treats those as non-matching.
    type: str
    operator: str
    value: Any = None
    weight: float = 1.0


@dataclass(frozen=True)
class TimeOfDayWindow:
    start: str
    end: str


@dataclass(frozen=True)
class RuleSchedule:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    days_of_week: Optional[list[int]] = None
    time_of_day: Optional[TimeOfDayWindow] = None


@dataclass(frozen=True)
class AccessibilityFeatures:
    wheelchair_accessible: bool = False
    hearing_impaired: bool = False
    visually_impaired: bool = False
    mobility_assistance: bool = False
    roll_in_shower: bool = False
    lowered_fixtures: bool = False


@dataclass(frozen=True)
class FloorPreference:
    type: str
    floors: list[int] = field(default_factory=list)
    avoid: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ViewPreference:
    preferred: list[str] = field(default_factory=list)
    avoid: list[str] = field(default_factory=list)
    priority: int = 1


@dataclass(frozen=True)
class RoomPreferences:
    floor: Optional[FloorPreference] = None
    view: Optional[ViewPreference] = None
    amenities: list[str] = field(default_factory=list)
    accessibility: Optional[AccessibilityFeatures] = None
    quiet_zone: bool = False
    smoking: Optional[bool] = None


@dataclass(frozen=True)
class UpgradeCondition:
    trigger: str
    threshold: Any = None
    upgrade_types: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UpgradePolicy:
    automatic: bool = False
    conditions: list[UpgradeCondition] = field(default_factory=list)
    max_upgrade_level: int = 0
    charge_upgrade: bool = False
    notify_guest: bool = True


@dataclass(frozen=True)
class FallbackOption:
    room_type: str
    acceptance_threshold: float = 0.0
    notification_required: bool = False
    approval_required: bool = False


@dataclass(frozen=True)
class RoomAssignmentTemplate:
    room_type: str = "any"
    specific_rooms: list[str] = field(default_factory=list)
    preferences: RoomPreferences = field(default_factory=RoomPreferences)
    upgrades: UpgradePolicy = field(default_factory=UpgradePolicy)
    fallbacks: list[FallbackOption] = field(default_factory=list)


@dataclass(frozen=True)
class AssignmentRule:
    id: str
    priority: int
    conditions: list[RuleCondition] = field(default_factory=list)
    assignments: list[RoomAssignmentTemplate] = field(default_factory=list)
    active: bool = True
    name: str = ""
    description: str = ""
    schedule: Optional[RuleSchedule] = None

    @property
    def allows_automatic_upgrade(self) -> bool:
        return any(template.upgrades.automatic for template in self.assignments)


# --- Property configuration ---


@dataclass(frozen=True)
class GroupAssignmentPolicy:
    keep_together: bool = True
    max_distance: int = 3
    same_floor: bool = True
    consecutive_rooms: bool = False
    notify_if_separated: bool = True


@dataclass(frozen=True)
class VipHandlingPolicy:
    auto_upgrade: bool = True
    best_available: bool = True
    manual_review: bool = False
    special_amenities: list[str] = field(default_factory=list)
    personalized_service: bool = True


@dataclass(frozen=True)
class FamilyRoomPolicy:
    adjacent_rooms: bool = True
    connecting_rooms: bool = True
    child_safety_features: bool = True
    family_floors: list[int] = field(default_factory=list)
    quiet_hours: bool = True


@dataclass(frozen=True)
class AssignmentPreferences:
    assignment_timing: str = "check_in_day"
    custom_timing_hours: Optional[int] = None
    block_contiguous: bool = True
    group_assignments: GroupAssignmentPolicy = field(default_factory=GroupAssignmentPolicy)
    vip_handling: VipHandlingPolicy = field(default_factory=VipHandlingPolicy)
    family_room_policy: FamilyRoomPolicy = field(default_factory=FamilyRoomPolicy)


@dataclass(frozen=True)
class ReservedRoom:
    room_number: str
    reserved_for: str
    start_date: datetime
    end_date: datetime
    reason: str = ""


@dataclass(frozen=True)
class AssignmentConstraints:
    maintenance_rooms: list[str] = field(default_factory=list)
    blocked_rooms: list[str] = field(default_factory=list)
    reserved_rooms: list[ReservedRoom] = field(default_factory=list)
    overbooking_buffer: int = 0
    minimum_inventory: dict[str, int] = field(default_factory=dict)
    max_consecutive_assignments: int = 10


@dataclass(frozen=True)
class NotificationSettings:
    notify_guest: bool = True
    notify_staff: bool = True
    channels: list[str] = field(default_factory=list)
    templates: dict[str, str] = field(default_factory=dict)
    staff_channel: str = "internal"


@dataclass(frozen=True)
class ConflictResolutionPolicy:
    strategy: ConflictStrategy = ConflictStrategy.PRIORITY_BASED
    manual_review_threshold: float = 0.5


@dataclass(frozen=True)
class AutomationSettings:
    enable_automatic_assignment: bool = True
    batch_processing: bool = True
    batch_size: int = 50
    retry_failed_assignments: bool = True
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    conflict_resolution: ConflictResolutionPolicy = field(default_factory=ConflictResolutionPolicy)


@dataclass(frozen=True)
class ApprovalLevel:
    level: int
    roles: list[str] = field(default_factory=list)
    conditions: list[str] = field(default_factory=list)
    time_limit_minutes: int = 60


@dataclass(frozen=True)
class OverrideSettings:
    allow_manual_override: bool = True
    override_requires_approval: bool = False
    approval_levels: list[ApprovalLevel] = field(default_factory=list)
    override_reasons: list[str] = field(default_factory=list)
    track_overrides: bool = True


@dataclass(frozen=True)
class AssignmentConfig:
    property_id: str
    enabled: bool = True
    rules: list[AssignmentRule] = field(default_factory=list)
    preferences: AssignmentPreferences = field(default_factory=AssignmentPreferences)
    constraints: AssignmentConstraints = field(default_factory=AssignmentConstraints)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    automation: AutomationSettings = field(default_factory=AutomationSettings)
    overrides: OverrideSettings = field(default_factory=OverrideSettings)


# --- Requests ---


@dataclass(frozen=True)
class GuestRoomPreferences:
    floor_preference: Optional[str] = None
    view_preference: list[str] = field(default_factory=list)
    bed_type: Optional[str] = None
    smoking_preference: Optional[str] = None
    quiet_room: bool = False
    near_elevator: bool = False
    high_floor: bool = False
    room_number: Optional[str] = None


@dataclass(frozen=True)
class GroupBookingInfo:
    group_id: str
    total_rooms: int = 1
    is_main_contact: bool = False
    group_type: str = "leisure"
    special_instructions: Optional[str] = None


@dataclass(frozen=True)
class RoomAssignmentRequest:
    booking_id: str
    guest_id: str
    property_id: str
    check_in: datetime
    check_out: datetime
    room_type_booked: str
    party_size: int = 1
    guest_preferences: Optional[GuestRoomPreferences] = None
    special_requests: list[str] = field(default_factory=list)
    loyalty_tier: Optional[str] = None
    accessibility_needs: Optional[AccessibilityFeatures] = None
    group_booking: Optional[GroupBookingInfo] = None


# --- Inventory ---


@dataclass(frozen=True)
class RoomFeatures:
    bed_type: str = "queen"
    bed_count: int = 1
    max_occupancy: int = 2
    size: float = 0.0
    smoking_allowed: bool = False
    accessibility: AccessibilityFeatures = field(default_factory=AccessibilityFeatures)
    balcony: bool = False
    kitchenette: bool = False
    workspace: bool = False


@dataclass(frozen=True)
class RoomInventoryRecord:
    room_number: str
    room_type: str
    floor: int
    status: RoomStatus = RoomStatus.AVAILABLE
    features: RoomFeatures = field(default_factory=RoomFeatures)
    view: Optional[str] = None
    amenities: list[str] = field(default_factory=list)
    notes: Optional[str] = None


@dataclass(frozen=True)
class StayWindow:
    check_in: datetime
    check_out: datetime

    def overlaps(self, other: "StayWindow") -> bool:
        return (
            as_utc(self.check_in) < as_utc(other.check_out)
            and as_utc(other.check_in) < as_utc(self.check_out)
        )

    def shifted(self, *, check_in_days: int = 0, check_out_days: int = 0) -> "StayWindow":
        return StayWindow(
            check_in=self.check_in + timedelta(days=check_in_days),
            check_out=self.check_out + timedelta(days=check_out_days),
        )

    @property
    def is_empty(self) -> bool:
        return as_utc(self.check_out) <= as_utc(self.check_in)


# --- Results ---


@dataclass(frozen=True)
class AssignedRoom:
    room_number: str
    room_type: str
    floor: int
    rate: float
    currency: str
    view: Optional[str] = None
    amenities: list[str] = field(default_factory=list)
    features: RoomFeatures = field(default_factory=RoomFeatures)


@dataclass(frozen=True)
class UpgradeDetails:
    from_room_type: str
    to_room_type: str
    reason: str
    value: float
    charged: bool = False
    guest_notified: bool = False


@dataclass(frozen=True)
class NotificationOutcome:
    type: str
    channel: str
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int = 1


@dataclass(frozen=True)
class ConflictDetail:
    type: str
    description: str
    resolution_strategy: str
    resolved: bool
    resolved_at: Optional[datetime] = None


@dataclass(frozen=True)
class RoomAssignmentResult:
    booking_id: str
    request: RoomAssignmentRequest
    assigned_room: AssignedRoom
    assignment_method: AssignmentMethod
    confidence: float
    assigned_at: datetime
    assigned_by: str
    score: int = 0
    upgrades: list[UpgradeDetails] = field(default_factory=list)
    notifications: list[NotificationOutcome] = field(default_factory=list)
    conflicts: list[ConflictDetail] = field(default_factory=list)
    notes: Optional[str] = None
    reassigned_from: Optional[str] = None
    requires_approval: bool = False

    @property
    def property_id(self) -> str:
        return self.request.property_id

    @property
    def stay_window(self) -> StayWindow:
        return StayWindow(self.request.check_in, self.request.check_out)


# --- Analytics ---


@dataclass(frozen=True)
class AssignmentMetrics:
    assignments: int
    upgrade_rate: float
    conflict_rate: float
    avg_rate: float
    avg_confidence: float


@dataclass(frozen=True)
class TrendPoint:
    date: str
    assignments: int
    upgrades: int
    conflicts: int
    avg_confidence: float


@dataclass(frozen=True)
class AssignmentAnalytics:
    property_id: str
    period_start: datetime
    period_end: datetime
    total_assignments: int
    automatic_assignments: int
    manual_assignments: int
    fallback_assignments: int
    upgraded_assignments: int
    upgrades: int
    conflicts: int
    reassignments: int
    avg_confidence: float
    by_room_type: dict[str, AssignmentMetrics] = field(default_factory=dict)
    by_floor: dict[str, AssignmentMetrics] = field(default_factory=dict)
    by_loyalty_tier: dict[str, AssignmentMetrics] = field(default_factory=dict)
    by_upgrade_reason: dict[str, int] = field(default_factory=dict)
    upgrade_rate: float = 0.0
    conflict_rate: float = 0.0
    reassignment_rate: float = 0.0
    trends: list[TrendPoint] = field(default_factory=list)
