"""Multi-criteria scoring of candidate rooms against an assignment request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from room_engine.domain.models import (
    AssignmentConfig,
    AssignmentConstraints,
    AssignmentRule,
    RoomAssignmentRequest,
    RoomInventoryRecord,
    StayWindow,
    as_utc,
    room_tier,
)
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

BASELINE_SCORE = 50
EXACT_TYPE_MATCH_BONUS = 30
UPGRADE_TYPE_BASE_BONUS = 20
UPGRADE_TYPE_PER_TIER_BONUS = 5
DOWNGRADE_PER_TIER_PENALTY = 10

WHEELCHAIR_BONUS = 25
HEARING_BONUS = 20
VISUAL_BONUS = 20

VIEW_MATCH_BONUS = 15
BED_MATCH_BONUS = 10
SMOKING_MATCH_BONUS = 10
SMOKING_MISMATCH_PENALTY = 20

ELEVATOR_ADJACENT_AMENITY = "elevator_adjacent"
NEAR_ELEVATOR_BONUS = 8
HIGH_FLOOR_THRESHOLD = 8
HIGH_FLOOR_BONUS = 10

LOYALTY_UPGRADE_BONUS = {"platinum": 15, "gold": 10}
DEFAULT_LOYALTY_UPGRADE_BONUS = 5
UPGRADE_PER_TIER_BONUS = 8

GROUP_SAME_FLOOR_BONUS = 10
GROUP_CONSECUTIVE_BONUS = 5

CONSTRAINT_PENALTY = 100


@dataclass(frozen=True)
class ScoredRoom:
    room: RoomInventoryRecord
    score: int


def room_number_sort_key(room_number: str) -> tuple[int, int, str]:
    """Numeric room numbers order numerically, ahead of alphanumeric ones."""
    if room_number.isdigit():
        return (0, int(room_number), room_number)
    return (1, 0, room_number)


def score_room_type_match(room: RoomInventoryRecord, request: RoomAssignmentRequest) -> int:
    if room.room_type == request.room_type_booked:
        return EXACT_TYPE_MATCH_BONUS
    booked_tier = room_tier(request.room_type_booked)
    candidate_tier = room_tier(room.room_type)
    if candidate_tier > booked_tier:
        return UPGRADE_TYPE_BASE_BONUS + (candidate_tier - booked_tier) * UPGRADE_TYPE_PER_TIER_BONUS
    if candidate_tier < booked_tier:
        return -(booked_tier - candidate_tier) * DOWNGRADE_PER_TIER_PENALTY
    return 0


def score_accessibility_match(room: RoomInventoryRecord, request: RoomAssignmentRequest) -> int:
    needs = request.accessibility_needs
    if needs is None:
        return 0
    available = room.features.accessibility
    score = 0
    if needs.wheelchair_accessible and available.wheelchair_accessible:
        score += WHEELCHAIR_BONUS
    if needs.hearing_impaired and available.hearing_impaired:
        score += HEARING_BONUS
    if needs.visually_impaired and available.visually_impaired:
        score += VISUAL_BONUS
    return score


def score_floor_preference(floor: int, preference: str) -> int:
    if preference == "low":
        if floor <= 3:
            return 10
        return 5 if floor <= 6 else 0
    if preference == "middle":
        return 10 if 4 <= floor <= 8 else 5
    if preference == "high":
        if floor >= 9:
            return 15
        return 8 if floor >= 6 else 0
    return 0


def score_quiet_room(room: RoomInventoryRecord) -> int:
    score = 0
    if room.floor >= 5:
        score += 5
    if room.room_number.endswith("01") or room.room_number.endswith("99"):
        score += 5
    if ELEVATOR_ADJACENT_AMENITY not in room.amenities:
        score += 3
    return score


def score_preferences_match(room: RoomInventoryRecord, request: RoomAssignmentRequest) -> int:
    prefs = request.guest_preferences
    if prefs is None:
        return 0
    score = 0
    if prefs.floor_preference:
        score += score_floor_preference(room.floor, prefs.floor_preference)
    if prefs.view_preference and room.view and room.view in prefs.view_preference:
        score += VIEW_MATCH_BONUS
    if prefs.bed_type and room.features.bed_type == prefs.bed_type:
        score += BED_MATCH_BONUS
    if prefs.smoking_preference:
        wants_smoking = prefs.smoking_preference == "smoking"
        if room.features.smoking_allowed == wants_smoking:
            score += SMOKING_MATCH_BONUS
        else:
            score -= SMOKING_MISMATCH_PENALTY
    if prefs.quiet_room:
        score += score_quiet_room(room)
    return score


def score_location_preferences(room: RoomInventoryRecord, request: RoomAssignmentRequest) -> int:
    prefs = request.guest_preferences
    if prefs is None:
        return 0
    score = 0
    if prefs.near_elevator and ELEVATOR_ADJACENT_AMENITY in room.amenities:
        score += NEAR_ELEVATOR_BONUS
    if prefs.high_floor and room.floor >= HIGH_FLOOR_THRESHOLD:
        score += HIGH_FLOOR_BONUS
    return score


def score_upgrade_potential(
    room: RoomInventoryRecord,
    request: RoomAssignmentRequest,
    rules: Sequence[AssignmentRule],
) -> int:
    booked_tier = room_tier(request.room_type_booked)
    candidate_tier = room_tier(room.room_type)
    if candidate_tier <= booked_tier:
        return 0
    if not any(rule.allows_automatic_upgrade for rule in rules):
        return 0
    loyalty_bonus = LOYALTY_UPGRADE_BONUS.get(request.loyalty_tier or "", DEFAULT_LOYALTY_UPGRADE_BONUS)
    return loyalty_bonus + (candidate_tier - booked_tier) * UPGRADE_PER_TIER_BONUS


def score_group_requirements(
    room: RoomInventoryRecord,
    request: RoomAssignmentRequest,
    config: AssignmentConfig,
) -> int:
    if request.group_booking is None:
        return 0
    policy = config.preferences.group_assignments
    score = 0
    if policy.same_floor:
        score += GROUP_SAME_FLOOR_BONUS
    if policy.consecutive_rooms:
        suffix = room.room_number[-2:]
        if suffix.isdigit() and int(suffix) % 2 == 0:
            score += GROUP_CONSECUTIVE_BONUS
    return score


def constraint_penalty(
    room: RoomInventoryRecord,
    constraints: AssignmentConstraints,
    window: StayWindow,
) -> int:
    penalty = 0
    if room.room_number in constraints.maintenance_rooms:
        penalty += CONSTRAINT_PENALTY
    if room.room_number in constraints.blocked_rooms:
        penalty += CONSTRAINT_PENALTY
    stay = StayWindow(as_utc(window.check_in), as_utc(window.check_out))
    for reserved in constraints.reserved_rooms:
        if reserved.room_number != room.room_number:
            continue
        # Reserved windows are inclusive of their end date.
        if as_utc(reserved.start_date) < stay.check_out and stay.check_in <= as_utc(reserved.end_date):
            penalty += CONSTRAINT_PENALTY
            break
    return penalty


class RoomScorer:
    """Computes non-negative additive scores for candidate rooms."""

    def score(
        self,
        room: RoomInventoryRecord,
        request: RoomAssignmentRequest,
        rules: Sequence[AssignmentRule],
        config: AssignmentConfig,
        window: Optional[StayWindow] = None,
    ) -> int:
        stay = window or StayWindow(request.check_in, request.check_out)
        penalty = constraint_penalty(room, config.constraints, stay)
        if penalty:
            # A constrained room is out regardless of how well it matches.
            return 0
        score = BASELINE_SCORE
        score += score_room_type_match(room, request)
        score += score_accessibility_match(room, request)
        score += score_preferences_match(room, request)
        score += score_location_preferences(room, request)
        score += score_upgrade_potential(room, request, rules)
        score += score_group_requirements(room, request, config)
        return max(0, score)

    def score_all(
        self,
        rooms: Sequence[RoomInventoryRecord],
        request: RoomAssignmentRequest,
        rules: Sequence[AssignmentRule],
        config: AssignmentConfig,
        window: Optional[StayWindow] = None,
    ) -> list[ScoredRoom]:
        """Score every room, drop non-positive scores, best first."""
        scored = [
            ScoredRoom(room=room, score=self.score(room, request, rules, config, window))
            for room in rooms
        ]
        eligible = [item for item in scored if item.score > 0]
        eligible.sort(key=lambda item: (-item.score, room_number_sort_key(item.room.room_number)))
        logger.debug(
            "Rooms scored | booking_id=%s | candidates=%s | eligible=%s",
            request.booking_id,
            len(scored),
            len(eligible),
        )
        return eligible
