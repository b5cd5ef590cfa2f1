from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from room_engine.domain.defaults import default_assignment_config, default_rules
from room_engine.domain.models import (
    AccessibilityFeatures,
    AssignmentConfig,
    AssignmentConstraints,
    GroupAssignmentPolicy,
    GroupBookingInfo,
    GuestRoomPreferences,
    ReservedRoom,
    RoomAssignmentRequest,
    RoomFeatures,
    RoomInventoryRecord,
    StayWindow,
)
from room_engine.services.rule_service import RuleEvaluator
from room_engine.services.scoring_service import RoomScorer, room_number_sort_key
from room_engine.utils.config import get_settings


NOW = datetime(2026, 6, 3, 12, 0, tzinfo=timezone.utc)


def _config(**overrides) -> AssignmentConfig:
    return replace(default_assignment_config("hotel-1"), **overrides)


def _request(**overrides) -> RoomAssignmentRequest:
    defaults = {
        "booking_id": "b-1",
        "guest_id": "g-1",
        "property_id": "hotel-1",
        "check_in": datetime(2026, 6, 10, 15, 0, tzinfo=timezone.utc),
        "check_out": datetime(2026, 6, 12, 11, 0, tzinfo=timezone.utc),
        "room_type_booked": "standard",
    }
    defaults.update(overrides)
    return RoomAssignmentRequest(**defaults)


def _room(number: str, room_type: str = "standard", floor: int = 3, **overrides) -> RoomInventoryRecord:
    return RoomInventoryRecord(room_number=number, room_type=room_type, floor=floor, **overrides)


def _rules_for(request: RoomAssignmentRequest, config: AssignmentConfig):
    get_settings.cache_clear()
    return RuleEvaluator(get_settings()).find_applicable_rules(request, config, NOW)


def test_baseline_exact_match_score() -> None:
    config = _config()
    request = _request()
    assert RoomScorer().score(_room("305"), request, [], config) == 80


def test_accessible_standard_beats_inaccessible_deluxe() -> None:
    config = _config()
    request = _request(accessibility_needs=AccessibilityFeatures(wheelchair_accessible=True))
    rules = _rules_for(request, config)
    accessible = _room(
        "101",
        features=RoomFeatures(accessibility=AccessibilityFeatures(wheelchair_accessible=True)),
    )
    deluxe = _room("501", room_type="deluxe", floor=5)

    scored = RoomScorer().score_all([deluxe, accessible], request, rules, config)

    assert [item.room.room_number for item in scored] == ["101", "501"]
    assert scored[0].score == 105
    assert scored[1].score == 75


def test_upgrade_potential_only_with_automatic_upgrade_rule() -> None:
    config = _config()
    suite = _room("901", room_type="suite", floor=9)

    vip_request = _request(loyalty_tier="gold")
    vip_score = RoomScorer().score(suite, vip_request, _rules_for(vip_request, config), config)

    plain_request = _request()
    plain_score = RoomScorer().score(suite, plain_request, _rules_for(plain_request, config), config)

    # 50 + (20 + 2*5) type bonus, plus 10 loyalty + 2*8 tiers for the VIP.
    assert plain_score == 80
    assert vip_score == 106
    assert vip_score > plain_score


def test_one_tier_upgrade_outranks_exact_match_for_vip_only() -> None:
    config = _config()
    standard = _room("301")
    deluxe = _room("302", room_type="deluxe")
    scorer = RoomScorer()

    vip_request = _request(loyalty_tier="gold")
    vip_rules = _rules_for(vip_request, config)
    assert any(rule.allows_automatic_upgrade for rule in vip_rules)
    # 50 + (20 + 5) type bonus + 10 gold + 8 for one tier
    assert scorer.score(deluxe, vip_request, vip_rules, config) == 93
    assert scorer.score(standard, vip_request, vip_rules, config) == 80
    ranked = scorer.score_all([standard, deluxe], vip_request, vip_rules, config)
    assert [item.room.room_number for item in ranked] == ["302", "301"]

    plain_request = _request()
    plain_rules = _rules_for(plain_request, config)
    assert scorer.score(deluxe, plain_request, plain_rules, config) == 75
    assert scorer.score(standard, plain_request, plain_rules, config) == 80
    ranked = scorer.score_all([standard, deluxe], plain_request, plain_rules, config)
    assert [item.room.room_number for item in ranked] == ["301", "302"]


def test_upgrade_potential_is_zero_at_or_below_booked_tier() -> None:
    config = _config()
    request = _request(room_type_booked="suite", loyalty_tier="platinum")
    rules = _rules_for(request, config)
    same = RoomScorer().score(_room("901", room_type="suite", floor=9), request, rules, config)
    assert same == 50 + 30


def test_blocked_room_is_never_selected() -> None:
    config = _config(constraints=AssignmentConstraints(blocked_rooms=["101"]))
    request = _request()
    perfect = _room("101")
    other = _room("102", room_type="deluxe")

    scorer = RoomScorer()
    assert scorer.score(perfect, request, [], config) == 0
    scored = scorer.score_all([perfect, other], request, [], config)
    assert [item.room.room_number for item in scored] == ["102"]


def test_maintenance_room_is_excluded() -> None:
    config = _config(constraints=AssignmentConstraints(maintenance_rooms=["101"]))
    assert RoomScorer().score_all([_room("101")], _request(), [], config) == []


def test_reserved_room_excluded_only_when_windows_overlap() -> None:
    reserved = ReservedRoom(
        room_number="101",
        reserved_for="group-7",
        start_date=datetime(2026, 6, 11, tzinfo=timezone.utc),
        end_date=datetime(2026, 6, 11, tzinfo=timezone.utc),
    )
    config = _config(constraints=AssignmentConstraints(reserved_rooms=[reserved]))
    scorer = RoomScorer()

    assert scorer.score(_room("101"), _request(), [], config) == 0
    later = StayWindow(
        datetime(2026, 6, 20, tzinfo=timezone.utc),
        datetime(2026, 6, 22, tzinfo=timezone.utc),
    )
    assert scorer.score(_room("101"), _request(), [], config, later) == 80


def test_score_never_negative() -> None:
    request = _request(
        room_type_booked="presidential",
        guest_preferences=GuestRoomPreferences(smoking_preference="smoking"),
    )
    scorer = RoomScorer()
    # 50 - 3*10 downgrade - 20 smoking mismatch
    assert scorer.score(_room("101"), request, [], _config()) == 0
    assert scorer.score_all([_room("101")], request, [], _config()) == []


def test_guest_preferences_add_up() -> None:
    request = _request(
        guest_preferences=GuestRoomPreferences(
            floor_preference="high",
            view_preference=["ocean"],
            bed_type="king",
            smoking_preference="non-smoking",
            near_elevator=True,
            high_floor=True,
        )
    )
    room = _room(
        "902",
        floor=9,
        view="ocean",
        amenities=["elevator_adjacent"],
        features=RoomFeatures(bed_type="king"),
    )
    # 80 base match + 15 floor + 15 view + 10 bed + 10 smoking + 8 elevator + 10 high floor
    assert RoomScorer().score(room, request, [], _config()) == 148


def test_quiet_room_bonuses() -> None:
    request = _request(guest_preferences=GuestRoomPreferences(quiet_room=True))
    quiet = _room("601", floor=6)
    noisy = _room("202", floor=2, amenities=["elevator_adjacent"])
    scorer = RoomScorer()
    assert scorer.score(quiet, request, [], _config()) == 80 + 5 + 5 + 3
    assert scorer.score(noisy, request, [], _config()) == 80


def test_group_bonuses_follow_policy() -> None:
    request = _request(group_booking=GroupBookingInfo(group_id="grp-1", total_rooms=4))
    base = _config()
    consecutive = replace(
        base,
        preferences=replace(
            base.preferences,
            group_assignments=GroupAssignmentPolicy(same_floor=True, consecutive_rooms=True),
        ),
    )
    scorer = RoomScorer()
    assert scorer.score(_room("304"), request, [], base) == 90
    assert scorer.score(_room("304"), request, [], consecutive) == 95
    assert scorer.score(_room("305"), request, [], consecutive) == 90


def test_ties_broken_by_lowest_room_number() -> None:
    rooms = [_room("110"), _room("12"), _room("9"), _room("A1")]
    scored = RoomScorer().score_all(rooms, _request(), [], _config())
    assert [item.room.room_number for item in scored] == ["9", "12", "110", "A1"]


def test_room_number_sort_key_orders_numeric_first() -> None:
    assert sorted(["B2", "100", "20"], key=room_number_sort_key) == ["20", "100", "B2"]


def test_default_rules_do_not_upgrade_accessibility_guests() -> None:
    accessibility_rule = default_rules()[0]
    assert accessibility_rule.allows_automatic_upgrade is False
