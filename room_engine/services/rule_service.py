"""Rule applicability evaluation for assignment requests."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from room_engine.domain.models import (
    AssignmentConfig,
    AssignmentRule,
    ConditionOperator,
    ConditionType,
    RoomAssignmentRequest,
    RuleCondition,
    RuleSchedule,
    as_utc,
)
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


def length_of_stay_nights(request: RoomAssignmentRequest) -> int:
    seconds = (as_utc(request.check_out) - as_utc(request.check_in)).total_seconds()
    return max(0, math.ceil(seconds / _SECONDS_PER_DAY))


def is_schedule_active(schedule: RuleSchedule, now: datetime) -> bool:
    current = as_utc(now)
    if schedule.start_date is not None and current < as_utc(schedule.start_date):
        return False
    if schedule.end_date is not None and current > as_utc(schedule.end_date):
        return False
    if schedule.days_of_week and current.weekday() not in schedule.days_of_week:
        return False
    if schedule.time_of_day is not None:
        current_time = current.strftime("%H:%M")
        start, end = schedule.time_of_day.start, schedule.time_of_day.end
        if start <= end:
            if not start <= current_time <= end:
                return False
        elif end < current_time < start:
            # Overnight window such as 22:00-06:00.
            return False
    return True


def compare_values(actual: Any, operator: str, expected: Any) -> bool:
    try:
        if operator == ConditionOperator.EQUALS.value:
            return actual == expected
        if operator == ConditionOperator.NOT_EQUALS.value:
            return actual != expected
        if operator == ConditionOperator.GREATER_THAN.value:
            return actual is not None and actual > expected
        if operator == ConditionOperator.LESS_THAN.value:
            return actual is not None and actual < expected
        if operator == ConditionOperator.CONTAINS.value:
            return str(expected) in str(actual)
        if operator == ConditionOperator.IN.value:
            return isinstance(expected, (list, tuple, set)) and actual in expected
        if operator == ConditionOperator.BETWEEN.value:
            if not isinstance(expected, (list, tuple)) or len(expected) != 2:
                return False
            return actual is not None and expected[0] <= actual <= expected[1]
    except TypeError:
        return False
    return False


class RuleEvaluator:
    """Selects the rules of a property configuration that apply to a request."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def extract_condition_value(self, condition_type: str, request: RoomAssignmentRequest) -> Any:
        if condition_type == ConditionType.LOYALTY_TIER.value:
            return request.loyalty_tier
        if condition_type == ConditionType.GUEST_TYPE.value:
            return request.loyalty_tier or "standard"
        if condition_type == ConditionType.BOOKING_VALUE.value:
            return length_of_stay_nights(request) * self._settings.booking_value_nightly_rate
        if condition_type == ConditionType.ACCESSIBILITY.value:
            return request.accessibility_needs is not None
        if condition_type == ConditionType.PARTY_SIZE.value:
            return request.party_size
        if condition_type == ConditionType.LENGTH_OF_STAY.value:
            return length_of_stay_nights(request)
        if condition_type == ConditionType.ARRIVAL_TIME.value:
            return request.check_in.hour
        if condition_type == ConditionType.ROOM_PREFERENCE.value:
            if request.guest_preferences is None:
                return None
            return request.guest_preferences.room_number
        raise KeyError(condition_type)

    def condition_holds(self, condition: RuleCondition, request: RoomAssignmentRequest) -> bool:
        try:
            actual = self.extract_condition_value(condition.type, request)
        except KeyError:
            logger.debug("Unrecognized condition type treated as non-match | type=%s", condition.type)
            return False
        return compare_values(actual, condition.operator, condition.value)

    def find_applicable_rules(
        self,
        request: RoomAssignmentRequest,
        config: AssignmentConfig,
        now: Optional[datetime] = None,
    ) -> list[AssignmentRule]:
        """Return matching rules, highest priority first, stable on ties."""
        current = now or datetime.now(timezone.utc)
        applicable: list[AssignmentRule] = []
        for rule in config.rules:
            if not rule.active:
                continue
            if rule.schedule is not None and not is_schedule_active(rule.schedule, current):
                continue
            if all(self.condition_holds(condition, request) for condition in rule.conditions):
                applicable.append(rule)

        applicable.sort(key=lambda rule: rule.priority, reverse=True)
        logger.debug(
            "Applicable rules resolved | booking_id=%s | rules=%s",
            request.booking_id,
            [rule.id for rule in applicable],
        )
        return applicable
