"""Domain-level validation rules for property assignment configuration."""

from __future__ import annotations

import re

from room_engine.domain.errors import ConfigurationValidationError
from room_engine.domain.models import AssignmentConfig, AssignmentRule, ConditionOperator, as_utc


_TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _validate_rule(rule: AssignmentRule) -> None:
    if not rule.id.strip():
        raise ConfigurationValidationError("rule id must be non-empty")
    for condition in rule.conditions:
        if condition.operator == ConditionOperator.BETWEEN.value:
            if not isinstance(condition.value, (list, tuple)) or len(condition.value) != 2:
                raise ConfigurationValidationError(
                    f"rule '{rule.id}': between operator requires a [low, high] pair"
                )
        if condition.weight < 0.0:
            raise ConfigurationValidationError(
                f"rule '{rule.id}': condition weight must be >= 0"
            )

    schedule = rule.schedule
    if schedule is None:
        return
    if (
        schedule.start_date is not None
        and schedule.end_date is not None
        and as_utc(schedule.start_date) > as_utc(schedule.end_date)
    ):
        raise ConfigurationValidationError(
            f"rule '{rule.id}': schedule start_date must not be after end_date"
        )
    for day in schedule.days_of_week or []:
        if not 0 <= day <= 6:
            raise ConfigurationValidationError(
                f"rule '{rule.id}': days_of_week entries must be between 0 and 6"
            )
    if schedule.time_of_day is not None:
        for boundary in (schedule.time_of_day.start, schedule.time_of_day.end):
            if _TIME_OF_DAY_PATTERN.fullmatch(boundary) is None:
                raise ConfigurationValidationError(
                    f"rule '{rule.id}': time_of_day boundaries must follow HH:MM"
                )


def validate_assignment_config(config: AssignmentConfig) -> None:
    if not config.property_id.strip():
        raise ConfigurationValidationError("property_id must be non-empty")

    seen_rule_ids: set[str] = set()
    for rule in config.rules:
        if rule.id in seen_rule_ids:
            raise ConfigurationValidationError(f"duplicate rule id '{rule.id}'")
        seen_rule_ids.add(rule.id)
        _validate_rule(rule)

    for reserved in config.constraints.reserved_rooms:
        if as_utc(reserved.start_date) > as_utc(reserved.end_date):
            raise ConfigurationValidationError(
                f"reserved room {reserved.room_number} has start_date after end_date"
            )
    for room_type, floor in config.constraints.minimum_inventory.items():
        if floor < 0:
            raise ConfigurationValidationError(
                f"minimum_inventory for '{room_type}' must be >= 0"
            )
    if config.constraints.max_consecutive_assignments <= 0:
        raise ConfigurationValidationError("max_consecutive_assignments must be > 0")

    automation = config.automation
    if automation.max_retries < 0:
        raise ConfigurationValidationError("max_retries must be >= 0")
    if automation.retry_backoff_seconds < 0.0:
        raise ConfigurationValidationError("retry_backoff_seconds must be >= 0")
    if automation.batch_size <= 0:
        raise ConfigurationValidationError("batch_size must be > 0")
    if not 0.0 <= automation.conflict_resolution.manual_review_threshold <= 1.0:
        raise ConfigurationValidationError("manual_review_threshold must be between 0 and 1")
