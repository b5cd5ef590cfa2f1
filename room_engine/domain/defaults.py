"""Documented default assignment configuration seeded for new properties."""

from __future__ import annotations

from room_engine.domain.models import (
    AccessibilityFeatures,
    ApprovalLevel,
    AssignmentConfig,
    AssignmentConstraints,
    AssignmentPreferences,
    AssignmentRule,
    AutomationSettings,
    ConflictResolutionPolicy,
    ConflictStrategy,
    FamilyRoomPolicy,
    FloorPreference,
    GroupAssignmentPolicy,
    NotificationSettings,
    OverrideSettings,
    RoomAssignmentTemplate,
    RoomPreferences,
    RuleCondition,
    UpgradeCondition,
    UpgradePolicy,
    ViewPreference,
    VipHandlingPolicy,
)


ACCESSIBILITY_RULE_ID = "accessibility-priority"
VIP_UPGRADE_RULE_ID = "vip-upgrade"


def default_rules() -> list[AssignmentRule]:
    accessibility_rule = AssignmentRule(
        id=ACCESSIBILITY_RULE_ID,
        name="Accessibility Priority Assignment",
        description="Prioritize accessible rooms for guests with accessibility needs",
        priority=100,
        conditions=[
            RuleCondition(type="accessibility", operator="equals", value=True),
        ],
        assignments=[
            RoomAssignmentTemplate(
                room_type="any",
                preferences=RoomPreferences(
                    accessibility=AccessibilityFeatures(
                        wheelchair_accessible=True,
                        mobility_assistance=True,
                    ),
                ),
                upgrades=UpgradePolicy(automatic=False, notify_guest=True),
            )
        ],
    )
    vip_rule = AssignmentRule(
        id=VIP_UPGRADE_RULE_ID,
        name="VIP Automatic Upgrade",
        description="Automatically upgrade VIP guests when possible",
        priority=90,
        conditions=[
            RuleCondition(type="loyalty_tier", operator="in", value=["platinum", "gold"]),
        ],
        assignments=[
            RoomAssignmentTemplate(
                room_type="any",
                preferences=RoomPreferences(
                    floor=FloorPreference(type="high", floors=[8, 9, 10]),
                    view=ViewPreference(preferred=["ocean", "city"]),
                ),
                upgrades=UpgradePolicy(
                    automatic=True,
                    conditions=[
                        UpgradeCondition(
                            trigger="availability",
                            threshold=0.7,
                            upgrade_types=["deluxe", "suite"],
                        )
                    ],
                    max_upgrade_level=2,
                    notify_guest=True,
                ),
            )
        ],
    )
    return [accessibility_rule, vip_rule]


def default_assignment_config(property_id: str = "default") -> AssignmentConfig:
    """Build the configuration a property gets before any admin update."""
    return AssignmentConfig(
        property_id=property_id,
        enabled=True,
        rules=default_rules(),
        preferences=AssignmentPreferences(
            assignment_timing="check_in_day",
            block_contiguous=True,
            group_assignments=GroupAssignmentPolicy(
                keep_together=True,
                max_distance=3,
                same_floor=True,
                consecutive_rooms=False,
                notify_if_separated=True,
            ),
            vip_handling=VipHandlingPolicy(
                auto_upgrade=True,
                best_available=True,
                special_amenities=["champagne", "flowers"],
            ),
            family_room_policy=FamilyRoomPolicy(family_floors=[2, 3, 4]),
        ),
        constraints=AssignmentConstraints(
            overbooking_buffer=5,
            minimum_inventory={"standard": 10, "deluxe": 5, "suite": 2},
            max_consecutive_assignments=10,
        ),
        notifications=NotificationSettings(
            notify_guest=True,
            notify_staff=True,
            channels=["email", "sms"],
            templates={
                "guest_assignment": "room-assignment-template",
                "upgrade_notification": "upgrade-notification-template",
            },
        ),
        automation=AutomationSettings(
            enable_automatic_assignment=True,
            batch_processing=True,
            batch_size=50,
            retry_failed_assignments=True,
            max_retries=3,
            retry_backoff_seconds=0.5,
            conflict_resolution=ConflictResolutionPolicy(
                strategy=ConflictStrategy.PRIORITY_BASED,
                manual_review_threshold=0.5,
            ),
        ),
        overrides=OverrideSettings(
            allow_manual_override=True,
            override_requires_approval=True,
            approval_levels=[
                ApprovalLevel(
                    level=1,
                    roles=["front_desk_manager"],
                    conditions=["guest_request"],
                    time_limit_minutes=60,
                )
            ],
            override_reasons=["Guest request", "Special circumstances", "Maintenance issue"],
            track_overrides=True,
        ),
    )
