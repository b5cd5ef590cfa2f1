"""Assignment analytics built from the assignment history."""

from __future__ import annotations

from datetime import datetime

import numpy as np
import pandas as pd

from room_engine.domain.errors import RoomAssignmentError
from room_engine.domain.models import (
    AssignmentAnalytics,
    AssignmentMethod,
    AssignmentMetrics,
    RoomAssignmentResult,
    TrendPoint,
    as_utc,
)
from room_engine.repository.data_repository import AssignmentRepository
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)


class AnalyticsValidationError(RoomAssignmentError, ValueError):
    """Raised when an analytics period is malformed."""


class AssignmentAnalyticsService:
    """Summaries, breakdowns and daily trends over a reporting period.

    Every history entry counts as one assignment decision, so a booking that
    was reassigned twice contributes three rows.
    """

    _COLUMNS = [
        "booking_id",
        "assigned_at",
        "method",
        "room_type",
        "floor",
        "rate",
        "confidence",
        "loyalty_tier",
        "upgrades",
        "conflicts",
        "reassigned",
    ]

    def __init__(self, repository: AssignmentRepository) -> None:
        self._repository = repository

    def _build_frame(self, results: list[RoomAssignmentResult]) -> pd.DataFrame:
        frame = pd.DataFrame(
            [
                {
                    "booking_id": result.booking_id,
                    "assigned_at": as_utc(result.assigned_at),
                    "method": AssignmentMethod(result.assignment_method).value,
                    "room_type": result.assigned_room.room_type,
                    "floor": str(result.assigned_room.floor),
                    "rate": float(result.assigned_room.rate),
                    "confidence": float(result.confidence),
                    "loyalty_tier": result.request.loyalty_tier or "none",
                    "upgrades": len(result.upgrades),
                    "conflicts": len(result.conflicts),
                    "reassigned": result.reassigned_from is not None,
                }
                for result in results
            ],
            columns=self._COLUMNS,
        )
        if frame.empty:
            return frame
        frame["has_upgrade"] = np.where(frame["upgrades"] > 0, 1.0, 0.0)
        frame["has_conflict"] = np.where(frame["conflicts"] > 0, 1.0, 0.0)
        frame["day"] = pd.to_datetime(frame["assigned_at"], utc=True).dt.strftime("%Y-%m-%d")
        return frame

    @staticmethod
    def _metrics_by(frame: pd.DataFrame, column: str) -> dict[str, AssignmentMetrics]:
        grouped = frame.groupby(column, sort=True).agg(
            assignments=("booking_id", "count"),
            upgrade_rate=("has_upgrade", "mean"),
            conflict_rate=("has_conflict", "mean"),
            avg_rate=("rate", "mean"),
            avg_confidence=("confidence", "mean"),
        )
        return {
            str(key): AssignmentMetrics(
                assignments=int(row.assignments),
                upgrade_rate=round(float(row.upgrade_rate), 4),
                conflict_rate=round(float(row.conflict_rate), 4),
                avg_rate=round(float(row.avg_rate), 2),
                avg_confidence=round(float(row.avg_confidence), 4),
            )
            for key, row in grouped.iterrows()
        }

    @staticmethod
    def _trends(frame: pd.DataFrame) -> list[TrendPoint]:
        daily = frame.groupby("day", sort=True).agg(
            assignments=("booking_id", "count"),
            upgrades=("upgrades", "sum"),
            conflicts=("conflicts", "sum"),
            avg_confidence=("confidence", "mean"),
        )
        return [
            TrendPoint(
                date=str(day),
                assignments=int(row.assignments),
                upgrades=int(row.upgrades),
                conflicts=int(row.conflicts),
                avg_confidence=round(float(row.avg_confidence), 4),
            )
            for day, row in daily.iterrows()
        ]

    def get_analytics(self, property_id: str, start: datetime, end: datetime) -> AssignmentAnalytics:
        if as_utc(end) < as_utc(start):
            raise AnalyticsValidationError("analytics period end must not precede start")

        results = self._repository.list_history(property_id, start, end)
        frame = self._build_frame(results)
        if frame.empty:
            logger.info(
                "Analytics requested for empty period | property_id=%s | start=%s | end=%s",
                property_id,
                start.isoformat(),
                end.isoformat(),
            )
            return AssignmentAnalytics(
                property_id=property_id,
                period_start=start,
                period_end=end,
                total_assignments=0,
                automatic_assignments=0,
                manual_assignments=0,
                fallback_assignments=0,
                upgraded_assignments=0,
                upgrades=0,
                conflicts=0,
                reassignments=0,
                avg_confidence=0.0,
            )

        method_counts = frame["method"].value_counts()
        total = int(len(frame))
        reassignments = int(frame["reassigned"].sum())

        upgrade_reasons: dict[str, int] = {}
        for result in results:
            for upgrade in result.upgrades:
                upgrade_reasons[upgrade.reason] = upgrade_reasons.get(upgrade.reason, 0) + 1

        analytics = AssignmentAnalytics(
            property_id=property_id,
            period_start=start,
            period_end=end,
            total_assignments=total,
            automatic_assignments=int(method_counts.get(AssignmentMethod.AUTOMATIC.value, 0)),
            manual_assignments=int(method_counts.get(AssignmentMethod.MANUAL.value, 0)),
            fallback_assignments=int(method_counts.get(AssignmentMethod.FALLBACK.value, 0)),
            upgraded_assignments=int(method_counts.get(AssignmentMethod.UPGRADED.value, 0)),
            upgrades=int(frame["upgrades"].sum()),
            conflicts=int(frame["conflicts"].sum()),
            reassignments=reassignments,
            avg_confidence=round(float(frame["confidence"].mean()), 4),
            by_room_type=self._metrics_by(frame, "room_type"),
            by_floor=self._metrics_by(frame, "floor"),
            by_loyalty_tier=self._metrics_by(frame, "loyalty_tier"),
            by_upgrade_reason=dict(sorted(upgrade_reasons.items())),
            upgrade_rate=round(float(frame["has_upgrade"].mean()), 4),
            conflict_rate=round(float(frame["has_conflict"].mean()), 4),
            reassignment_rate=round(reassignments / total, 4),
            trends=self._trends(frame),
        )
        logger.info(
            "Analytics computed | property_id=%s | assignments=%s | upgrades=%s | conflicts=%s",
            property_id,
            analytics.total_assignments,
            analytics.upgrades,
            analytics.conflicts,
        )
        return analytics
