"""HTTP controller layer for room assignment."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from room_engine.controllers.dependencies import get_assignment_service, get_queue_processor
from room_engine.domain.errors import (
    ConfigurationMissingOrDisabledError,
    ConfigurationValidationError,
    DuplicateAssignmentError,
    InvalidAssignmentRequestError,
    InvalidReassignmentError,
    ManualAssignmentRequiredError,
    ManualOverrideNotAllowedError,
    NoRoomsAvailableError,
    ProviderUnavailableError,
    RoomAssignmentError,
    RoomNotAvailableError,
)
from room_engine.domain.models import (
    AccessibilityFeatures,
    AssignmentAnalytics,
    AssignmentConfig,
    GroupBookingInfo,
    GuestRoomPreferences,
    RoomAssignmentRequest,
    RoomAssignmentResult,
    as_utc,
)
from room_engine.services.analytics_service import AnalyticsValidationError
from room_engine.services.assignment_service import RoomAssignmentService
from room_engine.services.queue_service import AssignmentQueueProcessor
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["assignments"])


class AssignmentRequestBody(BaseModel):
    """Input DTO validated before entering service layer."""

    booking_id: str = Field(min_length=1)
    guest_id: str = Field(min_length=1)
    property_id: str = Field(min_length=1)
    check_in: datetime
    check_out: datetime
    room_type_booked: str = Field(min_length=1)
    party_size: int = Field(default=1, ge=1)
    guest_preferences: Optional[GuestRoomPreferences] = None
    special_requests: list[str] = Field(default_factory=list)
    loyalty_tier: Optional[str] = None
    accessibility_needs: Optional[AccessibilityFeatures] = None
    group_booking: Optional[GroupBookingInfo] = None

    @field_validator("room_type_booked", "loyalty_tier")
    @classmethod
    def normalize_lowercase(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower()

    @model_validator(mode="after")
    def validate_stay_window(self) -> "AssignmentRequestBody":
        if as_utc(self.check_out) <= as_utc(self.check_in):
            raise ValueError("check_out must be after check_in")
        return self

    def to_domain(self) -> RoomAssignmentRequest:
        return RoomAssignmentRequest(
            booking_id=self.booking_id,
            guest_id=self.guest_id,
            property_id=self.property_id,
            check_in=self.check_in,
            check_out=self.check_out,
            room_type_booked=self.room_type_booked,
            party_size=self.party_size,
            guest_preferences=self.guest_preferences,
            special_requests=list(self.special_requests),
            loyalty_tier=self.loyalty_tier,
            accessibility_needs=self.accessibility_needs,
            group_booking=self.group_booking,
        )


class ManualAssignmentBody(BaseModel):
    request: AssignmentRequestBody
    room_number: str = Field(min_length=1)
    assigned_by: str = Field(min_length=1)
    notes: Optional[str] = None


class ReassignmentBody(BaseModel):
    new_room_number: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    assigned_by: str = Field(default="system", min_length=1)


class BatchAssignmentBody(BaseModel):
    requests: list[AssignmentRequestBody] = Field(min_length=1)


class BulkAssignmentResponse(BaseModel):
    results: list[RoomAssignmentResult]
    skipped: list[str]


class QueueSubmissionResponse(BaseModel):
    queued: int = Field(ge=0)
    queue_size: int = Field(ge=0)


def _http_error(exc: RoomAssignmentError) -> HTTPException:
    if isinstance(
        exc,
        (ConfigurationValidationError, InvalidAssignmentRequestError, AnalyticsValidationError),
    ):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ManualOverrideNotAllowedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(
        exc,
        (RoomNotAvailableError, DuplicateAssignmentError, NoRoomsAvailableError, InvalidReassignmentError),
    ):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (ProviderUnavailableError, ConfigurationMissingOrDisabledError)):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


def _manual_required_response(exc: ManualAssignmentRequiredError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "status": "pending_manual_assignment",
            "booking_id": exc.booking_id,
            "detail": str(exc),
        },
    )


@router.post(
    "/assignments",
    response_model=RoomAssignmentResult,
    status_code=status.HTTP_200_OK,
    responses={status.HTTP_202_ACCEPTED: {"description": "Booking awaits manual assignment"}},
)
def assign_room(
    payload: AssignmentRequestBody,
    service: RoomAssignmentService = Depends(get_assignment_service),
):
    """Assign a room automatically, or return the existing assignment."""
    try:
        return service.assign_room(payload.to_domain())
    except ManualAssignmentRequiredError as exc:
        return _manual_required_response(exc)
    except RoomAssignmentError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected assignment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to assign room",
        ) from exc


@router.post(
    "/assignments/manual",
    response_model=RoomAssignmentResult,
    status_code=status.HTTP_200_OK,
)
def manual_assignment(
    payload: ManualAssignmentBody,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> RoomAssignmentResult:
    try:
        return service.manual_assignment(
            payload.request.to_domain(),
            room_number=payload.room_number,
            assigned_by=payload.assigned_by,
            notes=payload.notes,
        )
    except RoomAssignmentError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected manual assignment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record manual assignment",
        ) from exc


@router.post(
    "/assignments/bulk",
    response_model=BulkAssignmentResponse,
    status_code=status.HTTP_200_OK,
)
def bulk_assignment(
    payload: BatchAssignmentBody,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> BulkAssignmentResponse:
    """Assign sequentially; bookings that fail are reported as skipped."""
    requests = [item.to_domain() for item in payload.requests]
    results = service.bulk_assignment(requests)
    assigned = {result.booking_id for result in results}
    return BulkAssignmentResponse(
        results=results,
        skipped=[request.booking_id for request in requests if request.booking_id not in assigned],
    )


@router.post(
    "/assignments/queue",
    response_model=QueueSubmissionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def queue_assignments(
    payload: BatchAssignmentBody,
    processor: AssignmentQueueProcessor = Depends(get_queue_processor),
) -> QueueSubmissionResponse:
    queue_size = processor.submit_bulk([item.to_domain() for item in payload.requests])
    return QueueSubmissionResponse(queued=len(payload.requests), queue_size=queue_size)


@router.get(
    "/assignments/{booking_id}",
    response_model=RoomAssignmentResult,
    status_code=status.HTTP_200_OK,
)
def get_assignment(
    booking_id: str,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> RoomAssignmentResult:
    result = service.get_assignment(booking_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No assignment found for booking {booking_id}",
        )
    return result


@router.post(
    "/assignments/{booking_id}/reassign",
    response_model=RoomAssignmentResult,
    status_code=status.HTTP_200_OK,
)
def reassign_room(
    booking_id: str,
    payload: ReassignmentBody,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> RoomAssignmentResult:
    if service.get_assignment(booking_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No assignment found for booking {booking_id}",
        )
    try:
        return service.reassign_room(
            booking_id,
            new_room_number=payload.new_room_number,
            reason=payload.reason,
            assigned_by=payload.assigned_by,
        )
    except RoomAssignmentError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reassignment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reassign room",
        ) from exc


@router.get(
    "/assignments/{booking_id}/history",
    response_model=list[RoomAssignmentResult],
    status_code=status.HTTP_200_OK,
)
def get_assignment_history(
    booking_id: str,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> list[RoomAssignmentResult]:
    history = service.get_assignment_history(booking_id)
    if not history:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No assignment found for booking {booking_id}",
        )
    return history


@router.get(
    "/properties/{property_id}/configuration",
    response_model=AssignmentConfig,
    status_code=status.HTTP_200_OK,
)
def get_configuration(
    property_id: str,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> AssignmentConfig:
    config = service.get_configuration(property_id)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No assignment configuration for property {property_id}",
        )
    return config


@router.put(
    "/properties/{property_id}/configuration",
    response_model=AssignmentConfig,
    status_code=status.HTTP_200_OK,
)
def update_configuration(
    property_id: str,
    payload: AssignmentConfig,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> AssignmentConfig:
    """Replace the whole configuration; there is no partial merge."""
    try:
        return service.update_configuration(property_id, payload)
    except RoomAssignmentError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/properties/{property_id}/analytics",
    response_model=AssignmentAnalytics,
    status_code=status.HTTP_200_OK,
)
def get_analytics(
    property_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> AssignmentAnalytics:
    try:
        return service.get_analytics(property_id, start, end)
    except RoomAssignmentError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected analytics failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute analytics",
        ) from exc


@router.get(
    "/properties/{property_id}/pending",
    response_model=list[RoomAssignmentRequest],
    status_code=status.HTTP_200_OK,
)
def list_pending_manual(
    property_id: str,
    service: RoomAssignmentService = Depends(get_assignment_service),
) -> list[RoomAssignmentRequest]:
    return service.list_pending_manual(property_id)
