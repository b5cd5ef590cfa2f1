"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from room_engine.services.assignment_service import RoomAssignmentService
from room_engine.services.queue_service import AssignmentQueueProcessor


def get_assignment_service(request: Request) -> RoomAssignmentService:
    service = getattr(request.app.state, "assignment_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assignment service is not initialized",
        )
    return service


def get_queue_processor(request: Request) -> AssignmentQueueProcessor:
    processor = getattr(request.app.state, "queue_processor", None)
    if processor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assignment queue is not initialized",
        )
    return processor
