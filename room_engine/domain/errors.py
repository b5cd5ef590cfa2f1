"""Exception hierarchy raised by the assignment engine."""

from __future__ import annotations


class RoomAssignmentError(Exception):
    """Base exception for assignment workflow failures."""


class ConfigurationMissingOrDisabledError(RoomAssignmentError):
    """Raised when a property has no usable assignment configuration."""


class ConfigurationValidationError(RoomAssignmentError, ValueError):
    """Raised when an assignment configuration violates its invariants."""


class ManualAssignmentRequiredError(RoomAssignmentError):
    """Raised when automation is off and the booking awaits a manual decision."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Manual assignment required for booking {booking_id}")
        self.booking_id = booking_id


class NoRoomsAvailableError(RoomAssignmentError):
    """Raised once the widened fallback search found nothing."""


class ProviderUnavailableError(RoomAssignmentError):
    """Raised when inventory cannot be fetched and no snapshot exists."""


class RoomNotAvailableError(RoomAssignmentError):
    """Raised when a requested room is not free for the stay window."""


class NotificationFailedError(RoomAssignmentError):
    """Raised by dispatchers when a channel send fails."""


class InvalidReassignmentError(RoomAssignmentError):
    """Raised when a reassignment has no current assignment to act on."""


class DuplicateAssignmentError(RoomAssignmentError):
    """Raised when a manual assignment targets an already-assigned booking."""


class ManualOverrideNotAllowedError(RoomAssignmentError):
    """Raised when the property configuration forbids manual overrides."""


class InvalidAssignmentRequestError(RoomAssignmentError, ValueError):
    """Raised when a request carries an empty or inverted stay window."""
