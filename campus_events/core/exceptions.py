"""
Domain exceptions for Campus Events Service.
Each exception carries the HTTP status and error code used by the API layer.
"""

from typing import Optional, Dict, Any


class CampusEventsError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 400
    error_code = "CAMPUS_EVENTS_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert error to the API error envelope fields."""
        return {
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details or None,
        }


# NotFound
class NotFoundError(CampusEventsError):
    status_code = 404
    error_code = "NOT_FOUND"


class EventNotFoundError(NotFoundError):
    error_code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: Any = None):
        super().__init__("Event not found", {"event_id": event_id} if event_id is not None else None)


class RegistrationNotFoundError(NotFoundError):
    error_code = "REGISTRATION_NOT_FOUND"

    def __init__(self, message: str = "Registration not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class TicketNotFoundError(NotFoundError):
    error_code = "TICKET_NOT_FOUND"

    def __init__(self, ticket_id: Optional[str] = None):
        super().__init__("Ticket not found for this event", {"ticket_id": ticket_id} if ticket_id else None)


# Forbidden
class ForbiddenError(CampusEventsError):
    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Unauthorized access", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


# ValidationError
class ValidationError(CampusEventsError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class InvalidVariantError(ValidationError):
    error_code = "INVALID_VARIANT"

    def __init__(self, variant_id: Optional[str]):
        super().__init__("Invalid variant", {"variant_id": variant_id})


class OutOfStockError(ValidationError):
    error_code = "OUT_OF_STOCK"

    def __init__(self, variant_id: str, requested: int, available: Optional[int] = None):
        details = {"variant_id": variant_id, "requested": requested}
        if available is not None:
            details["available"] = available
        super().__init__("Out of stock", details)


class CapacityExceededError(ValidationError):
    error_code = "CAPACITY_EXCEEDED"

    def __init__(self, limit: Optional[int]):
        super().__init__("Registration limit reached", {"registration_limit": limit})


# Conflict
class ConflictError(CampusEventsError):
    status_code = 409
    error_code = "CONFLICT"


class AlreadyRegisteredError(ConflictError):
    error_code = "ALREADY_REGISTERED"

    def __init__(self):
        super().__init__("Already registered for this event")


class AlreadyProcessedError(ConflictError):
    error_code = "ALREADY_PROCESSED"


# StateError
class StateError(CampusEventsError):
    status_code = 400
    error_code = "STATE_ERROR"


class EventNotOngoingError(StateError):
    error_code = "EVENT_NOT_ONGOING"

    def __init__(self, current_status: str):
        super().__init__(
            f"Ticket scanning is only allowed while the event is ongoing (current status: {current_status})",
            {"current_status": current_status}
        )


class RegistrationNotEligibleError(StateError):
    error_code = "REGISTRATION_NOT_ELIGIBLE"

    def __init__(self, registration_status: str):
        super().__init__(
            f"Cannot mark attendance - registration is {registration_status}",
            {"registration_status": registration_status}
        )


class PaymentPendingError(StateError):
    error_code = "PAYMENT_PENDING"

    def __init__(self, message: str = "Payment pending approval"):
        super().__init__(message)


class PaymentRejectedError(StateError):
    error_code = "PAYMENT_REJECTED"

    def __init__(self, message: str = "Payment was rejected"):
        super().__init__(message)


class ApprovalPendingError(StateError):
    error_code = "APPROVAL_PENDING"

    def __init__(self, message: str = "Registration pending approval"):
        super().__init__(message)


class ApprovalRejectedError(StateError):
    error_code = "APPROVAL_REJECTED"

    def __init__(self, message: str = "Registration was rejected"):
        super().__init__(message)


class TicketNotIssuedError(StateError):
    error_code = "TICKET_NOT_ISSUED"

    def __init__(self):
        super().__init__("No ticket has been issued for this registration")


# CryptoError
class CryptoError(CampusEventsError):
    status_code = 400
    error_code = "CRYPTO_ERROR"


class InvalidEnvelopeError(CryptoError):
    error_code = "INVALID_ENVELOPE"


class DecryptionFailureError(CryptoError):
    error_code = "DECRYPTION_FAILURE"


# DependencyFailure
class DependencyFailure(CampusEventsError):
    status_code = 502
    error_code = "DEPENDENCY_FAILURE"
