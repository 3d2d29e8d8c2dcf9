from typing import Any, Dict, Optional


# Retryable errors are infrastructure failures and render as 503; fatal ones are
# domain outcomes rendered from their own error_code and http_status.
class RetryableException(Exception):
    """Exception for errors that can be retried (database timeouts, temporary unavailability)."""


class FatalException(Exception):
    """Exception for non-recoverable errors (validation failures, impossible transitions)."""


class ReservationDomainError(FatalException):
    """
    Base class for all reservation domain errors.

    Carries a stable ``error_code`` and a ``context`` dict so the HTTP layer can
    render enough detail for a human to act on the failure.
    """
    error_code = "domain_error"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message, **self.context}


# Structural failures: terminal, surfaced verbatim

class ValidationFailedError(ReservationDomainError):
    """Raised when a request is structurally invalid."""
    error_code = "validation_error"
    http_status = 422

class InvalidMileageError(ValidationFailedError):
    """Raised when a mileage reading is not a non-negative integer."""
    error_code = "invalid_mileage"

class InvalidFuelLevelError(ValidationFailedError):
    """Raised when a fuel level is not one of the recorded levels."""
    error_code = "invalid_fuel_level"

class InvalidDurationError(ValidationFailedError):
    """Raised when a maintenance duration is outside the allowed range."""
    error_code = "invalid_duration"

class InvalidDateRangeError(ValidationFailedError):
    """Raised when dates are inverted or violate business rules."""
    error_code = "invalid_date_range"

class MissingContractNumberError(ValidationFailedError):
    """Raised when a pickup is attempted without a contract number."""
    error_code = "missing_contract_number"

class VehicleRequiredError(ValidationFailedError):
    """Raised when a placeholder is picked up without choosing a vehicle."""
    error_code = "vehicle_required"


# Non-overridable domain violation

class ReturnBelowPickupError(ReservationDomainError):
    """Raised when return mileage is lower than the recorded pickup mileage."""
    error_code = "return_below_pickup"
    http_status = 422


# Lookup and state failures

class ReservationNotFoundError(ReservationDomainError):
    error_code = "reservation_not_found"
    http_status = 404

class VehicleNotFoundError(ReservationDomainError):
    error_code = "vehicle_not_found"
    http_status = 404

class InvalidReservationStateError(ReservationDomainError):
    """Raised when a transition is requested from a state that does not allow it."""
    error_code = "invalid_state"
    http_status = 409

class VehicleUnavailableError(ReservationDomainError):
    """Raised when the vehicle cannot take part in the transition (rented, not for rental)."""
    error_code = "vehicle_unavailable"
    http_status = 409

class SchedulingConflictError(ReservationDomainError):
    """Raised when the vehicle already has an overlapping reservation."""
    error_code = "scheduling_conflict"
    http_status = 409

class DuplicatePlaceholderError(ReservationDomainError):
    """Raised when an unresolved spare placeholder already exists for a rental."""
    error_code = "duplicate_placeholder"
    http_status = 409


# Conflict-recoverable

class DuplicateContractNumberError(ReservationDomainError):
    """Raised when a contract number is held by another reservation and no override was given."""
    error_code = "duplicate_contract_number"
    http_status = 409

    def __init__(self, message: str, holder: Optional[Any] = None, **context: Any):
        super().__init__(message, **context)
        self.holder = holder

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.holder is not None:
            data["holder"] = self.holder.model_dump(mode="json")
        return data


class DatabaseQueryError(RetryableException):
    """Raised when a database query fails or returns unexpected results."""
