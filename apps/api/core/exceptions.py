"""
Custom exception classes and error handling.

Two families live here:
- APIException and subclasses: HTTP-facing, raised by routers only.
- AdaptiveTrainingError and subclasses: raised by services, never HTTP aware.
  Routers translate them into API exceptions.

Insufficient data is NOT an error anywhere in the engine; it produces a
zero-confidence "insufficient_data" decision instead.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ConflictError(APIException):
    """Resource conflict (e.g., already resolved, concurrent update)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


# =========================================================================
# Domain errors
# =========================================================================

class AdaptiveTrainingError(Exception):
    """Base class for adaptive training service errors."""


class InvariantViolation(AdaptiveTrainingError, ValueError):
    """
    Caller or schema bug: unknown zone name, level outside [1, 10] before
    clamping, and similar. Fail fast, never clamp these away.
    """


class ProgressionConflictError(AdaptiveTrainingError):
    """Progression level read-modify-write kept conflicting after all retries."""

    def __init__(self, user_id, zone: str, attempts: int):
        super().__init__(
            f"Progression update for {user_id}/{zone} conflicted {attempts} times"
        )
        self.user_id = user_id
        self.zone = zone
        self.attempts = attempts


class WorkoutNotFound(AdaptiveTrainingError):
    def __init__(self, workout_id):
        super().__init__(f"Planned workout not found: {workout_id}")
        self.workout_id = workout_id


class RideNotFound(AdaptiveTrainingError):
    def __init__(self, ride_id):
        super().__init__(f"Ride not found: {ride_id}")
        self.ride_id = ride_id


class AdaptationNotFound(AdaptiveTrainingError):
    def __init__(self, adaptation_id):
        super().__init__(f"Adaptation not found: {adaptation_id}")
        self.adaptation_id = adaptation_id


class AdaptationAlreadyResolved(AdaptiveTrainingError):
    def __init__(self, adaptation_id, was_accepted: bool):
        state = "accepted" if was_accepted else "rejected"
        super().__init__(f"Adaptation {adaptation_id} was already {state}")
        self.adaptation_id = adaptation_id
        self.was_accepted = was_accepted


class NoFTPError(AdaptiveTrainingError):
    """User has no FTP on record for the requested date."""

    def __init__(self, user_id):
        super().__init__(f"No FTP on record for user {user_id}. Set FTP before classifying rides.")
        self.user_id = user_id


def http_error_for(exc: AdaptiveTrainingError) -> APIException:
    """Translate a service error into the HTTP error the API returns for it."""
    if isinstance(exc, WorkoutNotFound):
        return NotFoundError("Planned workout", str(exc.workout_id))
    if isinstance(exc, RideNotFound):
        return NotFoundError("Ride", str(exc.ride_id))
    if isinstance(exc, AdaptationNotFound):
        return NotFoundError("Adaptation", str(exc.adaptation_id))
    if isinstance(exc, (AdaptationAlreadyResolved, ProgressionConflictError)):
        return ConflictError(str(exc))
    if isinstance(exc, NoFTPError):
        return ValidationError(str(exc), field="ftp")
    return ValidationError(str(exc))
