"""
arena/errors.py
Centralized error handling for the engine and its HTTP surface.

Every rejected operation carries a stable machine-readable code plus a
human-readable message. Engine errors are raised by the services and
rendered unchanged by the FastAPI exception handlers.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}
"""
import logging
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_GAME_TYPE = "INVALID_GAME_TYPE"
    INVALID_TEAM_SIZE = "INVALID_TEAM_SIZE"
    TOO_MANY_SUBSTITUTES = "TOO_MANY_SUBSTITUTES"
    REJECTION_REASON_REQUIRED = "REJECTION_REASON_REQUIRED"

    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    DUPLICATE_IDENTIFIER = "DUPLICATE_IDENTIFIER"

    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"

    ILLEGAL_STATUS_FOR_GAME_TYPE = "ILLEGAL_STATUS_FOR_GAME_TYPE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    NOT_FOUND = "NOT_FOUND"
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    REGISTRATION_NOT_FOUND = "REGISTRATION_NOT_FOUND"
    IMAGE_NOT_FOUND = "IMAGE_NOT_FOUND"
    MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"

    ACCESS_DENIED = "ACCESS_DENIED"
    TOURNAMENT_HAS_PARTICIPANTS = "TOURNAMENT_HAS_PARTICIPANTS"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class ArenaError(APIError):
    """Base class for every typed engine error."""

    status_code_default = status.HTTP_400_BAD_REQUEST
    error_default = "Bad Request"
    code_default = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=self.status_code_default,
            error=self.error_default,
            message=message,
            code=code or self.code_default,
            details=details
        )


class ValidationError(ArenaError):
    """Malformed input or bad team composition."""
    error_default = "Validation Error"
    code_default = ErrorCode.VALIDATION_ERROR


class DuplicateRegistration(ArenaError):
    """A user already holds a registration for the tournament."""
    status_code_default = status.HTTP_409_CONFLICT
    error_default = "Conflict"
    code_default = ErrorCode.DUPLICATE_REGISTRATION

    def __init__(self, tournament_id: int, user_id: str):
        super().__init__(
            f"User {user_id} is already registered for tournament {tournament_id}",
            details={"tournament_id": tournament_id, "user_id": user_id}
        )


class DuplicateIdentifier(ArenaError):
    """Player identifiers are not unique within the team."""
    error_default = "Validation Error"
    code_default = ErrorCode.DUPLICATE_IDENTIFIER

    def __init__(self, label: str, duplicates):
        duplicates = sorted(duplicates)
        super().__init__(
            f"All {label}s must be unique within the team (duplicated: {', '.join(duplicates)})",
            details={"duplicates": duplicates}
        )


class RegistrationClosed(ArenaError):
    code_default = ErrorCode.REGISTRATION_CLOSED

    def __init__(self, tournament_id: int, current_status: str):
        super().__init__(
            f"Registration is closed for tournament {tournament_id} (status: {current_status})",
            details={"tournament_id": tournament_id, "status": current_status}
        )


class CapacityExceeded(ArenaError):
    status_code_default = status.HTTP_409_CONFLICT
    error_default = "Conflict"
    code_default = ErrorCode.CAPACITY_EXCEEDED

    def __init__(self, tournament_id: int, max_participants: int):
        super().__init__(
            f"Tournament {tournament_id} is full (max {max_participants} teams)",
            details={"tournament_id": tournament_id, "max_participants": max_participants}
        )


class IllegalStatusForGameType(ArenaError):
    code_default = ErrorCode.ILLEGAL_STATUS_FOR_GAME_TYPE

    def __init__(self, game_type: str, value: str, allowed):
        allowed = sorted(allowed)
        super().__init__(
            f"Status '{value}' is not valid for {game_type} tournaments. Must be one of: {', '.join(allowed)}",
            details={"game_type": game_type, "status": value, "allowed": allowed}
        )


class InvalidTransition(ArenaError):
    error_default = "Invalid State"
    code_default = ErrorCode.INVALID_TRANSITION

    def __init__(self, entity: str, from_status: str, to_status: str, hint: Optional[str] = None):
        message = f"Cannot move {entity} from '{from_status}' to '{to_status}'"
        if hint:
            message = f"{message}: {hint}"
        super().__init__(
            message,
            details={"from": from_status, "to": to_status}
        )


class ConcurrencyConflict(ArenaError):
    """Lost a race against another writer; safe to retry."""
    status_code_default = status.HTTP_409_CONFLICT
    error_default = "Conflict"
    code_default = ErrorCode.CONCURRENCY_CONFLICT

    def __init__(self, message: str = "Tournament was modified concurrently. Please try again."):
        super().__init__(message, details={"retryable": True})


class NotFound(ArenaError):
    status_code_default = status.HTTP_404_NOT_FOUND
    error_default = "Not Found"
    code_default = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None, code: Optional[str] = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message, code=code)


class Forbidden(ArenaError):
    status_code_default = status.HTTP_403_FORBIDDEN
    error_default = "Forbidden"
    code_default = ErrorCode.ACCESS_DENIED


class TournamentHasParticipants(ArenaError):
    status_code_default = status.HTTP_409_CONFLICT
    error_default = "Conflict"
    code_default = ErrorCode.TOURNAMENT_HAS_PARTICIPANTS

    def __init__(self, tournament_id: int, count: int):
        super().__init__(
            f"Tournament {tournament_id} still has {count} active registrations; pass force=true to delete",
            details={"tournament_id": tournament_id, "active_registrations": count}
        )


def tournament_not_found(tournament_id: Any) -> NotFound:
    return NotFound("Tournament", tournament_id, code=ErrorCode.TOURNAMENT_NOT_FOUND)


def registration_not_found(registration_id: Any) -> NotFound:
    return NotFound("Registration", registration_id, code=ErrorCode.REGISTRATION_NOT_FOUND)
