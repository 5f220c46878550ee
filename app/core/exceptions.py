"""Application exception classes and handlers."""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.schemas.response_schema import ErrorResponse


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


# --- Authentication (401) ---


class AuthenticationError(AppException):
    """Base authentication error."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message=message, code="AUTHENTICATION_ERROR", status_code=401)


class TokenExpiredError(AppException):
    """Token has expired."""

    def __init__(self) -> None:
        super().__init__(
            message="Token has expired",
            code="TOKEN_EXPIRED",
            status_code=401,
        )


class TokenBlacklistedError(AppException):
    """Token has been revoked."""

    def __init__(self) -> None:
        super().__init__(
            message="Token has been revoked",
            code="TOKEN_BLACKLISTED",
            status_code=401,
        )


class InvalidTokenError(AppException):
    """Token is invalid."""

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(
            message=message,
            code="INVALID_TOKEN",
            status_code=401,
        )


# --- Authorization (403) ---


class AuthorizationError(AppException):
    """Insufficient permissions."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message=message, code="AUTHORIZATION_ERROR", status_code=403)


# --- Validation (400) ---


class InvalidMessageError(AppException):
    """Message body is empty or the session no longer accepts messages."""

    def __init__(self, message: str = "Invalid message") -> None:
        super().__init__(message=message, code="INVALID_MESSAGE", status_code=400)


class InvalidCursorError(AppException):
    """Pagination cursor could not be resolved."""

    def __init__(self, message: str = "Invalid cursor") -> None:
        super().__init__(message=message, code="INVALID_CURSOR", status_code=400)


class InvalidAssignmentError(AppException):
    """Assignment target cannot own the session."""

    def __init__(self, message: str = "Invalid assignment target") -> None:
        super().__init__(message=message, code="INVALID_ASSIGNMENT", status_code=400)


# --- Not Found (404) ---


class SessionNotFoundError(AppException):
    """Chat session not found."""

    def __init__(self) -> None:
        super().__init__(
            message="Chat session not found",
            code="SESSION_NOT_FOUND",
            status_code=404,
        )


# --- Conflict (409) ---


class InvalidTransitionError(AppException):
    """Requested status change is not reachable from the current status."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            message=f"Cannot move chat from '{current}' to '{requested}'",
            code="INVALID_TRANSITION",
            status_code=409,
        )


class AlreadyClaimedError(AppException):
    """Another admin claimed the session first, or it left the open state."""

    def __init__(self, assigned_admin_id: str | None = None) -> None:
        self.assigned_admin_id = assigned_admin_id
        super().__init__(
            message="Chat session is no longer open for claiming",
            code="ALREADY_CLAIMED",
            status_code=409,
        )


# --- Unavailable (503) ---


class SessionBusyError(AppException):
    """Per-session lock could not be acquired in time."""

    def __init__(self) -> None:
        super().__init__(
            message="Chat session is busy, retry shortly",
            code="SESSION_BUSY",
            status_code=503,
        )


# --- Transport ---


class ConnectionLostError(Exception):
    """Realtime transport dropped; handled by reconnect loops, never by the API."""


# --- Exception Handlers ---


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Central exception handler for AppException."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            status=exc.status_code, message=exc.message, code=exc.code
        ).model_dump(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the common error shape."""
    errors = exc.errors()
    first = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            status=422, message=first, code="VALIDATION_ERROR"
        ).model_dump(),
    )
