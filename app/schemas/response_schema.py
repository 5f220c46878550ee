"""Response envelope shared by every REST endpoint."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ErrorResponse(BaseModel):
    """``{status, message, code}`` body produced by the exception handlers."""

    status: int
    message: str
    code: str


class ApiResponse(BaseModel, Generic[T]):
    """``{status, message, data}`` body of a successful call."""

    status: int = 200
    message: str = "Success"
    data: T | None = None


def success_response(data: T, status: int = 200, message: str = "Success") -> dict:
    """Wrap ``data`` in the success envelope; FastAPI validates it against ApiResponse."""
    return {"status": status, "message": message, "data": data}
