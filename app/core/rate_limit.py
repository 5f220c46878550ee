"""Rate limiting shared by the application and its routers."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.schemas.response_schema import ErrorResponse


def user_or_address(request: Request) -> str:
    """Limit authenticated callers per user, anonymous ones per address."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_address)


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            status=429, message="Rate limit exceeded", code="RATE_LIMIT_EXCEEDED"
        ).model_dump(),
    )
