"""JWT token verification and revocation lookups.

Access tokens are issued by the CRM auth service with the shared secret;
this service only verifies them. ``create_access_token`` exists for local
tooling and tests.
"""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import redis.asyncio as redis

from app.core.config import settings
from app.core.exceptions import (
    InvalidTokenError,
    TokenBlacklistedError,
    TokenExpiredError,
)
from app.schemas.auth_schema import CurrentUser, TokenPayload

BLACKLIST_PREFIX = "token_blacklist:"


class TokenService:
    """Decode bearer tokens and consult the Redis blacklist."""

    def __init__(self, redis_client: redis.Redis | None) -> None:  # type: ignore[type-arg]
        self._redis = redis_client
        self._secret = settings.auth.secret_key.get_secret_value()
        self._algorithm = settings.auth.algorithm

    def create_access_token(self, user_id: str, email: str, role: str) -> str:
        """Create a signed JWT access token."""
        now = datetime.now(UTC)
        expire = now + timedelta(minutes=settings.auth.access_token_expire_minutes)
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "type": "access",
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenPayload:
        """Decode and validate a JWT token."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError from e
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError from e

        try:
            return TokenPayload(
                sub=payload["sub"],
                email=payload["email"],
                role=payload["role"],
                type=payload["type"],
                jti=payload["jti"],
                exp=payload["exp"],
            )
        except KeyError as e:
            raise InvalidTokenError(message=f"Missing claim: {e.args[0]}") from e

    async def is_blacklisted(self, jti: str) -> bool:
        """Check if a token is blacklisted."""
        if self._redis is None:
            return False
        result = await self._redis.get(f"{BLACKLIST_PREFIX}{jti}")
        return result is not None

    async def authenticate(self, token: str) -> CurrentUser:
        """Resolve a bearer token to the calling user."""
        payload = self.decode_token(token)
        if payload.type != "access":
            raise InvalidTokenError(message="Invalid token type")
        if await self.is_blacklisted(payload.jti):
            raise TokenBlacklistedError
        return CurrentUser(id=payload.sub, email=payload.email, role=payload.role)
