"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict


class TokenPayload(BaseModel):
    """Decoded JWT payload."""

    model_config = ConfigDict(frozen=True)

    sub: str
    email: str
    role: str
    type: str
    jti: str
    exp: int


class CurrentUser(BaseModel):
    """Authenticated caller extracted from a verified token."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: str
