"""Redis configuration for token revocation, lock leases and the event relay."""

from pydantic import BaseModel


class RedisConfig(BaseModel, frozen=True):
    """Redis connection settings.

    When ``required`` is false the service starts without Redis: locks are
    process-local and revoked tokens are not checked.
    """

    url: str
    required: bool
