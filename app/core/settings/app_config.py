"""Application environment configuration."""

from typing import Literal

from pydantic import BaseModel

AppEnv = Literal["development", "test", "staging", "production"]


class AppConfig(BaseModel, frozen=True):
    """Application environment settings."""

    name: str
    env: AppEnv
    debug: bool

    @property
    def is_development(self) -> bool:
        """Check if running in development mode (SQL echo, create_all, open CORS)."""
        return self.env == "development"

    @property
    def is_test(self) -> bool:
        return self.env == "test"
