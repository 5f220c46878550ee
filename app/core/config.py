"""Application configuration using Pydantic Settings V2."""

from functools import cached_property
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.settings import (
    AppConfig,
    AppEnv,
    AuthConfig,
    ChatConfig,
    DatabaseConfig,
    RealtimeConfig,
    RedisConfig,
    ServerConfig,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Flat fields are loaded directly from environment variables.
    Domain properties provide grouped access (e.g. settings.chat.lock_timeout_seconds).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = Field(
        default="support-chat",
        description="Application name",
    )
    app_env: AppEnv = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=True,
        description="Debug mode",
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        description="Server host",
    )
    port: int = Field(
        default=8004,
        ge=1,
        le=65535,
        description="Server port",
    )

    # JWT Auth (tokens are issued by the CRM auth service)
    jwt_secret_key: SecretStr = Field(
        description="Shared secret used to verify access tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm",
    )
    jwt_access_token_expire_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Access token lifetime used by the dev token helper",
    )

    # Database
    database_url: SecretStr = Field(
        description="Async database URL (mysql+aiomysql://...)",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_required: bool = Field(
        default=True,
        description="Fail startup when Redis is unreachable",
    )

    # Chat coordination
    chat_lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="How long a caller waits for a per-session lock",
    )
    chat_lock_lease_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Redis lease length for per-session locks",
    )
    chat_require_assignment_to_reply: bool = Field(
        default=True,
        description="Regular admins may only reply to chats assigned to them",
    )
    chat_message_max_length: int = Field(
        default=4000,
        ge=1,
        le=65535,
        description="Maximum message body length",
    )
    chat_message_rate_limit: str = Field(
        default="120/minute",
        description="Send-message endpoint rate limit",
    )
    chat_default_page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Default message page size",
    )

    # Realtime
    realtime_typing_ttl_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Typing indicator lifetime without a refresh",
    )
    realtime_sweep_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        le=30,
        description="Typing sweeper interval",
    )
    realtime_subscriber_queue_size: int = Field(
        default=256,
        ge=1,
        le=10000,
        description="Per-subscription event buffer",
    )
    realtime_redis_relay: bool = Field(
        default=False,
        description="Mirror bus events through Redis pub/sub for multi-worker fan-out",
    )
    realtime_redis_channel: str = Field(
        default="support-chat:events",
        description="Redis pub/sub channel used by the relay",
    )
    realtime_reconnect_initial_seconds: float = Field(
        default=5.0,
        gt=0,
        description="First reconnect delay",
    )
    realtime_reconnect_max_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Reconnect delay cap",
    )

    # --- Domain properties ---

    @cached_property
    def app(self) -> AppConfig:
        """Application environment configuration."""
        return AppConfig(
            name=self.app_name,
            env=self.app_env,
            debug=self.debug,
        )

    @cached_property
    def server(self) -> ServerConfig:
        """Server configuration."""
        return ServerConfig(
            host=self.host,
            port=self.port,
        )

    @cached_property
    def auth(self) -> AuthConfig:
        """JWT authentication configuration."""
        return AuthConfig(
            secret_key=self.jwt_secret_key,
            algorithm=self.jwt_algorithm,
            access_token_expire_minutes=self.jwt_access_token_expire_minutes,
        )

    @cached_property
    def database(self) -> DatabaseConfig:
        """Database connection configuration."""
        return DatabaseConfig(url=self.database_url)

    @cached_property
    def redis(self) -> RedisConfig:
        """Redis connection configuration."""
        return RedisConfig(url=self.redis_url, required=self.redis_required)

    @cached_property
    def chat(self) -> ChatConfig:
        """Chat coordination configuration."""
        return ChatConfig(
            lock_timeout_seconds=self.chat_lock_timeout_seconds,
            lock_lease_seconds=self.chat_lock_lease_seconds,
            require_assignment_to_reply=self.chat_require_assignment_to_reply,
            message_max_length=self.chat_message_max_length,
            message_rate_limit=self.chat_message_rate_limit,
            default_page_size=self.chat_default_page_size,
        )

    @cached_property
    def realtime(self) -> RealtimeConfig:
        """Realtime delivery configuration."""
        return RealtimeConfig(
            typing_ttl_seconds=self.realtime_typing_ttl_seconds,
            sweep_interval_seconds=self.realtime_sweep_interval_seconds,
            subscriber_queue_size=self.realtime_subscriber_queue_size,
            redis_relay=self.realtime_redis_relay,
            redis_channel=self.realtime_redis_channel,
            reconnect_initial_seconds=self.realtime_reconnect_initial_seconds,
            reconnect_max_seconds=self.realtime_reconnect_max_seconds,
        )

    # --- Convenience properties (delegate to domain configs) ---

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app.is_development


# Global settings instance
settings = Settings()
