from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Murmur API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:8081",
            "http://127.0.0.1",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over the DB_* fields",
    )
    database_user: str = Field(default="murmur", env="DB_USER")
    database_password: str = Field(default="murmur", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="murmur", env="DB_NAME")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_message_max_length: int = Field(default=5000, env="CHAT_MESSAGE_MAX_LENGTH")
    chat_group_name_max_length: int = Field(default=100, env="CHAT_GROUP_NAME_MAX_LENGTH")
    chat_group_description_max_length: int = Field(
        default=500, env="CHAT_GROUP_DESCRIPTION_MAX_LENGTH"
    )
    chat_history_default_limit: int = Field(default=20, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_notification_preview_length: int = Field(
        default=50,
        env="CHAT_NOTIFICATION_PREVIEW_LENGTH",
        description="Number of message characters copied into notification previews.",
    )
    chat_notification_retention_days: int = Field(
        default=30,
        env="CHAT_NOTIFICATION_RETENTION_DAYS",
        description="Notifications older than this are hidden and purged regardless of read state.",
    )
    chat_notification_purge_interval_seconds: float = Field(
        default=3600.0,
        env="CHAT_NOTIFICATION_PURGE_INTERVAL_SECONDS",
        description="How often expired notifications are deleted; 0 disables the background purge.",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=25.0,
        env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS",
        description="Idle time after which the server checks whether a ping is due.",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0,
        env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS",
        description="Minimum spacing between keepalive pings on an idle socket.",
    )
    realtime_typing_ttl_seconds: int = Field(
        default=10,
        env="REALTIME_TYPING_TTL_SECONDS",
        description="Typing indicators older than this are dropped from room snapshots.",
    )
    realtime_node_id: str | None = Field(
        default=None,
        env="REALTIME_NODE_ID",
        description="Identifier of this broker instance used in logs.",
    )

    push_notifications_enabled: bool = Field(
        default=False,
        env="PUSH_NOTIFICATIONS_ENABLED",
        description="Toggle push delivery for recipients that are not in the room.",
    )
    push_gateway_url: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        env="PUSH_GATEWAY_URL",
        description="HTTP endpoint accepting push messages.",
    )
    push_timeout_seconds: float = Field(default=10.0, env="PUSH_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("push_gateway_url", mode="before")
    @classmethod
    def strip_gateway_url(cls, value: str | None) -> str:
        return (value or "").strip()


@lru_cache
def get_settings() -> Settings:
    return Settings()
