"""Application and engine configuration."""

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables (or a local .env file)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    APP_NAME: str = "Workflow Execution Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production, testing

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflow_engine.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Engine defaults
    ENGINE_DEFAULT_TASK_PRIORITY: str = "normal"
    ENGINE_DEFAULT_APPROVAL_PRIORITY: str = "high"
    ENGINE_DEFAULT_ASSIGNMENT_TYPE: str = "manual"
    ENGINE_DEFAULT_INSTANCE_PRIORITY: str = "normal"
    ENGINE_DEFAULT_NOTIFICATION_TITLE: str = "Workflow Notification"
    ENGINE_DEFAULT_NOTIFICATION_TYPE: str = "info"
    ENGINE_DEFAULT_NOTIFICATION_PRIORITY: str = "medium"
    ENGINE_MAX_STEPS_PER_INVOCATION: int = 100
    ENGINE_WEBHOOK_TIMEOUT_SECONDS: float = 30.0
    ENGINE_WEBHOOK_SIGNING_SECRET: str = ""
    ENGINE_ALLOW_PRIVATE_WEBHOOK_TARGETS: bool = False
    ENGINE_SYSTEM_ACTOR_ID: str = "system"

    # Notification channels
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_ADDRESS: str = "workflows@localhost"
    SMTP_USE_TLS: bool = True
    PUSH_GATEWAY_URL: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()


@dataclass(frozen=True)
class EngineConfig:
    """Defaults and limits handed to the execution service and its processors."""

    default_task_priority: str = "normal"
    default_approval_priority: str = "high"
    default_assignment_type: str = "manual"
    default_instance_priority: str = "normal"
    default_notification_title: str = "Workflow Notification"
    default_notification_type: str = "info"
    default_notification_priority: str = "medium"
    default_notification_channels: tuple = ("in_app",)
    max_steps_per_invocation: int = 100
    webhook_timeout_seconds: float = 30.0
    webhook_signing_secret: str = ""
    allow_private_webhook_targets: bool = False
    system_actor_id: str = "system"

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            default_task_priority=settings.ENGINE_DEFAULT_TASK_PRIORITY,
            default_approval_priority=settings.ENGINE_DEFAULT_APPROVAL_PRIORITY,
            default_assignment_type=settings.ENGINE_DEFAULT_ASSIGNMENT_TYPE,
            default_instance_priority=settings.ENGINE_DEFAULT_INSTANCE_PRIORITY,
            default_notification_title=settings.ENGINE_DEFAULT_NOTIFICATION_TITLE,
            default_notification_type=settings.ENGINE_DEFAULT_NOTIFICATION_TYPE,
            default_notification_priority=settings.ENGINE_DEFAULT_NOTIFICATION_PRIORITY,
            max_steps_per_invocation=settings.ENGINE_MAX_STEPS_PER_INVOCATION,
            webhook_timeout_seconds=settings.ENGINE_WEBHOOK_TIMEOUT_SECONDS,
            webhook_signing_secret=settings.ENGINE_WEBHOOK_SIGNING_SECRET,
            allow_private_webhook_targets=settings.ENGINE_ALLOW_PRIVATE_WEBHOOK_TARGETS,
            system_actor_id=settings.ENGINE_SYSTEM_ACTOR_ID,
        )
