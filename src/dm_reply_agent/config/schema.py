"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookConfig(BaseModel):
    """Inbound webhook configuration."""

    app_secret: str = Field(min_length=1)
    verify_token: str | None = None
    platform: Literal["instagram"] = "instagram"


class InstagramConfig(BaseModel):
    """Instagram Graph API delivery configuration."""

    access_token: str
    business_account_id: str
    graph_api_version: str = "v20.0"
    base_url: str = "https://graph.facebook.com"
    timeout: float = Field(30.0, gt=0, le=120)

    @field_validator("business_account_id")
    @classmethod
    def validate_business_account_id(cls, v: str) -> str:
        """Validate the account id is a bare identifier."""
        if not v or "/" in v or v.strip() != v:
            raise ValueError(f"Invalid business account id: {v!r}")
        return v


class AnthropicConfig(BaseModel):
    """Anthropic-specific configuration."""

    api_key: str
    model: str = "claude-3-5-haiku-20241022"
    max_tokens: int = 512
    temperature: float = 0.2


class ClassifierConfig(BaseModel):
    """Model fallback classifier configuration."""

    provider: Literal["anthropic", "none"] = "none"
    anthropic: AnthropicConfig | None = None


class StorageConfig(BaseModel):
    """Persistence backend configuration."""

    backend: Literal["memory", "sql"] = "memory"
    url: str = "sqlite+aiosqlite:///./dm-reply-agent.db"
    echo: bool = False


class QueueConfig(BaseModel):
    """In-process job queue configuration."""

    concurrency: int = Field(1, ge=1, le=50, description="Max jobs processed at once")
    shutdown_timeout: float = Field(
        30.0, ge=0, le=600, description="Seconds to wait for in-flight jobs on shutdown"
    )


class PipelineConfig(BaseModel):
    """Decision pipeline tuning."""

    confidence_threshold: float = Field(0.6, ge=0.0, le=1.0)


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(3000, ge=1, le=65535)
    admin_enabled: bool = True


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("/var/log/dm-reply-agent/agent.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Retry configuration for transient classifier failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.1, le=10.0)
    max_delay: float = Field(30.0, ge=1.0, le=300.0)


class AgentConfig(BaseSettings):
    """Root configuration for DM Reply Agent."""

    webhook: WebhookConfig
    instagram: InstagramConfig
    classifier: ClassifierConfig = ClassifierConfig()
    storage: StorageConfig = StorageConfig()
    queue: QueueConfig = QueueConfig()
    pipeline: PipelineConfig = PipelineConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    retry: RetryConfig = RetryConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
    )
