"""Configuration management for MCP Host."""

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class Settings(BaseSettings):
    """Application settings for the host, the MCP connection and the model provider."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        yaml_file=os.environ.get("CONFIG_FILE", "config.yaml"),
    )

    # Server configuration
    HOST: str = Field(default="127.0.0.1", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")

    # MCP server connection
    MCP_SERVER_URL: str = Field(default="http://localhost:8080", description="MCP server URL")
    CONNECT_RETRY_DELAY: float = Field(default=1.0, gt=0, description="Delay between connect attempts in seconds")
    INITIALIZE_TIMEOUT: float = Field(default=30.0, gt=0, description="Timeout for a single connect attempt in seconds")
    PING_INTERVAL: float = Field(default=30.0, ge=0, description="Liveness ping interval in seconds (0 disables)")

    # Model provider
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="OpenAI API key")
    OPENAI_BASE_URL: Optional[str] = Field(default=None, description="Alternative OpenAI-compatible base URL")
    MODEL: str = Field(default="gpt-4.1-nano", description="Default chat model")
    SAMPLING_MODEL: Optional[str] = Field(default=None, description="Model used for server sampling requests")

    # Conversation and sampling limits
    MAX_TOOL_ITERATIONS: int = Field(default=0, ge=0, description="Max completion round trips per turn (0 = unbounded)")
    SAMPLING_TIMEOUT: float = Field(
        default=0.0,
        ge=0,
        description=(
            "Seconds to wait for a sampling decision (0 = forever). The MCP SDK awaits the sampling "
            "callback inline, so while a decision is pending no responses to the host's own requests "
            "(tool calls, resource reads, pings) and no notifications are processed"
        ),
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over config.yaml
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @property
    def sampling_model(self) -> str:
        """Model used for server-initiated sampling, falling back to MODEL."""
        return self.SAMPLING_MODEL or self.MODEL

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins."""
        return self.CORS_ORIGINS


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
