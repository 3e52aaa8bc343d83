"""
Configuration management for Compliance Tower.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Compliance Tower")
    debug: bool = Field(default=False)
    environment: str = Field(
        default="development",
        description="Deployment environment: 'development', 'test' or 'production'.",
    )

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Database
    database_url: str = Field(default="sqlite:///./compliance_tower.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    # Source repository client
    source_api_url: str = Field(default="https://api.github.com")
    source_token: Optional[str] = Field(default=None)
    source_default_ref: str = Field(default="main")
    source_timeout_seconds: float = Field(default=30.0)

    # Scanning
    artifact_root: str = Field(
        default=".gxp/",
        description="Directory prefix that holds compliance artifacts.",
    )
    context_document: str = Field(
        default="system_context.md",
        description="Root context document, relative to artifact_root.",
    )
    fetch_batch_size: int = Field(default=10, ge=1)
    progress_timeout_seconds: float = Field(default=5.0)

    # Evidence signature verification
    jws_public_keys: Optional[str] = Field(
        default=None,
        description="JSON array of PEM encoded public keys used to verify evidence.",
    )
    jws_allow_unsigned_in_dev: Optional[bool] = Field(
        default=None,
        description=(
            "Decode unverifiable evidence (marked invalid). "
            "Unset means enabled outside production."
        ),
    )
    jws_log_failures: bool = Field(default=True)
    jws_max_age_seconds: Optional[int] = Field(default=None, ge=0)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def jws_dev_fallback_enabled(self) -> bool:
        if self.jws_allow_unsigned_in_dev is None:
            return not self.is_production
        return self.jws_allow_unsigned_in_dev

    @property
    def context_document_path(self) -> str:
        """Full repository path of the root context document."""
        return f"{self.artifact_root.rstrip('/')}/{self.context_document}"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
