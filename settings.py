"""Application settings loaded from environment variables."""

import secrets
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

# Environments where a throwaway signing key may be provisioned automatically.
DEV_ENVIRONMENTS = ("local", "dev", "test")


class Settings(BaseSettings):
    """Application configuration."""

    # Server settings
    port: int = Field(default=8080, description="Server port")
    host: str = Field(default="0.0.0.0", description="Server host")
    base_url: str = Field(
        default="http://localhost:8080", description="Public base URL for download links"
    )

    # Database settings
    db_url: str = Field(
        default="sqlite:////app/state/reports.db", description="Database URL"
    )
    store_timeout_sec: float = Field(
        default=5.0, description="Upper bound for a single store operation in seconds"
    )

    # Data storage
    data_dir: str = Field(
        default="/app/data", description="Directory holding locally stored report files"
    )

    # Download tokens
    download_token_ttl_sec: int = Field(
        default=300, description="Lifetime of a download token in seconds"
    )
    token_sweep_interval_sec: int = Field(
        default=600, description="Interval between expired token sweeps in seconds"
    )

    # Job bookkeeping
    max_error_message_length: int = Field(
        default=1000, description="Failure reasons longer than this are truncated"
    )

    # Authentication
    jwt_secret: Optional[str] = Field(
        default=None, description="Key used to verify bearer tokens"
    )
    jwt_algorithm: str = Field(default="HS256", description="Bearer token algorithm")

    # Runtime environment: local, dev, test, staging, production
    environment: str = Field(default="production", description="Deployment environment")

    # Logging
    log_level: str = Field(default="info", description="Log level")

    # Application version
    version: str = Field(default="1.0.0", description="Application version")

    model_config = {"env_file": ".env", "case_sensitive": False}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Provision a per-process signing key only outside production
        if not self.jwt_secret and self.is_dev_environment:
            self.jwt_secret = secrets.token_urlsafe(32)

    @property
    def is_dev_environment(self) -> bool:
        return self.environment.lower() in DEV_ENVIRONMENTS

    def require_jwt_secret(self) -> str:
        """Return the signing key, failing loudly when none was configured."""
        if not self.jwt_secret:
            raise RuntimeError(
                f"JWT_SECRET must be configured for environment '{self.environment}'"
            )
        return self.jwt_secret


# Global settings instance
settings = Settings()
