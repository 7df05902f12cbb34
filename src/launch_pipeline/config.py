"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when required settings are missing or invalid."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required settings: {', '.join(missing)}")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )

    # Meta Graph API
    meta_access_token: str | None = Field(
        default=None,
        description="System user or long-lived access token for the Marketing API",
    )
    meta_app_secret: str | None = Field(
        default=None,
        description="App secret used to sign calls with appsecret_proof",
    )
    meta_api_version: str = Field(default="v21.0", description="Graph API version")
    meta_graph_url: str = Field(
        default="https://graph.facebook.com",
        description="Graph API base URL",
    )
    meta_http_timeout_seconds: float = Field(
        default=60.0,
        description="HTTP timeout for Graph API calls (batch uploads can be slow)",
    )

    # Launch defaults (used when a manifest omits them)
    meta_ad_account_id: str | None = Field(default=None, description="Default ad account ID")
    meta_page_id: str | None = Field(default=None, description="Default Facebook page ID")
    meta_pixel_id: str | None = Field(default=None, description="Default pixel ID")

    # Rate limiting
    rate_warning_threshold: float = Field(
        default=80.0,
        description="Platform usage percentage above which a warning is logged",
    )

    # Alerting
    alert_discord_webhook_url: str | None = Field(
        default=None,
        description="Discord webhook URL for launch alerts",
    )
    alert_on_launch_failure: bool = Field(
        default=True,
        description="Send alerts when a launch fails or ends with failed items",
    )

    def missing(self, *names: str) -> list[str]:
        """Return the subset of setting names that are unset or empty."""
        return [name for name in names if not getattr(self, name, None)]

    def require(self, *names: str) -> None:
        """Fail fast if any of the named settings are missing.

        Raises:
            ConfigurationError: Listing every missing field, not just the first.
        """
        missing = self.missing(*names)
        if missing:
            raise ConfigurationError(missing)


# Settings the Graph API client cannot work without
GRAPH_REQUIRED_SETTINGS = ("meta_access_token", "meta_api_version", "meta_graph_url")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


# Convenience alias
settings = get_settings()
