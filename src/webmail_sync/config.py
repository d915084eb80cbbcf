"""Configuration management for Webmail Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OAuthClientConfig(BaseModel):
    """OAuth client credentials handed to the token manager."""

    client_id: str
    client_secret: str
    token_uri: str = "https://oauth2.googleapis.com/token"
    refresh_margin_seconds: int = 300
    timeout_seconds: float = 30.0


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the WEBMAIL_SYNC_ prefix (e.g., WEBMAIL_SYNC_GMAIL_PAGE_SIZE).
    """

    model_config = SettingsConfigDict(
        env_prefix="WEBMAIL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Google OAuth client
    google_client_id: str = Field(
        default="",
        description="OAuth client id used for the refresh_token grant",
    )
    google_client_secret: str = Field(
        default="",
        description="OAuth client secret used for the refresh_token grant",
    )
    google_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint",
    )
    token_refresh_margin_seconds: int = Field(
        default=300,
        description="Refresh access tokens that expire within this many seconds",
    )

    # Gmail API
    gmail_api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Base URL of the Gmail REST API for the signed-in user",
    )
    gmail_page_size: int = Field(
        default=50,
        description="Number of messages requested per list page",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for every remote call in seconds",
    )

    # Local store
    db_path: Path = Field(
        default=Path("webmail.sqlite3"),
        description="Path to the local SQLite mail store",
    )
    user_id: str | None = Field(
        default=None,
        description="Id of the signed-in user whose mailbox is synced",
    )

    # Outbound label propagation
    outbound_queue_size: int = Field(
        default=100,
        description="Maximum number of pending read/star propagation jobs",
    )
    outbound_drain_timeout_seconds: float = Field(
        default=10.0,
        description="How long shutdown waits for pending propagation jobs",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    def oauth_client(self) -> OAuthClientConfig:
        """Build the OAuth client config passed to the token manager."""
        return OAuthClientConfig(
            client_id=self.google_client_id,
            client_secret=self.google_client_secret,
            token_uri=self.google_token_uri,
            refresh_margin_seconds=self.token_refresh_margin_seconds,
            timeout_seconds=self.http_timeout_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
