"""
Client configuration.

Loads Calmward client settings from the environment.
Safely ignores unrelated environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Calmward client settings.

    Environment variables must be prefixed with:
        CALMWARD_

    Example:
        CALMWARD_API_BASE_URL=https://calmward-api.example.com
    """

    # --------------------
    # Remote API
    # --------------------
    API_BASE_URL: str = Field(
        default="",
        description="Base URL for the Calmward API; empty disables remote AI",
    )
    AI_ENABLED: bool = Field(
        default=True,
        description="Master switch for the remote chat endpoint",
    )

    # --------------------
    # Timeouts
    # --------------------
    CHAT_TIMEOUT_SECONDS: float = Field(default=15.0, gt=0)
    AUTH_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # --------------------
    # Session
    # --------------------
    STORAGE_PATH: str = ".calmward/session.json"
    INACTIVITY_CHECK_INTERVAL_SECONDS: float = Field(default=60.0, gt=0)
    DEFAULT_SESSION_TIMEOUT_MINUTES: int = Field(default=30, ge=0)

    # IMPORTANT:
    # - env_prefix keeps client variables apart from the API server's
    # - extra='ignore' skips anything else found in .env
    model_config = ConfigDict(
        env_file=".env",
        env_prefix="CALMWARD_",
        extra="ignore",
    )

    @property
    def api_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.API_BASE_URL.strip().rstrip("/")


settings = Settings()
