"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Every timing and endpoint the sync layer depends on is declared once here.
The push transport URL, the reconnect backoff window and the cache refetch
retry policy can all be tuned through environment variables (or a `.env`
file) without touching the clients that read them.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    # Push transport
    PUSH_URL: str = "ws://127.0.0.1:8000/realtime"
    RECONNECT_BASE_DELAY_S: float = 1.0
    RECONNECT_MAX_DELAY_S: float = 32.0

    # Authoritative fetches
    API_BASE_URL: str = "http://127.0.0.1:8000"
    HTTP_TIMEOUT_S: float = 10.0

    # Cache refetch retry
    REFETCH_MAX_RETRIES: int = 3
    REFETCH_BASE_BACKOFF_S: float = 0.5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Tolerate unrelated env vars so the CLI runs out of the box
        extra="ignore",
    )


settings = Settings()
