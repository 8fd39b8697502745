from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "lighterdash.db").resolve()
_DEFAULT_PREFERENCES_PATH = (_PROJECT_ROOT / "data" / "preferences.json").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"


class Settings(BaseSettings):
    # Exchange endpoints
    LIGHTER_API_URL: str = "https://mainnet.zklighter.elliot.ai"
    LIGHTER_WS_URL: str = "wss://mainnet.zklighter.elliot.ai/stream"
    LIGHTER_HTTP_TIMEOUT: float = 15.0

    # WebSocket feed reconnection
    WS_RECONNECT_BASE_DELAY: float = 1.0  # First backoff delay (seconds)
    WS_RECONNECT_MAX_DELAY: float = 30.0  # Backoff ceiling (seconds)
    WS_RECONNECT_MAX_ATTEMPTS: int = 10  # Automatic attempts before giving up
    WS_PING_INTERVAL: float = 20.0  # Keep-alive ping interval (seconds)
    WS_SUBSCRIBE_MARKET_STATS: bool = False  # Also follow market_stats/all

    # Market symbol resolution
    MARKET_HINT_TOLERANCE: float = 0.005  # 0.5% relative price difference

    # Position math
    MAINTENANCE_MARGIN_FRACTION: float = 0.005

    # Analysis
    ANALYSIS_TIMEZONE: str = "UTC"  # Zone used for hour/day-of-week buckets
    MAX_TRACKED_EVENTS: int = 50  # Liquidation events and alerts kept per account
    MAX_TRACKED_TRADES: int = 500
    MAX_MARKET_TRADES: int = 50  # Public trades kept per subscribed market
    ORDER_BOOK_DEPTH: int = 10  # Levels kept per side of a subscribed book
    ALERT_DEDUPE_SECONDS: float = 300.0  # Identical alerts inside this window are dropped

    # Caching
    CACHE_TTL_SECONDS: float = 300.0

    # AI gateway (OpenAI-compatible chat completions)
    AI_GATEWAY_URL: str = "https://ai.gateway.lovable.dev/v1"
    AI_GATEWAY_API_KEY: Optional[str] = None
    AI_MODEL: str = "google/gemini-2.5-flash"
    AI_REQUEST_TIMEOUT: float = 120.0

    # Storage
    DATABASE_URL: str = f"{_SQLITE_ASYNC_PREFIX}{_DEFAULT_DB_PATH}"
    PREFERENCES_PATH: str = str(_DEFAULT_PREFERENCES_PATH)

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None  # Extra JSON log file

    @field_validator("LIGHTER_API_URL", "AI_GATEWAY_URL", mode="before")
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("AI_GATEWAY_API_KEY", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    class Config:
        # Project-root .env first, then backend/.env as an override.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
