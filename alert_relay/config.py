"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'alert_relay.db'}"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Inbound signal webhook (?token=...)
    webhook_token: str = "change-me"

    # Notification relay (trusted callers only)
    relay_secret: str = ""  # empty disables the X-Relay-Secret header check
    relay_blocked_marker: str = "legacy-signal"

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440  # 24 hours

    # Telegram
    telegram_bot_token: str = ""
    telegram_use_webhook: bool = False
    telegram_webhook_secret: str = ""

    # Lifetimes
    link_code_ttl_minutes: int = 10
    followup_cache_seconds: int = 120
    notification_key_retention_days: int = 7

    # Query interface
    recent_trades_limit: int = 200

    model_config = {"env_prefix": "TA_", "env_file": ".env"}


settings = Settings()
