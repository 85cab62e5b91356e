"""
Startup configuration for the welcome bot.

Settings are read once from the environment (with .env.local loaded first).
Missing credentials or base URI stop the service at startup rather than
failing every incoming event later.

Environment:
- MICROSOFT_APP_ID (required): Bot registration app ID
- MICROSOFT_APP_PASSWORD (required): Bot registration client secret
- BASE_URI (required): Public base URL hosting the welcome card images
- BOT_NAME: Display name used on outgoing conversations and the card
- EMAIL_NOTIFICATIONS_URL: Optional link shown on the welcome card
- DATABASE_URL: PostgreSQL DSN for membership bookkeeping (logging only when unset)
- MAX_CONCURRENT_DELIVERIES: Parallel welcome deliveries (default: 8)
- PROCESSING_TIMEOUT_SECONDS: Deadline for handling one event (default: 30)
- ENUMERATION_ATTEMPTS: Attempts when listing team members (default: 3)
- LOG_LEVEL: Logging level (default: INFO)
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

REQUIRED_SETTINGS = {
    "app_id": "MICROSOFT_APP_ID",
    "app_password": "MICROSOFT_APP_PASSWORD",
    "base_uri": "BASE_URI",
}


@dataclass(frozen=True)
class BotSettings:
    """Resolved bot configuration."""

    app_id: str
    app_password: str
    base_uri: str
    bot_name: str = "Welcome Bot"
    email_notifications_url: Optional[str] = None
    database_url: Optional[str] = None
    max_concurrent_deliveries: int = 8
    processing_timeout_seconds: float = 30.0
    enumeration_attempts: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BotSettings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigurationError: If a required variable is missing or a number is invalid
        """
        env = os.environ if env is None else env

        missing = [name for name in REQUIRED_SETTINGS.values() if not (env.get(name) or "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                missing=missing
            )

        return cls(
            app_id=env["MICROSOFT_APP_ID"].strip(),
            app_password=env["MICROSOFT_APP_PASSWORD"].strip(),
            base_uri=env["BASE_URI"].strip().rstrip("/"),
            bot_name=env.get("BOT_NAME") or "Welcome Bot",
            email_notifications_url=env.get("EMAIL_NOTIFICATIONS_URL") or None,
            database_url=env.get("DATABASE_URL") or None,
            max_concurrent_deliveries=_positive_int(env, "MAX_CONCURRENT_DELIVERIES", 8),
            processing_timeout_seconds=_positive_float(env, "PROCESSING_TIMEOUT_SECONDS", 30.0),
            enumeration_attempts=_positive_int(env, "ENUMERATION_ATTEMPTS", 3),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    return value


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be greater than 0, got {value}")
    return value


def load_settings() -> BotSettings:
    """Load .env.local (if present) and resolve settings from the environment."""
    load_dotenv('.env.local')
    return BotSettings.from_env()
