"""GateRunner configuration management."""

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

_LOG_LEVELS = ("ERROR", "WARNING", "INFO", "DEBUG")


class GateRunnerSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Driver account (Telegram user session)
    api_id: Optional[int] = Field(default=None, description="Telegram API id")
    api_hash: Optional[str] = Field(default=None, description="Telegram API hash")
    phone: Optional[str] = Field(default=None, description="Phone number for first login")
    session_path: str = Field(
        default="./session/telegram-session.json",
        description="Where the driver session string is stored",
    )

    # Relay bot
    bot_token: Optional[str] = Field(default=None, description="Telegram bot token")

    # Logging
    log_level: str = Field(default="INFO", description="ERROR, WARNING, INFO or DEBUG")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    # Queue
    max_queue_size: int = Field(default=100, ge=1, description="Waiting requests before rejection")
    request_timeout_ms: int = Field(default=300_000, ge=1, description="Per-request deadline")

    # Interaction timings (seconds)
    response_timeout: float = Field(default=30.0, description="Wait for the first responder reply")
    join_delay: float = Field(default=3.0, description="Pause between channel joins")
    settle_delay: float = Field(default=5.0, description="Pause after the last join")
    confirm_retry_delay: float = Field(default=5.0, description="Pause before re-pressing confirm")
    silence_window: float = Field(default=10.0, description="Quiet period that ends media collection")

    # Relay cleanup and correlation
    cleanup_delay: float = Field(default=20.0, description="Delay before delivered media is deleted")
    correlation_ttl_ms: int = Field(default=600_000, description="Responder → requester mapping TTL")
    sweep_interval: float = Field(default=60.0, description="Correlation sweep period")

    # Popup text that means "you have not joined the channels yet"
    membership_keywords: list[str] = Field(
        default_factory=lambda: ["join", "عضو", "subscribe"],
        description="Case-insensitive keywords in confirm popups that trigger one retry",
    )

    # Accept requests sent directly to the driver account
    accept_driver_requests: bool = Field(default=False)

    model_config = {"env_prefix": "GATERUNNER_", "env_file": ".env", "extra": "ignore"}

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level == "WARN":
            level = "WARNING"
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}. Must be one of: {', '.join(_LOG_LEVELS)}")
        return level

    def require_credentials(self):
        """Raise ConfigError unless both identities can be started."""
        missing = [
            name for name, value in (
                ("GATERUNNER_API_ID", self.api_id),
                ("GATERUNNER_API_HASH", self.api_hash),
                ("GATERUNNER_BOT_TOKEN", self.bot_token),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Required environment variable(s) not set: {', '.join(missing)}")


def load_settings() -> GateRunnerSettings:
    """Load settings from environment."""
    settings = GateRunnerSettings()

    logger = logging.getLogger("gaterunner.config")
    if settings.request_timeout_ms < settings.response_timeout * 1000:
        logger.warning(
            f"⚠️ Request timeout ({settings.request_timeout_ms} ms) is shorter than the "
            f"responder timeout ({settings.response_timeout}s); requests will time out early."
        )

    return settings
