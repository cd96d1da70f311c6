"""
Configuration module for the gatekeeper bot.

This module handles loading and validating configuration from environment
variables using Pydantic Settings. It supports multiple environments
(production, staging) via the BOT_ENV environment variable.

Tunable values are validated softly: a value that cannot be parsed or is
outside its allowed range falls back to the default and a human-readable
warning is recorded in ``Settings.config_warnings`` instead of failing
startup. Only settings the bot cannot run without fail hard.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gatekeeper.constants import sanitize_log_text

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Jakarta"

# name -> (default, minimum, maximum)
INT_RANGES: dict[str, tuple[int, int, int]] = {
    "captcha_length": (6, 4, 12),
    "captcha_timeout_seconds": (120, 30, 600),
    "captcha_caption_update_seconds": (10, 2, 30),
    "captcha_width": (320, 160, 400),
    "captcha_height": (100, 60, 200),
    "captcha_option_count": (6, 3, 12),
    "captcha_attempts": (3, 1, 10),
    "ban_release_after_seconds": (21600, 60, 2_592_000),
    "webhook_port": (8080, 1, 65535),
}

BOOL_DEFAULTS: dict[str, bool] = {
    "captcha_option_digits_to_emoji": True,
    "delete_join_message": True,
    "delete_left_message": True,
    "ban_release_enabled": False,
    "captcha_log_enabled": False,
}

TRUE_VALUES = {"true", "1", "yes", "y", "on"}
FALSE_VALUES = {"false", "0", "no", "n", "off"}

LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "err": "ERROR",
}

RUN_MODES = {
    "polling": "polling",
    "poll": "polling",
    "webhook": "webhook",
    "webhooks": "webhook",
}

WEBHOOK_SECRET_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,256}$")


def get_env_file() -> str | None:
    """
    Determine which .env file to load based on BOT_ENV environment variable.

    Returns:
        str | None: Path to the environment file if it exists, None otherwise.
            - "production" or default -> ".env" (if exists)
            - "staging" -> ".env.staging" (if exists)
    """
    env = os.getenv("BOT_ENV", "production")
    env_files = {
        "production": ".env",
        "staging": ".env.staging",
    }
    env_file = env_files.get(env, ".env")

    # Pydantic will load from environment variables if no .env file
    if Path(env_file).exists():
        logger.debug(f"Loading configuration from: {env_file}")
        return env_file
    else:
        logger.debug(f"No .env file found at {env_file}, loading from environment variables")
        return None


def _soft_int(
    data: dict[str, Any], name: str, default: int, low: int, high: int, warnings: list[str]
) -> None:
    raw = data.get(name)
    if raw is None or isinstance(raw, bool):
        return
    try:
        value = int(str(raw).strip())
    except ValueError:
        warnings.append(
            f"{name.upper()} invalid ('{sanitize_log_text(str(raw))}'), "
            f"using default {default} (range {low}..={high})"
        )
        data[name] = default
        return
    if not low <= value <= high:
        warnings.append(
            f"{name.upper()} out of range ({value}), "
            f"using default {default} (range {low}..={high})"
        )
        value = default
    data[name] = value


def _soft_bool(data: dict[str, Any], name: str, default: bool, warnings: list[str]) -> None:
    raw = data.get(name)
    if raw is None or isinstance(raw, bool):
        return
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        data[name] = True
    elif normalized in FALSE_VALUES:
        data[name] = False
    else:
        warnings.append(
            f"{name.upper()} invalid ('{sanitize_log_text(str(raw))}'), using default {default}"
        )
        data[name] = default


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        telegram_bot_token: Bot token from @BotFather (required).
        captcha_length: Number of characters in a challenge code.
        captcha_timeout_seconds: Seconds before an unanswered challenge bans.
        captcha_caption_update_seconds: Countdown cadence for caption refresh.
        captcha_width: Rendered challenge image width in pixels.
        captcha_height: Rendered challenge image height in pixels.
        captcha_option_count: Number of answer buttons (correct + decoys).
        captcha_attempts: Wrong answers allowed before the member is banned.
        captcha_option_digits_to_emoji: Render digits and A/B as emoji keycaps.
        delete_join_message: Delete "user joined" service messages.
        delete_left_message: Delete "user left" service messages.
        ban_release_enabled: Schedule automatic unban after a captcha ban.
        ban_release_after_seconds: Delay between ban and automatic unban.
        database_path: Path to SQLite database holding release jobs.
        captcha_log_enabled: Post verification results to an operator chat.
        captcha_log_chat_id: Operator chat receiving captcha log entries.
        timezone: IANA timezone used for captcha log timestamps.
        log_level: Root logging level.
        run_mode: "polling" or "webhook".
        config_warnings: Soft validation warnings collected while loading.
    """

    telegram_bot_token: str
    captcha_length: int = 6
    captcha_timeout_seconds: int = 120
    captcha_caption_update_seconds: int = 10
    captcha_width: int = 320
    captcha_height: int = 100
    captcha_option_count: int = 6
    captcha_attempts: int = 3
    captcha_option_digits_to_emoji: bool = True
    delete_join_message: bool = True
    delete_left_message: bool = True
    ban_release_enabled: bool = False
    ban_release_after_seconds: int = 21600
    database_path: str = "data/gatekeeper.db"
    captcha_log_enabled: bool = False
    captcha_log_chat_id: int | None = None
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"
    run_mode: Literal["polling", "webhook"] = "polling"
    webhook_url: str | None = None
    webhook_path: str = "/telegram"
    webhook_listen_addr: str = "0.0.0.0"
    webhook_port: int = 8080
    webhook_secret_token: str | None = None
    config_warnings: list[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def apply_soft_defaults(cls, data: Any) -> Any:
        """Replace invalid tunables with defaults and record a warning for each."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        warnings: list[str] = []

        for name, (default, low, high) in INT_RANGES.items():
            _soft_int(data, name, default, low, high, warnings)
        for name, default in BOOL_DEFAULTS.items():
            _soft_bool(data, name, default, warnings)

        raw_level = data.get("log_level")
        if raw_level is not None:
            level = LOG_LEVELS.get(str(raw_level).strip().lower())
            if level is None:
                warnings.append(
                    f"LOG_LEVEL invalid ('{sanitize_log_text(str(raw_level))}'), using INFO"
                )
                level = "INFO"
            data["log_level"] = level

        raw_tz = data.get("timezone")
        if raw_tz is not None:
            try:
                ZoneInfo(str(raw_tz).strip())
                data["timezone"] = str(raw_tz).strip()
            except (ZoneInfoNotFoundError, ValueError):
                warnings.append(
                    f"TIMEZONE invalid ('{sanitize_log_text(str(raw_tz))}'), "
                    f"using {DEFAULT_TIMEZONE}"
                )
                data["timezone"] = DEFAULT_TIMEZONE

        raw_chat_id = data.get("captcha_log_chat_id")
        if raw_chat_id is not None:
            text = str(raw_chat_id).strip()
            try:
                chat_id = int(text)
            except ValueError:
                if not text:
                    warnings.append("CAPTCHA_LOG_CHAT_ID empty, ignoring")
                else:
                    warnings.append(
                        f"CAPTCHA_LOG_CHAT_ID invalid ('{sanitize_log_text(text)}'), ignoring"
                    )
                chat_id = None
            if chat_id == 0:
                warnings.append("CAPTCHA_LOG_CHAT_ID invalid (0), ignoring")
                chat_id = None
            data["captcha_log_chat_id"] = chat_id

        if data.get("captcha_log_enabled") and data.get("captcha_log_chat_id") is None:
            data["captcha_log_enabled"] = False
            warnings.append(
                "CAPTCHA_LOG_ENABLED true but CAPTCHA_LOG_CHAT_ID is missing or invalid; disabled"
            )

        raw_mode = data.get("run_mode")
        if raw_mode is not None:
            mode = RUN_MODES.get(str(raw_mode).strip().lower())
            if mode is None:
                raise ValueError(
                    f"RUN_MODE invalid ('{sanitize_log_text(str(raw_mode))}'), "
                    "expected polling|webhook"
                )
            data["run_mode"] = mode

        data["config_warnings"] = warnings
        return data

    @field_validator("webhook_path")
    @classmethod
    def normalize_webhook_path(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            return "/telegram"
        return trimmed if trimmed.startswith("/") else f"/{trimmed}"

    @field_validator("webhook_secret_token")
    @classmethod
    def validate_webhook_secret(cls, value: str | None) -> str | None:
        if value is None:
            return None
        token = value.strip()
        if not WEBHOOK_SECRET_PATTERN.match(token):
            raise ValueError("WEBHOOK_SECRET_TOKEN must be 1-256 characters of A-Z, a-z, 0-9, _ or -")
        return token

    @model_validator(mode="after")
    def require_webhook_url(self) -> "Settings":
        if self.run_mode == "webhook" and not self.webhook_url:
            raise ValueError("WEBHOOK_URL is required for webhook mode")
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def full_webhook_url(self) -> str | None:
        """Webhook URL with the configured path applied."""
        if not self.webhook_url:
            return None
        return self.webhook_url.rstrip("/") + self.webhook_path

    def model_post_init(self, __context):
        """Log non-sensitive configuration values after initialization."""
        logger.info("Configuration loaded successfully")
        logger.debug(f"captcha_length: {self.captcha_length}")
        logger.debug(f"captcha_timeout_seconds: {self.captcha_timeout_seconds}")
        logger.debug(f"captcha_caption_update_seconds: {self.captcha_caption_update_seconds}")
        logger.debug(f"captcha_size: {self.captcha_width}x{self.captcha_height}")
        logger.debug(f"captcha_option_count: {self.captcha_option_count}")
        logger.debug(f"captcha_attempts: {self.captcha_attempts}")
        logger.debug(f"ban_release_enabled: {self.ban_release_enabled}")
        logger.debug(f"ban_release_after_seconds: {self.ban_release_after_seconds}")
        logger.debug(f"database_path: {self.database_path}")
        logger.debug(f"captcha_log_enabled: {self.captcha_log_enabled}")
        logger.debug(f"timezone: {self.timezone}")
        logger.debug(f"run_mode: {self.run_mode}")
        logger.debug(f"telegram_bot_token: {'***' + self.telegram_bot_token[-4:]}")  # Mask sensitive token


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    Use lru_cache to avoid re-reading environment on every access.

    Returns:
        Settings: Application configuration instance.
    """
    return Settings()
