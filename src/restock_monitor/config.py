"""
Configuration for the restock monitor.

This module defines the configuration dataclasses (monitoring cadence,
detection backoff, Telegram delivery, browser, secret storage, logging and
notification retry), plus JSON load/save and startup validation.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional, Union, get_args, get_origin
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigValidationError

MAX_COOLDOWN_MS = 30 * 60 * 1000
MIN_POLL_INTERVAL_MS = 5_000
DEFAULT_HOME = Path.home() / ".restock_monitor"

ENV_MASTER_PASSWORD = "RESTOCK_MASTER_PASSWORD"
ENV_TELEGRAM_BOT_TOKEN = "TELEGRAM_BOT_TOKEN"
ENV_TELEGRAM_CHAT_ID = "TELEGRAM_CHAT_ID"


@dataclass
class MonitoringConfig:
    """Watch list and poll cadence."""

    urls: list[str] = field(default_factory=list)
    base_poll_interval_ms: int = 60_000
    jitter_ms: int = 15_000
    min_poll_interval_ms: int = 5_000
    context_rotation_cycles: int = 10
    navigation_timeout_ms: int = 30_000
    history_file: str = "logs/stock_history.jsonl"
    max_urls: int = 5


@dataclass
class DetectionConfig:
    """Cooldown and backoff behaviour after detection events."""

    cooldown_ms: int = 300_000
    max_retries: int = 3
    max_cooldown_ms: int = MAX_COOLDOWN_MS
    min_content_length: int = 500
    # Single-shot policy: stop after this many consecutive failures.
    # None keeps the engine running indefinitely.
    hard_stop_after: Optional[int] = None


@dataclass
class TelegramConfig:
    """Telegram notification channel configuration."""

    bot_token: str = ""
    chat_id: str = ""
    alert_cooldown_ms: int = 600_000
    daily_digest_hour: int = 9
    timezone: str = "Asia/Singapore"
    # Sold-out transitions are always logged and recorded; this also sends them
    notify_sold_out: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


@dataclass
class RetryConfig:
    """Notification delivery retry behaviour."""

    max_retries: int = 2
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0


@dataclass
class BrowserConfig:
    """Page driver launch options."""

    headless: bool = True
    # "session" tags the proxy username with the identity's session id,
    # "static" passes the proxy through unchanged
    proxy_provider: str = "session"


@dataclass
class StorageConfig:
    """Locations of the encrypted secret store."""

    accounts_file: str = str(DEFAULT_HOME / "accounts.enc")
    sessions_dir: str = str(DEFAULT_HOME / "sessions")
    session_check_url: str = "https://member.lazada.sg/user/login"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    file: Optional[str] = "logs/monitor.log"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main configuration combining all sub-configurations."""

    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


VALID_LOG_LEVELS = ("debug", "info", "warn", "error")
VALID_OUTPUT_FORMATS = ("json", "text", "both")
VALID_PROXY_PROVIDERS = ("session", "static")

_TYPE_NAMES = {
    bool: "true or false",
    int: "an integer",
    float: "a number",
    str: "a string",
}


def validate_config(config: SystemConfig) -> None:
    """
    Validate a configuration before the engine starts.

    Raises:
        ConfigValidationError: On the first invalid setting found
    """
    _check_field_types(config)

    monitoring = config.monitoring
    if not isinstance(monitoring.urls, list):
        _invalid("monitoring.urls", "must be a list")
    if len(monitoring.urls) > monitoring.max_urls:
        _invalid(
            "monitoring.urls",
            f"at most {monitoring.max_urls} URLs may be watched",
        )
    for url in monitoring.urls:
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            _invalid("monitoring.urls", f"not an http(s) URL: {url!r}")
    if monitoring.base_poll_interval_ms <= 0:
        _invalid("monitoring.base_poll_interval_ms", "must be positive")
    if monitoring.jitter_ms < 0:
        _invalid("monitoring.jitter_ms", "must not be negative")
    if monitoring.min_poll_interval_ms < MIN_POLL_INTERVAL_MS:
        _invalid("monitoring.min_poll_interval_ms", f"must be at least {MIN_POLL_INTERVAL_MS}")
    if monitoring.context_rotation_cycles < 1:
        _invalid("monitoring.context_rotation_cycles", "must be at least 1")
    if monitoring.navigation_timeout_ms <= 0:
        _invalid("monitoring.navigation_timeout_ms", "must be positive")

    detection = config.detection
    if detection.cooldown_ms <= 0:
        _invalid("detection.cooldown_ms", "must be positive")
    if detection.max_retries < 0:
        _invalid("detection.max_retries", "must not be negative")
    if detection.max_cooldown_ms < detection.cooldown_ms:
        _invalid("detection.max_cooldown_ms", "must be >= detection.cooldown_ms")
    if detection.max_cooldown_ms > MAX_COOLDOWN_MS:
        _invalid("detection.max_cooldown_ms", f"must not exceed {MAX_COOLDOWN_MS}")
    if detection.hard_stop_after is not None and detection.hard_stop_after < 1:
        _invalid("detection.hard_stop_after", "must be at least 1 when set")

    telegram = config.telegram
    if not 0 <= telegram.daily_digest_hour <= 23:
        _invalid("telegram.daily_digest_hour", "must be between 0 and 23")
    if telegram.alert_cooldown_ms < 0:
        _invalid("telegram.alert_cooldown_ms", "must not be negative")
    try:
        ZoneInfo(telegram.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigValidationError(
            code="invalid_config",
            message=f'Config error: "telegram.timezone" unknown zone {telegram.timezone!r}',
            details={"field": "telegram.timezone"},
        ) from e

    if config.logging.level not in VALID_LOG_LEVELS:
        _invalid("logging.level", f"must be one of: {', '.join(VALID_LOG_LEVELS)}")
    if config.logging.output_format not in VALID_OUTPUT_FORMATS:
        _invalid(
            "logging.output_format",
            f"must be one of: {', '.join(VALID_OUTPUT_FORMATS)}",
        )

    if config.browser.proxy_provider not in VALID_PROXY_PROVIDERS:
        _invalid(
            "browser.proxy_provider",
            f"must be one of: {', '.join(VALID_PROXY_PROVIDERS)}",
        )


def _invalid(field_name: str, reason: str) -> None:
    raise ConfigValidationError(
        code="invalid_config",
        message=f'Config error: "{field_name}" {reason}',
        details={"field": field_name},
    )


def _check_field_types(config: SystemConfig) -> None:
    """Reject scalar settings whose JSON type does not match the dataclass field."""
    for section in fields(config):
        values = getattr(config, section.name)
        for setting in fields(values):
            expected = setting.type
            value = getattr(values, setting.name)
            if get_origin(expected) is Union:
                if value is None:
                    continue
                expected = next(arg for arg in get_args(expected) if arg is not type(None))
            if expected not in _TYPE_NAMES:
                continue
            # bool is an int subclass, and JSON integers are valid floats
            if expected is bool:
                ok = isinstance(value, bool)
            elif expected is float:
                ok = isinstance(value, (int, float)) and not isinstance(value, bool)
            else:
                ok = isinstance(value, expected) and not isinstance(value, bool)
            if not ok:
                _invalid(f"{section.name}.{setting.name}", f"must be {_TYPE_NAMES[expected]}")


def config_to_dict(config: SystemConfig) -> dict:
    """Serialize a configuration to a JSON-compatible dictionary."""
    return asdict(config)


def config_from_dict(data: dict) -> SystemConfig:
    """
    Build a configuration from a dictionary, filling gaps with defaults.

    Raises:
        ConfigValidationError: If a section is not an object or has unknown keys
    """
    sections = {
        "monitoring": MonitoringConfig,
        "detection": DetectionConfig,
        "telegram": TelegramConfig,
        "retry": RetryConfig,
        "browser": BrowserConfig,
        "storage": StorageConfig,
        "logging": LoggingConfig,
    }
    kwargs = {}
    for name, section_cls in sections.items():
        section_data = data.get(name, {})
        if not isinstance(section_data, dict):
            _invalid(name, "must be an object")
        try:
            kwargs[name] = section_cls(**section_data)
        except TypeError as e:
            raise ConfigValidationError(
                code="invalid_config",
                message=f'Config error: "{name}" {e}',
                details={"field": name},
            ) from e
    return SystemConfig(**kwargs)


def load_config(config_path: Path) -> SystemConfig:
    """
    Load and validate configuration from a JSON file.

    A missing file is replaced by the defaults, which are written to
    ``config_path`` so the user has something to edit.

    Raises:
        ConfigValidationError: If the file is not valid JSON or fails validation
    """
    if not config_path.exists():
        config = SystemConfig()
        save_config(config, config_path)
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(
            code="invalid_json",
            message=f"Config error: invalid JSON in {config_path}",
            details={"file_path": str(config_path)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigValidationError(
            code="invalid_json",
            message=f"Config error: top level of {config_path} must be an object",
            details={"file_path": str(config_path)},
        )

    config = config_from_dict(data)
    validate_config(config)
    return config


def save_config(config: SystemConfig, config_path: Path) -> None:
    """Write configuration to a JSON file, creating parent directories."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        f.write("\n")


def apply_env_overrides(config: SystemConfig) -> SystemConfig:
    """Take Telegram credentials from the environment when set."""
    bot_token = os.getenv(ENV_TELEGRAM_BOT_TOKEN, "").strip()
    chat_id = os.getenv(ENV_TELEGRAM_CHAT_ID, "").strip()
    if bot_token:
        config.telegram.bot_token = bot_token
    if chat_id:
        config.telegram.chat_id = chat_id
    return config
