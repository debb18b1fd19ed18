"""
Centralized configuration with environment variable overrides.

Scheduling policy, provider limits, and Graph credentials are all
configurable here. Nothing is hardcoded in the resolver or orchestrator.
"""

import logging
import os
import re
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag (1/0, true/false, yes/no, on/off)."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot generation and availability policy."""

    slot_step_minutes: int = _safe_int("SLOT_STEP_MINUTES", "30")
    default_day_start: str = os.getenv("DEFAULT_DAY_START", "09:00")
    default_day_end: str = os.getenv("DEFAULT_DAY_END", "17:00")
    business_timezone: str = os.getenv("BUSINESS_TIMEZONE", "Europe/Copenhagen")
    exclude_today: bool = _safe_bool("EXCLUDE_TODAY", "false")
    tentative_blocks: bool = _safe_bool("TENTATIVE_BLOCKS", "true")
    max_slots_returned: int = _safe_int("MAX_SLOTS_RETURNED", "20")
    lookahead_days: int = _safe_int("LOOKAHEAD_DAYS", "14")


@dataclass(frozen=True)
class ProviderConfig:
    """Limits applied to every call against the calendar backend."""

    max_concurrency: int = _safe_int("MAX_PROVIDER_CONCURRENCY", "8")
    timeout_seconds: float = _safe_float("PROVIDER_TIMEOUT_SECONDS", "10.0")
    read_retries: int = _safe_int("PROVIDER_READ_RETRIES", "2")
    retry_backoff_seconds: float = _safe_float("PROVIDER_RETRY_BACKOFF_SECONDS", "0.2")


@dataclass(frozen=True)
class GraphConfig:
    """Microsoft Graph application credentials."""

    tenant_id: str = os.getenv("AZURE_TENANT_ID", "")
    client_id: str = os.getenv("AZURE_CLIENT_ID", "")
    client_secret: str = os.getenv("AZURE_CLIENT_SECRET", "")
    api_base: str = os.getenv("GRAPH_API_BASE", "https://graph.microsoft.com/v1.0")

    @property
    def is_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass(frozen=True)
class NotificationConfig:
    """Customer notification settings."""

    enabled: bool = _safe_bool("NOTIFICATIONS_ENABLED", "true")
    sender: str = os.getenv("NOTIFICATION_SENDER", "")
    organization_name: str = os.getenv("ORGANIZATION_NAME", "Your Booking Team")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    settings_file: str = os.getenv("SETTINGS_FILE", "config/settings.json")
    app_name: str = os.getenv("APP_NAME", "brand-booking")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    sched = config.scheduling
    if not 1 <= sched.slot_step_minutes <= 24 * 60:
        raise ValueError(
            f"SLOT_STEP_MINUTES must be between 1 and 1440, got {sched.slot_step_minutes}"
        )
    for name, value in [
        ("DEFAULT_DAY_START", sched.default_day_start),
        ("DEFAULT_DAY_END", sched.default_day_end),
    ]:
        if not _HHMM.match(value):
            raise ValueError(f"{name} must be HH:MM, got {value!r}")
    if sched.default_day_start >= sched.default_day_end:
        raise ValueError(
            "DEFAULT_DAY_START must be before DEFAULT_DAY_END, "
            f"got {sched.default_day_start} - {sched.default_day_end}"
        )
    if sched.max_slots_returned < 1:
        raise ValueError(
            f"MAX_SLOTS_RETURNED must be >= 1, got {sched.max_slots_returned}"
        )
    if sched.lookahead_days < 1:
        raise ValueError(f"LOOKAHEAD_DAYS must be >= 1, got {sched.lookahead_days}")

    prov = config.provider
    if prov.max_concurrency < 1:
        raise ValueError(
            f"MAX_PROVIDER_CONCURRENCY must be >= 1, got {prov.max_concurrency}"
        )
    if prov.timeout_seconds <= 0:
        raise ValueError(
            f"PROVIDER_TIMEOUT_SECONDS must be > 0, got {prov.timeout_seconds}"
        )
    if prov.read_retries < 0:
        raise ValueError(f"PROVIDER_READ_RETRIES must be >= 0, got {prov.read_retries}")
    if prov.retry_backoff_seconds < 0:
        raise ValueError(
            "PROVIDER_RETRY_BACKOFF_SECONDS must be >= 0, "
            f"got {prov.retry_backoff_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
