"""
Centralized configuration loader for the publishing scheduler.

Loads settings from ``config/settings.yaml`` and environment variables,
providing sensible defaults when configuration files are absent.

Provides:
    - SchedulerSettings: Poller, dispatch, webhook, logging and API settings
    - get_settings(): Singleton accessor for SchedulerSettings
    - reset_settings(): Clear the cached singleton (tests, reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from cms_publisher.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of cms_publisher/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

# A publish issues several requests (authenticate, upload, publish), each
# bounded by publisher_timeout_seconds. A claim is only treated as stuck once
# it is older than this many publisher timeouts.
STUCK_TIMEOUT_MIN_FACTOR = 4


# ===========================================================================
# SCHEDULER SETTINGS
# ===========================================================================


@dataclass
class SchedulerSettings:
    """
    Global scheduler settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    defaults. Environment variables override YAML values.

    Usage::

        settings = get_settings()
        loop = SchedulerLoop(coordinator, db, poll_interval=settings.poll_interval_seconds)
    """

    # Poller
    poll_interval_seconds: float = 60.0
    max_concurrency: int = 5
    recovery_interval_cycles: int = 10

    # Dispatch
    max_attempts: int = 3
    backoff_base_seconds: float = 300.0  # 5 minutes before the second attempt
    backoff_max_seconds: float = 3600.0
    stuck_timeout_minutes: int = 10

    # Webhooks
    webhook_retry_count: int = 3
    webhook_retry_delay_ms: int = 1000
    webhook_timeout_seconds: float = 10.0

    # Publishers
    publisher_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Control API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError(
                f"poll_interval_seconds must be positive, got {self.poll_interval_seconds}"
            )
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be at least 1, got {self.max_attempts}"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError(
                f"max_concurrency must be at least 1, got {self.max_concurrency}"
            )
        min_stuck_seconds = STUCK_TIMEOUT_MIN_FACTOR * self.publisher_timeout_seconds
        if self.stuck_timeout_minutes * 60 < min_stuck_seconds:
            raise ConfigurationError(
                f"stuck_timeout_minutes ({self.stuck_timeout_minutes}) must be at least "
                f"{STUCK_TIMEOUT_MIN_FACTOR}x publisher_timeout_seconds "
                f"({self.publisher_timeout_seconds}s), otherwise a slow publish can be "
                f"released while it is still running"
            )

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "SchedulerSettings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated SchedulerSettings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or an environment override has an invalid value.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        known = {f.name for f in fields(cls)}

        # YAML may group keys under sections (scheduler:, webhooks:, ...)
        flat: Dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, dict):
                flat.update({k: v for k, v in value.items() if k in known})
            elif key in known:
                flat[key] = value
            else:
                logger.warning("Ignoring unknown settings key '%s' in %s", key, path)

        for env_key, (attr_name, cast_fn) in ENV_OVERRIDES.items():
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            try:
                flat[attr_name] = cast_fn(env_val)
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc

        return cls(**flat)


# Environment variable -> (attribute, cast)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "SCHEDULER_POLL_INTERVAL": ("poll_interval_seconds", float),
    "SCHEDULER_MAX_CONCURRENCY": ("max_concurrency", int),
    "SCHEDULER_MAX_ATTEMPTS": ("max_attempts", int),
    "SCHEDULER_BACKOFF_BASE": ("backoff_base_seconds", float),
    "SCHEDULER_BACKOFF_MAX": ("backoff_max_seconds", float),
    "SCHEDULER_STUCK_TIMEOUT_MINUTES": ("stuck_timeout_minutes", int),
    "WEBHOOK_RETRY_COUNT": ("webhook_retry_count", int),
    "WEBHOOK_RETRY_DELAY_MS": ("webhook_retry_delay_ms", int),
    "WEBHOOK_TIMEOUT": ("webhook_timeout_seconds", float),
    "LOG_LEVEL": ("log_level", str),
    "LOG_DIR": ("log_dir", str),
    "API_HOST": ("api_host", str),
    "API_PORT": ("api_port", int),
}


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[SchedulerSettings] = None


def get_settings() -> SchedulerSettings:
    """
    Get the global SchedulerSettings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = SchedulerSettings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached SchedulerSettings singleton."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing.

    Returns:
        Dict mapping variable name to presence status.

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status = {var: bool(os.environ.get(var)) for var in REQUIRED_ENV_VARS}
    missing = [var for var, present in status.items() if not present]

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    return status


__all__ = [
    "SchedulerSettings",
    "ENV_OVERRIDES",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "PROJECT_ROOT",
]
