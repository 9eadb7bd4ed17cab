"""
Entitlements Engine Configuration

All settings are read from environment variables once at import time.
Engines take explicit constructor arguments that override these defaults,
so tests never need to touch the environment.
"""

from __future__ import annotations

import logging
import os

from .entitlement_exceptions import ConfigurationError

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    """Read a non-negative integer setting, raising ConfigurationError if malformed."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var},
        ) from exc
    if value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var},
        )
    return value


def _get_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(
        f"{env_var} must be a boolean flag, got {raw!r}",
        details={"env_var": env_var},
    )


def _get_log_level(env_var: str, default: str) -> str:
    level = os.getenv(env_var, default).strip().upper() or default
    if level not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            f"{env_var} must be one of {', '.join(VALID_LOG_LEVELS)}, got {level!r}",
            details={"env_var": env_var},
        )
    return level


ENVIRONMENT = os.getenv("ENTITLEMENTS_ENVIRONMENT", "development").strip() or "development"
LOG_LEVEL = _get_log_level("ENTITLEMENTS_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("ENTITLEMENTS_LOG_FILE", "").strip()
METRICS_ENABLED = _get_bool("ENTITLEMENTS_METRICS_ENABLED", True)

# Owner emergency withdrawal requires the distributor to have been paused this long
EMERGENCY_WITHDRAW_BUFFER_SECONDS = _get_int(
    "ENTITLEMENTS_EMERGENCY_WITHDRAW_BUFFER_SECONDS", 72 * 3600
)

# Width of a published Merkle root in bytes
MERKLE_ROOT_BYTES = 32
