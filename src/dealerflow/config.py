"""Runtime configuration read from the environment.

Every variable is optional and falls back to the engine defaults. A value
that is present but not a positive number is a startup failure rather than
a silent fallback.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from dealerflow import coordinator, fsm

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765


class ConfigError(ValueError):
    """An environment variable holds an unusable value."""


@dataclass(frozen=True)
class Settings:
    debounce_seconds: float = coordinator.DEBOUNCE_SECONDS
    debounce_max_seconds: float = coordinator.MAX_WAIT_SECONDS
    dedup_ttl_seconds: float = coordinator.DEDUP_TTL_SECONDS
    dedup_max_entries: int = coordinator.MAX_ENTRIES
    lock_ttl_seconds: float = coordinator.LOCK_TTL_SECONDS
    buffer_ttl_seconds: float = coordinator.BUFFER_TTL_SECONDS
    idle_after_minutes: float = fsm.IDLE_AFTER_MINUTES
    log_level: str = "INFO"
    port: int = DEFAULT_PORT


def _number(env: Mapping, name: str, default, cast=float):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env: Optional[Mapping] = None) -> Settings:
    """Build Settings from env (defaults to os.environ)."""
    env = os.environ if env is None else env
    defaults = Settings()
    return Settings(
        debounce_seconds=_number(env, "DEBOUNCE_SECONDS", defaults.debounce_seconds),
        debounce_max_seconds=_number(env, "DEBOUNCE_MAX_SECONDS", defaults.debounce_max_seconds),
        dedup_ttl_seconds=_number(env, "DEDUP_TTL_SECONDS", defaults.dedup_ttl_seconds),
        dedup_max_entries=_number(env, "DEDUP_MAX_ENTRIES", defaults.dedup_max_entries, int),
        lock_ttl_seconds=_number(env, "LOCK_TTL_SECONDS", defaults.lock_ttl_seconds),
        buffer_ttl_seconds=_number(env, "BUFFER_TTL_SECONDS", defaults.buffer_ttl_seconds),
        idle_after_minutes=_number(env, "IDLE_AFTER_MINUTES", defaults.idle_after_minutes),
        log_level=(env.get("LOG_LEVEL") or defaults.log_level).upper(),
        port=_number(env, "PORT", defaults.port, int),
    )


def validate_config() -> Settings:
    """Load settings at startup.

    Exits the process with a clear error if any variable is malformed, so a
    typo in the environment fails the deploy instead of the first turn.
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        print(
            f"\nFATAL: Invalid configuration:\n"
            f"  {e}\n"
            f"\nFix it in .env (local) or the deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    if settings.debounce_max_seconds < settings.debounce_seconds:
        logger.warning(
            "DEBOUNCE_MAX_SECONDS (%s) is below DEBOUNCE_SECONDS (%s), using the debounce value",
            settings.debounce_max_seconds, settings.debounce_seconds,
        )
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
