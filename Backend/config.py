import os
from dataclasses import dataclass

from dotenv import load_dotenv

from app_utils.constants import DEFAULT_MERGE_THRESHOLD
from errors import ConfigError

MAX_MERGE_THRESHOLD = 10000.0  # meters


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./civic_tickets.db"
    merge_threshold: float = DEFAULT_MERGE_THRESHOLD
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 10.0
    statement_timeout_ms: int = 5000
    geocode_enabled: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url:
            raise ConfigError("DATABASE_URL is empty")
        if not 0 < self.merge_threshold <= MAX_MERGE_THRESHOLD:
            raise ConfigError(
                f"MERGE_THRESHOLD_METERS must be in (0, {MAX_MERGE_THRESHOLD:g}], got {self.merge_threshold}"
            )
        if self.pool_timeout <= 0:
            raise ConfigError("DB_POOL_TIMEOUT must be positive")


def _get(env, name, cast, default):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name}={raw!r} is not a valid {cast.__name__}")


def _bool(raw):
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


_bool.__name__ = "bool"


def load_settings(env=None):
    """
    Read settings from the environment (after loading .env).
    Pass `env` to read from a plain dict instead, e.g. in tests.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    defaults = Settings()
    return Settings(
        database_url=_get(env, "DATABASE_URL", str, defaults.database_url),
        merge_threshold=_get(env, "MERGE_THRESHOLD_METERS", float, defaults.merge_threshold),
        pool_size=_get(env, "DB_POOL_SIZE", int, defaults.pool_size),
        max_overflow=_get(env, "DB_MAX_OVERFLOW", int, defaults.max_overflow),
        pool_timeout=_get(env, "DB_POOL_TIMEOUT", float, defaults.pool_timeout),
        statement_timeout_ms=_get(env, "DB_STATEMENT_TIMEOUT_MS", int, defaults.statement_timeout_ms),
        geocode_enabled=_get(env, "GEOCODE_ENABLED", _bool, defaults.geocode_enabled),
        log_level=_get(env, "LOG_LEVEL", str, defaults.log_level).upper(),
    )
