"""
Shelfsignal Settings
====================

Every tunable comes from the process environment, optionally seeded from a
`.env` file at the repository root (existing variables win).

Tracking client:
    TRACKING_INGESTION_URL          ingestion API root (http://localhost:8000)
    TRACKING_SYNC_INTERVAL_MINUTES  periodic sync cadence (5)
    TRACKING_REQUEST_TIMEOUT        seconds per submitted item (5.0)
    TRACKING_MAX_ATTEMPTS           failures before dead-letter, 0 = never (10)
    TRACKING_RETRY_BASE_DELAY       backoff base, seconds (30)
    TRACKING_RETRY_MAX_DELAY        backoff ceiling, seconds (3600)

Local event store:
    REDIS_URL, CACHE_PREFIX (shelfsignal), STORAGE_MEMORY_ONLY

Ingestion / sentiment database:
    DATABASE_HOST, DATABASE_PORT, DATABASE_NAME, DATABASE_USER, DATABASE_PASSWORD,
    DATABASE_POOL_MIN (2), DATABASE_POOL_MAX (10),
    DATABASE_CONNECT_TIMEOUT (10), DATABASE_SSL_MODE (prefer)

HTTP server:
    API_HOST (0.0.0.0), API_PORT (8000), API_RELOAD, CORS_ORIGINS (comma-separated)

Logging:
    LOG_LEVEL, LOG_JSON, LOG_FILE, LOG_MODULE_LEVELS
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from dotenv import load_dotenv

DOTENV_PATH = Path(__file__).resolve().parents[2] / ".env"

if DOTENV_PATH.is_file():
    load_dotenv(DOTENV_PATH, override=False)

_TRUTHY = {"1", "true", "yes", "on"}


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def env_value(key: str, default: Any = None, cast: Callable[[str], Any] = str) -> Any:
    """
    Read and convert one environment variable.

    Unset or blank variables yield `default` unconverted. A value that
    `cast` rejects raises ValueError naming the variable.
    """
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{key}={raw!r} is not a valid {getattr(cast, '__name__', 'value')}")


def _from_env(key: str, default: Any = None, cast: Callable[[str], Any] = str):
    """dataclass field read from the environment at construction time."""
    return field(default_factory=lambda: env_value(key, default, cast))


# =============================================================================
# SECTIONS
# =============================================================================

@dataclass
class TrackingConfig:
    """Engagement tracking client: sync cadence, HTTP timeout and retry policy."""

    ingestion_url: str = _from_env("TRACKING_INGESTION_URL", "http://localhost:8000")
    sync_interval_minutes: float = _from_env("TRACKING_SYNC_INTERVAL_MINUTES", 5.0, float)
    request_timeout: float = _from_env("TRACKING_REQUEST_TIMEOUT", 5.0, float)

    max_attempts: int = _from_env("TRACKING_MAX_ATTEMPTS", 10, int)
    retry_base_delay: float = _from_env("TRACKING_RETRY_BASE_DELAY", 30.0, float)
    retry_max_delay: float = _from_env("TRACKING_RETRY_MAX_DELAY", 3600.0, float)

    def __post_init__(self):
        problems = []
        if self.sync_interval_minutes <= 0:
            problems.append("sync_interval_minutes must be > 0")
        if self.request_timeout <= 0:
            problems.append("request_timeout must be > 0")
        if self.max_attempts < 0:
            problems.append("max_attempts must be >= 0")
        if self.retry_base_delay > self.retry_max_delay:
            problems.append("retry_base_delay must not exceed retry_max_delay")
        if problems:
            raise ValueError("Invalid tracking config: " + "; ".join(problems))

    @property
    def attempt_limit(self) -> Optional[int]:
        """Dead-letter threshold for the ledger; 0 in the environment means no limit."""
        return self.max_attempts or None


@dataclass
class StorageConfig:
    """Where queued events live between syncs."""

    redis_url: Optional[str] = _from_env("REDIS_URL")
    prefix: str = _from_env("CACHE_PREFIX", "shelfsignal")
    memory_only: bool = _from_env("STORAGE_MEMORY_ONLY", False, _parse_bool)


@dataclass
class DatabaseConfig:
    """Postgres used by the ingestion routes and the threshold tables."""

    host: str = _from_env("DATABASE_HOST", "localhost")
    port: int = _from_env("DATABASE_PORT", 5432, int)
    name: str = _from_env("DATABASE_NAME", "shelfsignal")
    user: str = _from_env("DATABASE_USER", "postgres")
    password: str = _from_env("DATABASE_PASSWORD", "")

    pool_min_size: int = _from_env("DATABASE_POOL_MIN", 2, int)
    pool_max_size: int = _from_env("DATABASE_POOL_MAX", 10, int)
    connect_timeout: int = _from_env("DATABASE_CONNECT_TIMEOUT", 10, int)
    ssl_mode: str = _from_env("DATABASE_SSL_MODE", "prefer")

    def __post_init__(self):
        if self.pool_max_size < 1:
            raise ValueError("DATABASE_POOL_MAX must be at least 1")
        if not 0 <= self.pool_min_size <= self.pool_max_size:
            raise ValueError(
                f"DATABASE_POOL_MIN ({self.pool_min_size}) must be between 0 and "
                f"DATABASE_POOL_MAX ({self.pool_max_size})"
            )

    @property
    def connection_dict(self) -> dict:
        """Keyword arguments for psycopg2.connect / the connection pool."""
        return dict(
            host=self.host,
            port=self.port,
            dbname=self.name,
            user=self.user,
            password=self.password,
            sslmode=self.ssl_mode,
            connect_timeout=self.connect_timeout,
        )


@dataclass
class ApiConfig:
    """Ingestion / sentiment HTTP server."""

    host: str = _from_env("API_HOST", "0.0.0.0")
    port: int = _from_env("API_PORT", 8000, int)
    reload: bool = _from_env("API_RELOAD", False, _parse_bool)
    extra_cors_origins: str = _from_env("CORS_ORIGINS", "")

    @property
    def cors_origins(self) -> List[str]:
        """Local front-end dev servers plus the comma-separated CORS_ORIGINS."""
        origins = [f"http://{host}:{port}" for host in ("localhost", "127.0.0.1") for port in (3000, 5173)]
        origins.extend(o.strip() for o in self.extra_cors_origins.split(",") if o.strip())
        return origins


@dataclass
class LoggingConfig:
    """Handed to configure_logging()."""

    level: str = _from_env("LOG_LEVEL", "INFO")
    json_logs: bool = _from_env("LOG_JSON", False, _parse_bool)
    log_file: Optional[str] = _from_env("LOG_FILE")
    module_levels: Optional[str] = _from_env("LOG_MODULE_LEVELS")


@dataclass
class Settings:
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    app_name: str = "shelfsignal"
    app_version: str = "0.1.0"


_settings: Optional[Settings] = None


def get_settings(force_reload: bool = False) -> Settings:
    """
    Process-wide Settings, built on first use.

    Args:
        force_reload: Rebuild from the current environment (tests patch os.environ)
    """
    global _settings
    if force_reload or _settings is None:
        _settings = Settings()
    return _settings
