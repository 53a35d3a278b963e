from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobswipe", "jobswipe.sqlite3")
DEFAULT_FEED_URL = "https://app.ktitalentindicator.com/xml/w3.xml"
DEFAULT_LISTING_PATH = "source/job"
DEFAULT_SYNC_INTERVAL_HOURS = 12.0
DEFAULT_CACHE_TTL_SECONDS = 180.0
DEFAULT_CACHE_POOL_SIZE = 100
DEFAULT_EXCLUDE_LIMIT = 50
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

_TRUTHY = {"1", "true", "yes", "on"}


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}.") from exc


def _env_int(key: str, default: int) -> int:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}.") from exc


@dataclass(frozen=True)
class EngineSettings:
    database_path: str = DEFAULT_DB_PATH
    feed_url: str = DEFAULT_FEED_URL
    listing_path: str = DEFAULT_LISTING_PATH
    sync_interval_hours: float = DEFAULT_SYNC_INTERVAL_HOURS
    sync_enabled: bool = False
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    cache_pool_size: int = DEFAULT_CACHE_POOL_SIZE
    exclude_limit: int = DEFAULT_EXCLUDE_LIMIT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_interval_hours * 3600

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls(
            database_path=get_env("JOBSWIPE_DB_PATH") or DEFAULT_DB_PATH,
            feed_url=get_env("JOBSWIPE_FEED_URL") or DEFAULT_FEED_URL,
            listing_path=get_env("JOBSWIPE_FEED_LISTING_PATH") or DEFAULT_LISTING_PATH,
            sync_interval_hours=_env_float("JOBSWIPE_SYNC_INTERVAL_HOURS", DEFAULT_SYNC_INTERVAL_HOURS),
            sync_enabled=get_env("JOBSWIPE_SYNC_ENABLED").lower() in _TRUTHY,
            cache_ttl_seconds=_env_float("JOBSWIPE_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS),
            cache_pool_size=_env_int("JOBSWIPE_CACHE_POOL_SIZE", DEFAULT_CACHE_POOL_SIZE),
            exclude_limit=_env_int("JOBSWIPE_EXCLUDE_LIMIT", DEFAULT_EXCLUDE_LIMIT),
            host=get_env("JOBSWIPE_HOST") or DEFAULT_HOST,
            port=_env_int("JOBSWIPE_PORT", DEFAULT_PORT),
        )
