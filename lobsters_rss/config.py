"""
Runtime configuration for the scored feed service.

Configuration is an immutable value built once at startup and handed to each
component's constructor.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when an environment value cannot be converted"""
    pass


@dataclass(frozen=True)
class FeedConfig:
    """Service configuration"""
    # Upstream feed
    feed_url: str = "https://lobste.rs/rss"
    feed_title: str = "Lobsters"
    feed_link: str = "https://lobste.rs"

    # Filtering
    minimum_score: int = 10

    # Caching
    cache_key: str = "lobsters-rss-feed"
    cache_max_age: int = 1800  # 30 minutes
    warm_interval_seconds: int = 900

    # Politeness towards the score endpoint (seconds)
    rate_limit_delay: float = 0.2
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 30.0

    # Paths
    database_path: str = "data/feed_cache.db"
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.cache_max_age <= 0:
            raise ConfigError("cache_max_age must be positive")
        if self.rate_limit_delay < 0 or self.retry_delay < 0:
            raise ConfigError("delays must not be negative")

    def with_overrides(self, **changes: Any) -> "FeedConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def max_backoff_seconds(self) -> float:
        """Worst-case total backoff spent on a single score lookup."""
        return sum(self.retry_delay * (2 ** i) for i in range(self.max_retries))


def _env(name: str, convert: Callable[[str], Any], default: Any) -> Any:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except ValueError as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r}") from e


def _millis(raw: str) -> float:
    return float(raw) / 1000.0


def load_config(env_file: Optional[str] = None) -> FeedConfig:
    """Load configuration from environment (and an optional .env file)"""
    load_dotenv(env_file)
    defaults = FeedConfig()
    return FeedConfig(
        feed_url=_env('FEED_URL', str, defaults.feed_url),
        feed_title=_env('FEED_TITLE', str, defaults.feed_title),
        feed_link=_env('FEED_LINK', str, defaults.feed_link),
        minimum_score=_env('MINIMUM_SCORE', int, defaults.minimum_score),
        cache_key=_env('CACHE_KEY', str, defaults.cache_key),
        cache_max_age=_env('CACHE_MAX_AGE', int, defaults.cache_max_age),
        warm_interval_seconds=_env('WARM_INTERVAL_SECONDS', int, defaults.warm_interval_seconds),
        rate_limit_delay=_env('RATE_LIMIT_DELAY_MS', _millis, defaults.rate_limit_delay),
        max_retries=_env('MAX_RETRIES', int, defaults.max_retries),
        retry_delay=_env('RETRY_DELAY_MS', _millis, defaults.retry_delay),
        request_timeout=_env('REQUEST_TIMEOUT', float, defaults.request_timeout),
        database_path=_env('DATABASE_PATH', str, defaults.database_path),
        log_dir=_env('LOG_DIR', str, defaults.log_dir),
        log_level=_env('LOG_LEVEL', str, defaults.log_level),
        host=_env('HOST', str, defaults.host),
        port=_env('PORT', int, defaults.port),
    )
