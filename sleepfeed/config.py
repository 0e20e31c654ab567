"""
Configuration management for sleepfeed.

Loads settings from an optional YAML config file, then lets environment
variables (including a local .env) override individual values.
"""
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of sleepfeed package)."""
    return Path(__file__).resolve().parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"

# Settings field -> environment variable
_ENV_VARS = {
    "env": "APP_ENV",
    "database_url": "DATABASE_URL",
    "redis_url": "REDIS_URL",
    "redis_host": "REDIS_HOST",
    "redis_port": "REDIS_PORT",
    "redis_db": "REDIS_DB",
    "redis_socket_timeout": "REDIS_SOCKET_TIMEOUT",
    "log_level": "LOG_LEVEL",
    "enable_request_logging": "ENABLE_REQUEST_LOGGING",
    "admin_enabled": "ENABLE_ADMIN_ENDPOINTS",
    "slow_query_threshold": "QUERY_COUNT_WARN_THRESHOLD",
    "ttl_following_list": "CACHE_TTL_FOLLOWING_LIST",
    "ttl_followers_list": "CACHE_TTL_FOLLOWERS_LIST",
    "ttl_following_count": "CACHE_TTL_FOLLOWING_COUNT",
    "ttl_followers_count": "CACHE_TTL_FOLLOWERS_COUNT",
    "ttl_sleep_statistics": "CACHE_TTL_SLEEP_STATISTICS",
    "ttl_social_sleep_stats": "CACHE_TTL_SOCIAL_SLEEP_STATS",
}


def _to_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


_BOOL_FIELDS = {"enable_request_logging", "admin_enabled"}
_INT_FIELDS = {
    "redis_port", "redis_db", "slow_query_threshold",
    "ttl_following_list", "ttl_followers_list", "ttl_following_count",
    "ttl_followers_count", "ttl_sleep_statistics", "ttl_social_sleep_stats",
}
_FLOAT_FIELDS = {"redis_socket_timeout"}


def _coerce(name: str, raw: Any) -> Any:
    if raw is None:
        return None
    if name in _BOOL_FIELDS:
        return _to_bool(raw)
    if name in _INT_FIELDS:
        return int(raw)
    if name in _FLOAT_FIELDS:
        return float(raw)
    return str(raw)


def normalize_database_url(url: str) -> str:
    """Heroku-style postgres:// URLs are not accepted by SQLAlchemy 2."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


@dataclass
class Settings:
    """Runtime configuration for the API, the store and the cache."""

    env: str = "development"
    database_url: str = "sqlite:///./sleepfeed.db"

    # Redis (REDIS_URL wins over host/port/db)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_socket_timeout: float = 2.0

    log_level: str = "INFO"
    enable_request_logging: Optional[bool] = None
    admin_enabled: Optional[bool] = None
    slow_query_threshold: int = 10

    # TTLs (seconds) per cache category
    ttl_following_list: int = 1800       # 30 minutes
    ttl_followers_list: int = 1800       # 30 minutes
    ttl_following_count: int = 3600      # 1 hour
    ttl_followers_count: int = 3600      # 1 hour
    ttl_sleep_statistics: int = 1800     # 30 minutes
    ttl_social_sleep_stats: int = 300    # 5 minutes

    def __post_init__(self):
        self.database_url = normalize_database_url(self.database_url)
        # Request logging and the cache admin surface default to on outside production
        if self.enable_request_logging is None:
            self.enable_request_logging = not self.is_production
        if self.admin_enabled is None:
            self.admin_enabled = not self.is_production

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        kwargs = {name: _coerce(name, value) for name, value in data.items() if name in known}
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None, use_env: bool = True) -> "Settings":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data: Dict[str, Any] = {}
        if path.exists():
            with open(path, "r") as f:
                data = (yaml.safe_load(f) or {}).get("sleepfeed", {}) or {}

        if use_env:
            for name, env_var in _ENV_VARS.items():
                value = os.getenv(env_var)
                if value is not None and value != "":
                    data[name] = value

        return cls.from_mapping(data)


# Global config instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_yaml()
    return _settings


def reset_settings() -> None:
    """Forget the cached settings (next get_settings() reloads)."""
    global _settings
    _settings = None
