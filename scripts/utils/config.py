import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        raise ImportError("tomli is required for Python < 3.11")

logger = logging.getLogger("config")


class ConfigManager:
    def __init__(self, config_path: Optional[str] = None):
        if config_path:
            self.config_path = Path(config_path)
        else:
            env_path = os.getenv("CONFIG_PATH")
            self.config_path = Path(env_path) if env_path else Path("../config.toml")
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                "Please copy config.toml.example to config.toml and update it."
            )
        with open(self.config_path, "rb") as f:
            self._config = tomllib.load(f)
        logger.info(f"Configuration loaded from {self.config_path}")

    def _get_nested(self, d: Dict[str, Any], path: tuple, default: Any = None) -> Any:
        for key in path:
            if isinstance(d, dict) and key in d:
                d = d[key]
            else:
                return default
        return d

    def get(self, key: str, default: Any = None) -> Any:
        path = tuple(key.split("."))
        return self._get_nested(self._config, path, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    @property
    def database_path(self) -> str:
        raw = self.get("database.path", "data/tracker.db")
        p = Path(raw)
        if not p.is_absolute():
            p = self.config_path.parent / p
        return str(p)

    @property
    def log_level(self) -> str:
        return self.get("logging.level", "INFO")

    @property
    def environment(self) -> str:
        """Deployment environment; ``APP_ENV`` wins over ``[app].environment``."""
        env = os.getenv("APP_ENV")
        if env:
            return env.strip().lower()
        return str(self.get("app.environment", "development")).strip().lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_leetcode_config(self) -> "LeetCodeConfig":
        section = self.get_section("leetcode")
        session = _norm(section.get("session")) or _norm(os.getenv("LEETCODE_SESSION"))
        csrf_token = (
            _norm(section.get("csrf_token"))
            or _norm(os.getenv("LEETCODE_CSRF_TOKEN"))
            or _norm(os.getenv("LEETCODE_CSRFTOKEN"))
        )
        if not session:
            logger.warning("LeetCode session is not set. Authenticated LeetCode requests may fail.")
        return LeetCodeConfig(
            graphql_url=section.get("graphql_url", "https://leetcode.com/graphql"),
            session=session,
            csrf_token=csrf_token,
            timeout=float(section.get("timeout", 10)),
            max_redirects=int(section.get("max_redirects", 5)),
            max_retries=int(section.get("max_retries", 2)),
            retry_delay=float(section.get("retry_delay", 1)),
        )

    def get_sync_config(self) -> "SyncConfig":
        section = self.get_section("sync")
        return SyncConfig(
            recent_limit=int(section.get("recent_limit", 20)),
            submission_delay=float(section.get("submission_delay", 2.0)),
            problem_detail_delay=float(section.get("problem_detail_delay", 0.5)),
            user_delay=float(section.get("user_delay", 5.0)),
            stale_after_hours=float(section.get("stale_after_hours", 23)),
        )

    def get_scheduler_config(self) -> "SchedulerConfig":
        section = self.get_section("scheduler")
        return SchedulerConfig(
            timezone=section.get("timezone", "UTC"),
            sync_time=section.get("sync_time", "02:00"),
            cleanup_time=section.get("cleanup_time", "03:00"),
            error_retention_days=int(section.get("error_retention_days", 30)),
        )

    def get_crawler_config(self, crawler_name: str) -> "CrawlerHttpConfig":
        _FIELDS = ("user_agent", "proxy", "http_proxy", "https_proxy", "socks5_proxy")
        global_section = self._config.get("crawler", {})
        per_crawler = global_section.get(crawler_name, {}) if isinstance(global_section, dict) else {}

        merged = {}
        for field in _FIELDS:
            value = _norm(per_crawler.get(field)) if isinstance(per_crawler, dict) else None
            if value is None:
                value = _norm(global_section.get(field))
            merged[field] = value

        proxy_fields = ("proxy", "http_proxy", "https_proxy", "socks5_proxy")
        for field in proxy_fields:
            if merged[field] is not None:
                _validate_proxy_url(merged[field])

        return CrawlerHttpConfig(**merged)


def _norm(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s if s else None


@dataclass
class LeetCodeConfig:
    graphql_url: str = "https://leetcode.com/graphql"
    session: Optional[str] = None
    csrf_token: Optional[str] = None
    timeout: float = 10.0
    max_redirects: int = 5
    max_retries: int = 2
    retry_delay: float = 1.0


@dataclass
class SyncConfig:
    recent_limit: int = 20
    submission_delay: float = 2.0
    problem_detail_delay: float = 0.5
    user_delay: float = 5.0
    stale_after_hours: float = 23


@dataclass
class SchedulerConfig:
    timezone: str = "UTC"
    sync_time: str = "02:00"
    cleanup_time: str = "03:00"
    error_retention_days: int = 30

    @staticmethod
    def parse_time(value: str) -> tuple:
        hour, _, minute = value.partition(":")
        hour_i, minute_i = int(hour), int(minute or 0)
        if not (0 <= hour_i <= 23 and 0 <= minute_i <= 59):
            raise ValueError(f"Invalid time of day '{value}', expected HH:MM")
        return hour_i, minute_i


_VALID_PROXY_SCHEMES = {"http", "https", "socks5", "socks5h"}


def _validate_proxy_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in _VALID_PROXY_SCHEMES:
        raise ValueError(
            f"Invalid proxy scheme '{parsed.scheme}' in '{url}'. "
            f"Must be one of: {', '.join(sorted(_VALID_PROXY_SCHEMES))}"
        )
    if not parsed.hostname:
        raise ValueError(f"Proxy URL missing host: '{url}'")


@dataclass(frozen=True)
class CrawlerHttpConfig:
    user_agent: Optional[str] = None
    proxy: Optional[str] = None
    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    socks5_proxy: Optional[str] = None

    def resolve_proxy(self, scheme: str = "https") -> Optional[str]:
        if scheme not in ("http", "https"):
            raise ValueError(f"Invalid scheme '{scheme}', must be 'http' or 'https'")
        specific = self.http_proxy if scheme == "http" else self.https_proxy
        return specific or self.socks5_proxy or self.proxy or None


_config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    global _config
    if _config is None:
        _config = ConfigManager()
    return _config


def set_config(config: Optional[ConfigManager]) -> None:
    """Replace the process-wide config (used by the CLI ``--config`` flag and tests)."""
    global _config
    _config = config
