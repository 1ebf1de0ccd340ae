"""
ImageGuard Configuration

Uses Pydantic Settings for environment-based configuration.
Every field can be overridden with an IMAGEGUARD_ prefixed variable
(e.g. IMAGEGUARD_MEDIA_ROOT, IMAGEGUARD_TOKEN_SECRET) or a .env file.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_BLOCKED_USER_AGENTS = [
    "wget",
    "curl",
    "python-requests",
    "python-urllib",
    "aiohttp",
    "go-http-client",
    "libwww-perl",
    "scrapy",
    "httrack",
    "bot",
    "crawler",
    "spider",
    "scraper",
    "headless",
    "phantomjs",
    "selenium",
    "puppeteer",
    "playwright",
    "webdriver",
]


@dataclass(frozen=True)
class StorageLayout:
    """
    Namespaces under the media root.

    Artifacts live apart from source assets so a purge can never
    touch product images.
    """

    ROOT: str = "watermarks"
    CACHE_DIR: str = "watermarks/cache"
    FALLBACK_DIR: str = "watermarks/fallback"

    def is_artifact_path(self, path: str) -> bool:
        """True for anything inside the artifact namespace."""
        normalized = path.strip().lstrip("/")
        return normalized == self.ROOT or normalized.startswith(self.ROOT + "/")

    def artifact_path(self, key: str, source_path: str) -> str:
        """Media-relative artifact path, e.g. watermarks/cache/<key>.jpg"""
        suffix = PurePosixPath(source_path).suffix.lower().lstrip(".")
        return f"{self.CACHE_DIR}/{key}.{suffix or 'png'}"

    def descriptor_path(self, key: str) -> str:
        return f"{self.FALLBACK_DIR}/{key}.json"


class ImageGuardConfig(BaseSettings):
    """Runtime configuration loaded from environment."""

    # Storage
    media_root: Path = Path("storage/public")

    # Token signing
    token_secret: str = "change-me"
    token_algorithm: str = "HS256"
    token_ttl_seconds: int = 24 * 60 * 60

    # Rate limiting (fixed window per ip|user-agent)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 60

    # Access policy
    blocked_user_agents: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_USER_AGENTS))
    allowed_referer_domains: List[str] = Field(default_factory=list)
    allowed_path_prefixes: List[str] = Field(
        default_factory=lambda: ["products/", "uploads/", "images/"]
    )

    # Generation
    worker_count: int = 2
    render_pool_size: int = 2
    sync_timeout_seconds: float = 10.0
    batch_size: int = 50

    # Retention
    job_retention_seconds: int = 60 * 60
    cache_retention_days: int = 7
    notification_retention_days: int = 7
    max_notifications_per_day: int = 10
    cleanup_interval_seconds: int = 60 * 60

    # HTTP caching of delivered images
    delivery_max_age: int = 3600

    log_level: str = "INFO"

    class Config:
        env_prefix = "IMAGEGUARD_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def job_retention(self) -> timedelta:
        return timedelta(seconds=self.job_retention_seconds)

    @property
    def cache_retention(self) -> timedelta:
        return timedelta(days=self.cache_retention_days)

    @property
    def notification_retention(self) -> timedelta:
        return timedelta(days=self.notification_retention_days)


@lru_cache()
def get_config() -> ImageGuardConfig:
    """Get cached configuration."""
    return ImageGuardConfig()
