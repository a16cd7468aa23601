"""Proxy settings loaded from the environment.

Values come from environment variables or a ``.env`` file, matched
case-insensitively (``OMEKA_API``, ``QUERY_LIMIT``, ...). ``get_settings``
builds them once per process; tests construct ``Settings`` directly.
"""

import re
from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment stage; production forces JSON logs."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """Every tunable of the proxy.

    Groups: application, logging, server/CORS, Redis, Omeka-S upstream,
    query & facet limits, mirror fetching and the invalidation loop.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Application & logging
    # ========================================
    app_env: Environment = Field(default=Environment.DEVELOPMENT)
    app_name: str = Field(default="Omeka Proxy", description="Reported in logs and User-Agent")
    app_version: str = Field(default="0.1.0")
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="json or console; production always logs JSON",
    )

    # ========================================
    # Server & CORS
    # ========================================
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    origin: str = Field(
        default="/^https?://localhost:[0-9]{1,5}$/",
        description="Allowed CORS origins, comma-separated; /regex/ entries allowed",
    )

    # ========================================
    # Redis
    # ========================================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # ========================================
    # Omeka-S
    # ========================================
    omeka_api: str = Field(
        default="https://example.org/omeka/api",
        description="Base URL of the Omeka-S REST API",
    )
    omeka_site: str = Field(
        default="1",
        description="Omeka-S site id used for site page lookups",
    )
    omeka_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Upstream request timeout in seconds",
    )
    featured_item_set: int | None = Field(
        default=None,
        description="Item set holding featured items",
    )
    heroes_item_set: int | None = Field(
        default=None,
        description="Item set holding hero images",
    )

    # ========================================
    # Query & facets
    # ========================================
    page_limit: int = Field(
        default=100,
        ge=1,
        description="Page size used when mirroring the whole collection",
    )
    query_limit: int = Field(
        default=20,
        ge=1,
        description="Page size for unfiltered listings",
    )
    filtered_query_limit: int = Field(
        default=1000,
        ge=1,
        description="Page size once any filter, search or parent scope is present",
    )
    part_category_id: int = Field(
        default=4561,
        description="Category id marking items that are parts/issues of a larger work",
    )

    # ========================================
    # Mirror
    # ========================================
    mirror_page_delay: float = Field(
        default=0.1,
        ge=0,
        description="Pause between mirror pages in seconds",
    )
    mirror_lock_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before a stalled mirror fetch stops blocking other callers",
    )

    # ========================================
    # Invalidation
    # ========================================
    invalidation_enabled: bool = Field(
        default=True,
        description="Run the upstream change-detection loop",
    )
    invalidation_interval: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound in seconds between change-detection polls",
    )
    invalidation_batch: int = Field(
        default=20,
        ge=1,
        description="Number of most recently modified items requested per poll",
    )

    # ========================================
    # Derived Properties
    # ========================================
    @property
    def is_development(self) -> bool:
        return self.app_env == Environment.DEVELOPMENT

    @property
    def use_json_logs(self) -> bool:
        return self.log_format == LogFormat.JSON or self.app_env == Environment.PRODUCTION

    @property
    def origin_patterns(self) -> list[str]:
        """CORS origins as regular expressions.

        Plain entries are escaped, ``/.../`` entries are used verbatim
        without their slashes. Commas inside a slash-delimited entry do not
        split it.
        """
        patterns = []
        for entry in re.findall(r"(?:/.*?/|[^,])+", self.origin):
            entry = entry.strip()
            if not entry:
                continue
            if len(entry) > 1 and entry.startswith("/") and entry.endswith("/"):
                patterns.append(entry[1:-1])
            else:
                patterns.append(f"^{re.escape(entry)}$")
        return patterns


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()
