import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_region_urls(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate comma or whitespace separated values.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part in seen:
            continue
        seen.add(part)
        result.append(part)
    return result


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via ``RATELIMIT_*`` environment variables
    or a .env file.
    """

    # Single-region Redis
    redis_url: str = "redis://localhost:6379/0"

    # Multi-region: one Redis URL per region. When set, redis_url is ignored.
    region_urls: Annotated[list[str], NoDecode] = []

    # All keys in Redis are prefixed with this
    prefix: str = "@ratelimit"

    # Fail open after this many milliseconds (None disables the timeout)
    timeout_ms: int | None = None

    # Multi-region: drop a region from the decision after this many milliseconds
    # (None uses half of timeout_ms)
    region_timeout_ms: int | None = None

    analytics_enabled: bool = True
    analytics_retention_days: int = 90

    # Process-local fast path for identifiers known to be blocked
    ephemeral_cache_enabled: bool = True

    # Use EVALSHA with cached script hashes instead of sending scripts each time
    cache_scripts: bool = True

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("region_urls", mode="before")
    @classmethod
    def decode_region_urls(cls, v: Any) -> list[str]:
        return _parse_region_urls(v)

    @field_validator("timeout_ms", "region_timeout_ms")
    @classmethod
    def validate_timeout_positive(cls, v: int | None) -> int | None:
        """Validate timeout is positive when set."""
        if v is not None and v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("analytics_retention_days")
    @classmethod
    def validate_retention_positive(cls, v: int) -> int:
        """Validate analytics retention is at least one day."""
        if v < 1:
            raise ValueError("analytics_retention_days must be at least 1")
        return v

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prefix must not be empty")
        return v

    model_config = SettingsConfigDict(env_prefix="RATELIMIT_", env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
