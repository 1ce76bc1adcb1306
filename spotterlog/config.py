"""
Configuration management for SpotterLog.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class OpenSkyConfig:
    """OpenSky API configuration."""
    base_url: str = os.getenv('OPENSKY_BASE_URL', 'https://opensky-network.org/api')
    client_id: Optional[str] = os.getenv('OPENSKY_CLIENT_ID') or None
    client_secret: Optional[str] = os.getenv('OPENSKY_CLIENT_SECRET') or None

    # Fixed, not caller-configurable
    fetch_timeout_seconds: float = 15.0
    metadata_timeout_seconds: float = 5.0

    @property
    def is_authenticated(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///spotterlog.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def is_memory(self) -> bool:
        return self.url in ('sqlite://', 'sqlite:///:memory:')


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Token bucket policies.

    The OpenSky quota is conservative relative to the ~400 daily credits
    granted to authenticated clients, leaving headroom for manual use.
    """
    opensky_capacity: int = int(os.getenv('OPENSKY_DAILY_QUOTA', '300'))
    opensky_window_seconds: float = SECONDS_PER_DAY

    user_capacity: int = int(os.getenv('RATE_LIMIT_USER_PER_HOUR', '100'))
    user_window_seconds: float = SECONDS_PER_HOUR

    anonymous_capacity: int = int(os.getenv('RATE_LIMIT_ANON_PER_HOUR', '20'))
    anonymous_window_seconds: float = SECONDS_PER_HOUR

    # Inbound buckets untouched for this long are dropped from the registry
    idle_bucket_seconds: float = float(os.getenv('RATE_LIMIT_IDLE_SECONDS', '7200'))

    # Operational endpoints that bypass the inbound gate
    exempt_prefixes: Tuple[str, ...] = ('/health', '/api/docs', '/api/metrics')


@dataclass(frozen=True)
class CacheConfig:
    """OpenSky response cache settings."""
    ttl_seconds: int = int(os.getenv('OPENSKY_CACHE_TTL_SECONDS', str(SECONDS_PER_DAY)))
    max_memory_entries: int = 1000  # In-process tier only; the database tier is unbounded


@dataclass(frozen=True)
class EnrichmentConfig:
    """Background enrichment worker pool."""
    workers: int = int(os.getenv('ENRICHMENT_WORKERS', '2'))
    queue_size: int = int(os.getenv('ENRICHMENT_QUEUE_SIZE', '1000'))


@dataclass(frozen=True)
class AuthConfig:
    """Upstream identity settings."""
    # Set by the authenticating proxy in front of the API
    user_header: str = os.getenv('AUTH_USER_HEADER', 'X-Authenticated-User')


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    opensky: OpenSkyConfig
    database: DatabaseConfig
    rate_limit: RateLimitConfig
    cache: CacheConfig
    enrichment: EnrichmentConfig
    auth: AuthConfig

    # Flask settings
    secret_key: str
    debug: bool


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        opensky=OpenSkyConfig(),
        database=DatabaseConfig(),
        rate_limit=RateLimitConfig(),
        cache=CacheConfig(),
        enrichment=EnrichmentConfig(),
        auth=AuthConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
