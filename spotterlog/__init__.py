"""
SpotterLog Backend Package.

Aircraft sighting logbook built with Flask and SQLAlchemy, enriching
each sighting with OpenSky Network data in the background.

Modules:
    api/          REST endpoints and the inbound rate limiting gate
    models/       SQLAlchemy ORM models (Sighting, OpenSkyCacheEntry, UserRole)
    enrichment/   OpenSky client, enrichment worker and dispatcher
    services/     Sighting business rules (ownership, dispatch)
    cache.py      Two-tier (memory + database) OpenSky response cache
    ratelimit.py  Token buckets and the bucket registry
    config.py     Centralized configuration from environment variables
"""

__version__ = '1.0.0'
