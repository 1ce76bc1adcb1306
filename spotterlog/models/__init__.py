"""
Database models for SpotterLog.

- Sighting: user-logged aircraft observations and their enrichment status
- OpenSkyCacheEntry: persisted OpenSky responses keyed by query hash
- UserRole: server-side role assignments
"""

from spotterlog.models.base import Base, engine, SessionLocal, init_db
from spotterlog.models.sighting import Sighting, EnrichmentStatus, Visibility, utcnow
from spotterlog.models.opensky_cache import OpenSkyCacheEntry
from spotterlog.models.user_role import UserRole, ROLE_USER, ROLE_ADMIN

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'Sighting',
    'EnrichmentStatus',
    'Visibility',
    'utcnow',
    'OpenSkyCacheEntry',
    'UserRole',
    'ROLE_USER',
    'ROLE_ADMIN',
]
