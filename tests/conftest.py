"""Shared test fixtures."""

import os

# Keep the module-level engine away from the working directory
os.environ.setdefault('DATABASE_URL', 'sqlite://')

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from spotterlog.app import create_app
from spotterlog.cache import ResponseCache
from spotterlog.enrichment import EnrichmentWorker
from spotterlog.models import Base, Sighting, EnrichmentStatus, Visibility, UserRole, utcnow
from spotterlog.ratelimit import RateLimiterRegistry, BucketPolicy
from spotterlog.repositories import SightingRepository, OpenSkyCacheRepository

DAY = 86400
HOUR = 3600


class FakeClock:
    """Manually advanced clock, usable wherever ``time.time`` is expected."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubOpenSkyClient:
    """Records calls; returns canned payloads instead of hitting the network."""

    def __init__(self, payload='{"time": 1700000000, "states": []}', metadata=None):
        self.payload = payload
        self.metadata = metadata
        self.fetch_calls = []
        self.metadata_calls = []

    def fetch(self, query):
        self.fetch_calls.append(query)
        return self.payload

    def get_aircraft_metadata(self, icao24):
        self.metadata_calls.append(icao24)
        return self.metadata

    @property
    def call_count(self) -> int:
        return len(self.fetch_calls) + len(self.metadata_calls)


@pytest.fixture()
def session_factory(tmp_path):
    # File-backed so worker threads get their own connections
    engine = create_engine(
        f'sqlite:///{tmp_path / "test.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sighting_repo(session_factory) -> SightingRepository:
    return SightingRepository(session_factory)


@pytest.fixture()
def cache_repo(session_factory) -> OpenSkyCacheRepository:
    return OpenSkyCacheRepository(session_factory)


@pytest.fixture()
def cache(cache_repo, clock) -> ResponseCache:
    return ResponseCache(cache_repo, ttl_seconds=DAY, max_memory_entries=50, clock=clock)


@pytest.fixture()
def registry(clock) -> RateLimiterRegistry:
    return RateLimiterRegistry(
        opensky_policy=BucketPolicy('opensky', 5, DAY),
        user_policy=BucketPolicy('user', 100, HOUR),
        anonymous_policy=BucketPolicy('anonymous', 20, HOUR),
        idle_seconds=2 * HOUR,
        clock=clock,
    )


@pytest.fixture()
def opensky() -> StubOpenSkyClient:
    return StubOpenSkyClient()


@pytest.fixture()
def worker(sighting_repo, cache, registry, opensky) -> EnrichmentWorker:
    return EnrichmentWorker(sighting_repo, cache, registry, opensky)


@pytest.fixture()
def make_sighting(sighting_repo):
    """Persist a sighting in ENRICHING state and return it."""

    def _make(**overrides) -> Sighting:
        now = utcnow()
        fields = {
            'owner_user_id': 'alice',
            'timestamp': datetime(2024, 5, 1, 12, 30, 0),
            'airport_iata_or_icao': 'EGLL',
            'icao24': '4ca7b3',
            'callsign': 'BAW123',
            'visibility': Visibility.PUBLIC,
            'enrichment_status': EnrichmentStatus.ENRICHING,
            'created_at': now,
            'updated_at': now,
        }
        fields.update(overrides)
        return sighting_repo.save(Sighting(**fields))

    return _make


@pytest.fixture()
def grant_role(session_factory):
    def _grant(user_id: str, role: str) -> None:
        with session_factory() as session:
            session.merge(UserRole(user_id=user_id, role=role, granted_at=utcnow()))
            session.commit()

    return _grant


@pytest.fixture()
def app(session_factory, opensky, registry):
    application = create_app(
        session_factory=session_factory,
        opensky_client=opensky,
        rate_limiters=registry,
    )
    application.config['TESTING'] = True
    yield application
    application.config['ENRICHMENT_DISPATCHER'].stop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def dispatcher(app):
    return app.config['ENRICHMENT_DISPATCHER']
