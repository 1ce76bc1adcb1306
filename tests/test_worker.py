"""Unit tests for single enrichment attempts."""

from datetime import datetime, timezone

import pytest

from spotterlog.enrichment import build_query, query_hash, AircraftMetadata
from spotterlog.models import EnrichmentStatus, Sighting

from conftest import DAY


def _drain_quota(registry) -> None:
    while registry.consume_external():
        pass


def _cache_key(sighting) -> str:
    return query_hash(build_query(sighting))


class TestBuildQuery:
    def test_icao24_query_includes_event_time(self) -> None:
        sighting = Sighting(icao24='4CA7B3', callsign='BAW123', timestamp=datetime(2024, 5, 1, 12, 30))
        expected = int(datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc).timestamp())

        assert build_query(sighting) == f'/states/all?icao24=4ca7b3&time={expected}'

    def test_falls_back_to_callsign(self) -> None:
        sighting = Sighting(icao24='  ', callsign=' BAW123 ', timestamp=datetime(2024, 5, 1))

        assert build_query(sighting) == '/states/all?callsign=BAW123'

    def test_degenerate_query_without_identifiers(self) -> None:
        assert build_query(Sighting(timestamp=datetime(2024, 5, 1))) == '/'

    def test_hash_is_stable_md5(self) -> None:
        assert query_hash('/') == '6666cd76f96956469e7be39d750cc7d9'
        assert query_hash('/states/all?callsign=X') == query_hash('/states/all?callsign=X')


class TestEnrichmentAttempt:
    def test_fresh_cache_hit_makes_no_external_calls(self, worker, make_sighting, cache, opensky, sighting_repo) -> None:
        sighting = make_sighting()
        cache.put(_cache_key(sighting), '{"x":1}')

        status = worker.enrich(sighting.id)
        assert status is EnrichmentStatus.ENRICHED and status.is_terminal
        assert opensky.call_count == 0
        assert sighting_repo.get(sighting.id).enrichment_status is EnrichmentStatus.ENRICHED
        assert worker.stats['cache_hits'] == 1

    def test_quota_exhausted_without_cache_fails(self, worker, make_sighting, registry, opensky, sighting_repo) -> None:
        sighting = make_sighting()
        _drain_quota(registry)

        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED
        assert opensky.call_count == 0
        assert sighting_repo.get(sighting.id).enrichment_status is EnrichmentStatus.FAILED

    def test_live_fetch_populates_cache_and_spends_last_token(
        self, worker, make_sighting, registry, cache, opensky, clock, sighting_repo
    ) -> None:
        sighting = make_sighting()
        for _ in range(4):
            registry.consume_external()
        assert registry.opensky_bucket.available_tokens == 1

        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED

        assert opensky.fetch_calls == [build_query(sighting)]
        assert registry.opensky_bucket.available_tokens == 0
        row = cache.repository.find_by_hash(_cache_key(sighting))
        assert row.response == opensky.payload
        assert row.expires_at == clock.now + DAY
        assert sighting_repo.get(sighting.id).enrichment_status is EnrichmentStatus.ENRICHED

    def test_stale_entry_used_when_quota_exhausted(self, worker, make_sighting, registry, cache, clock, opensky) -> None:
        sighting = make_sighting()
        cache.put(_cache_key(sighting), 'old payload')
        clock.advance(DAY + 1)
        _drain_quota(registry)

        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED
        assert opensky.call_count == 0
        assert worker.stats['stale_fallbacks'] == 1

    def test_stale_entry_is_refreshed_when_quota_allows(self, worker, make_sighting, cache, clock, opensky) -> None:
        sighting = make_sighting()
        key = _cache_key(sighting)
        cache.put(key, 'old payload')
        clock.advance(DAY + 1)

        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED
        assert len(opensky.fetch_calls) == 1
        lookup = cache.get(key)
        assert lookup.fresh and lookup.value == opensky.payload

    def test_failed_fetch_falls_back_to_stale_entry(self, worker, make_sighting, cache, clock, opensky) -> None:
        sighting = make_sighting()
        key = _cache_key(sighting)
        cache.put(key, 'old payload')
        clock.advance(DAY + 1)
        opensky.payload = None

        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED
        # A failed fetch never overwrites the cache
        assert cache.get(key).value == 'old payload'

    def test_failed_fetch_without_cache_fails(self, worker, make_sighting, opensky, cache) -> None:
        sighting = make_sighting()
        opensky.payload = None

        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED
        assert cache.get(_cache_key(sighting)).hit is False

    def test_degenerate_query_fails_cleanly(self, worker, make_sighting, opensky) -> None:
        sighting = make_sighting(icao24=None, callsign=None)
        opensky.payload = None

        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED
        assert opensky.fetch_calls == ['/']

    def test_unexpected_error_marks_failed(self, worker, make_sighting, sighting_repo, monkeypatch) -> None:
        sighting = make_sighting()

        def broken(key):
            raise RuntimeError('database went away')

        monkeypatch.setattr(worker.cache, 'get', broken)

        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED
        assert sighting_repo.get(sighting.id).enrichment_status is EnrichmentStatus.FAILED

    def test_failure_to_record_status_does_not_raise(self, worker, make_sighting, monkeypatch) -> None:
        sighting = make_sighting()

        def broken(*args, **kwargs):
            raise RuntimeError('read-only database')

        monkeypatch.setattr(worker.sightings, 'update_enrichment', broken)

        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED

    def test_missing_sighting_is_skipped(self, worker, opensky) -> None:
        assert worker.enrich(12345) is None
        assert opensky.call_count == 0

    def test_retry_after_failure_can_succeed(self, worker, make_sighting, opensky, sighting_repo) -> None:
        sighting = make_sighting()
        opensky.payload = None
        assert worker.enrich(sighting.id) is EnrichmentStatus.FAILED

        sighting_repo.update_enrichment(sighting.id, EnrichmentStatus.ENRICHING)
        opensky.payload = '{"states": []}'
        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED


class TestMetadataFill:
    def test_fills_only_blank_fields(self, worker, make_sighting, opensky, sighting_repo) -> None:
        opensky.metadata = AircraftMetadata(
            icao24='4ca7b3',
            registration='G-EUPT',
            model='A319-131',
            manufacturer='Airbus',
            operator='British Airways',
        )
        sighting = make_sighting(registration='G-KEEP')

        worker.enrich(sighting.id)

        stored = sighting_repo.get(sighting.id)
        assert stored.registration == 'G-KEEP'
        assert stored.aircraft_model == 'Airbus A319-131'
        assert stored.airline == 'British Airways'
        assert opensky.metadata_calls == ['4ca7b3']

    def test_no_metadata_lookup_on_cache_hit(self, worker, make_sighting, cache, opensky) -> None:
        sighting = make_sighting()
        cache.put(_cache_key(sighting), '{}')

        worker.enrich(sighting.id)
        assert opensky.metadata_calls == []

    def test_metadata_errors_are_swallowed(self, worker, make_sighting, opensky, monkeypatch) -> None:
        sighting = make_sighting()

        def broken(icao24):
            raise ConnectionError('metadata service down')

        monkeypatch.setattr(opensky, 'get_aircraft_metadata', broken)

        assert worker.enrich(sighting.id) is EnrichmentStatus.ENRICHED

    @pytest.mark.parametrize('icao24', [None, ''])
    def test_no_metadata_lookup_without_icao24(self, worker, make_sighting, opensky, icao24) -> None:
        sighting = make_sighting(icao24=icao24)

        worker.enrich(sighting.id)
        assert opensky.metadata_calls == []
