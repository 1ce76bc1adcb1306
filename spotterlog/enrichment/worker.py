"""
Enrichment worker - one attempt at enriching one sighting.

Attempt stages:
1. Query: derive the OpenSky query from the sighting (icao24 + time,
   else callsign, else a degenerate "/" that fails cleanly)
2. Key: MD5 of the query string
3. Cache: a fresh hit is used as-is, no quota spent
4. Quota: draw one token from the shared OpenSky bucket
   - granted: fetch live; cache the body on success
   - denied, or live fetch failed: fall back to a stale entry if one
     exists, otherwise the attempt fails
5. Metadata: after a live fetch, fill blank registration/model/airline
   from the aircraft database (best effort)
6. Record: ENRICHED or FAILED, persisted on the sighting

``enrich()`` never raises. It runs on a dispatcher thread long after the
request that triggered it has returned, so every path, including
unexpected errors, ends in a persisted terminal status.
"""

import hashlib
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any

from spotterlog.cache import ResponseCache, CacheLookup
from spotterlog.enrichment.opensky_client import OpenSkyClient
from spotterlog.models import Sighting, EnrichmentStatus
from spotterlog.ratelimit import RateLimiterRegistry
from spotterlog.repositories import SightingRepository

logger = logging.getLogger(__name__)

DEGENERATE_QUERY = '/'


def _epoch_seconds(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def build_query(sighting: Sighting) -> str:
    """
    Build the OpenSky query path for a sighting.

    Prefers the transponder address, which together with the sighting
    time makes the query deterministic. OpenSky has no callsign filter,
    so the callsign form mostly yields a cacheable miss.
    """
    icao24 = (sighting.icao24 or '').strip()
    if icao24 and sighting.timestamp is not None:
        return f'/states/all?icao24={icao24.lower()}&time={_epoch_seconds(sighting.timestamp)}'

    callsign = (sighting.callsign or '').strip()
    if callsign:
        return f'/states/all?callsign={callsign}'

    return DEGENERATE_QUERY


def query_hash(query: str) -> str:
    """Stable cache key for a query string."""
    return hashlib.md5(query.encode('utf-8')).hexdigest()


class EnrichmentWorker:
    """Runs enrichment attempts against shared cache, quota and client."""

    def __init__(
        self,
        sightings: SightingRepository,
        cache: ResponseCache,
        rate_limiters: RateLimiterRegistry,
        client: OpenSkyClient,
        fetch_metadata: bool = True,
    ):
        self.sightings = sightings
        self.cache = cache
        self.rate_limiters = rate_limiters
        self.client = client
        self.fetch_metadata = fetch_metadata

        self._lock = threading.Lock()
        self._counts = {
            'attempts': 0,
            'enriched': 0,
            'failed': 0,
            'cache_hits': 0,
            'live_fetches': 0,
            'stale_fallbacks': 0,
        }

    def enrich(self, sighting_id: int) -> Optional[EnrichmentStatus]:
        """
        Run one attempt for ``sighting_id``.

        Returns the terminal status written to the sighting, or None if
        the sighting no longer exists.
        """
        self._count('attempts')
        try:
            sighting = self.sightings.get(sighting_id)
            if sighting is None:
                logger.info(f'Sighting {sighting_id} no longer exists, skipping enrichment')
                return None

            logger.debug(f'Starting enrichment for sighting {sighting_id}')
            status, fields = self._attempt(sighting)
            self.sightings.update_enrichment(sighting_id, status, **fields)

        except Exception:
            logger.exception(f'Failed to enrich sighting {sighting_id}')
            self._mark_failed(sighting_id)
            status = EnrichmentStatus.FAILED

        self._count('enriched' if status is EnrichmentStatus.ENRICHED else 'failed')
        return status

    def _attempt(self, sighting: Sighting) -> Tuple[EnrichmentStatus, Dict[str, Any]]:
        query = build_query(sighting)
        key = query_hash(query)
        cached = self.cache.get(key)

        if cached.fresh:
            logger.debug(f'Using cached OpenSky data for sighting {sighting.id}')
            self._count('cache_hits')
            return EnrichmentStatus.ENRICHED, {}

        if not self.rate_limiters.consume_external(1):
            logger.warning(
                f'OpenSky quota exhausted, tokens remaining: '
                f'{self.rate_limiters.opensky_bucket.available_tokens}'
            )
            return self._fallback(sighting, cached, 'quota exhausted')

        self._count('live_fetches')
        payload = self.client.fetch(query)
        if payload is None:
            return self._fallback(sighting, cached, 'fetch failed')

        self.cache.put(key, payload)
        preview = payload if len(payload) <= 100 else payload[:100] + '...'
        logger.info(f'OpenSky response for sighting {sighting.id}: {preview}')

        return EnrichmentStatus.ENRICHED, self._metadata_fields(sighting)

    def _fallback(
        self,
        sighting: Sighting,
        cached: CacheLookup,
        reason: str,
    ) -> Tuple[EnrichmentStatus, Dict[str, Any]]:
        """Use an expired entry if there is one; out-of-date data beats none."""
        if cached.hit:
            logger.info(f'Using expired cache for sighting {sighting.id} ({reason})')
            self._count('stale_fallbacks')
            return EnrichmentStatus.ENRICHED, {}

        logger.error(f'No cached data available for sighting {sighting.id} ({reason})')
        return EnrichmentStatus.FAILED, {}

    def _metadata_fields(self, sighting: Sighting) -> Dict[str, Any]:
        """Blank-only fills from the aircraft database. Failures are ignored."""
        if not self.fetch_metadata or not sighting.icao24:
            return {}

        try:
            metadata = self.client.get_aircraft_metadata(sighting.icao24)
        except Exception as e:
            logger.debug(f'Metadata lookup failed for {sighting.icao24}: {e}')
            return {}
        if metadata is None:
            return {}

        model = metadata.model
        if model and metadata.manufacturer and not model.startswith(metadata.manufacturer):
            model = f'{metadata.manufacturer} {model}'

        fields = {}
        if not sighting.registration and metadata.registration:
            fields['registration'] = metadata.registration
        if not sighting.aircraft_model and model:
            fields['aircraft_model'] = model
        if not sighting.airline and metadata.operator:
            fields['airline'] = metadata.operator
        return fields

    def _mark_failed(self, sighting_id: int) -> None:
        try:
            self.sightings.update_enrichment(sighting_id, EnrichmentStatus.FAILED)
        except Exception:
            logger.exception(f'Could not record FAILED status for sighting {sighting_id}')

    def _count(self, name: str) -> None:
        with self._lock:
            self._counts[name] += 1

    @property
    def stats(self) -> dict:
        with self._lock:
            return dict(self._counts)
