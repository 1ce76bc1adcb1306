"""
Sighting enrichment from the OpenSky Network.

Runs off the request path: handlers submit sighting ids to the
dispatcher, whose threads run rate-limited, cache-first attempts.
"""

from spotterlog.enrichment.opensky_client import OpenSkyClient, AircraftMetadata
from spotterlog.enrichment.worker import EnrichmentWorker, build_query, query_hash
from spotterlog.enrichment.dispatcher import EnrichmentDispatcher

__all__ = [
    'OpenSkyClient',
    'AircraftMetadata',
    'EnrichmentWorker',
    'EnrichmentDispatcher',
    'build_query',
    'query_hash',
]
