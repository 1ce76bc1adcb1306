"""
OpenSky Network API client.

Two calls are made on behalf of the enrichment pipeline:

- ``fetch(query)``: GET ``<base_url><query>`` (usually
  ``/states/all?...``) and return the raw body. Bounded by a 15 second
  timeout. The body is stored as-is; interpreting the state vectors is
  left to readers of the cache.
- ``get_aircraft_metadata(icao24)``: best-effort lookup against
  ``/metadata/aircraft/icao/<icao24>`` with a 5 second timeout. Metadata
  is non-critical, so every failure is swallowed.

Neither call raises. Transport errors, timeouts and non-2xx responses
are logged and reported as ``None``; deciding what "no data" means is
the caller's job.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import requests
from requests.auth import HTTPBasicAuth

from spotterlog.config import config

logger = logging.getLogger(__name__)


@dataclass
class AircraftMetadata:
    """Static aircraft information from the OpenSky aircraft database."""
    icao24: str
    registration: Optional[str] = None
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    operator: Optional[str] = None

    @classmethod
    def from_json(cls, icao24: str, data: dict) -> 'AircraftMetadata':
        def text(name: str) -> Optional[str]:
            value = data.get(name)
            if isinstance(value, str):
                value = value.strip()
            return value or None

        return cls(
            icao24=icao24,
            registration=text('registration'),
            model=text('model'),
            manufacturer=text('manufacturername'),
            operator=text('operator'),
        )


class OpenSkyClient:
    """
    Client for OpenSky Network API.

    Uses basic authentication when client credentials are configured.
    Quota accounting is not done here; see ``RateLimiterRegistry``.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: str = 'https://opensky-network.org/api',
        fetch_timeout: float = 15.0,
        metadata_timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.fetch_timeout = fetch_timeout
        self.metadata_timeout = metadata_timeout
        self.auth = None
        if client_id and client_secret:
            self.auth = HTTPBasicAuth(client_id, client_secret)
            logger.info('OpenSky client initialized with authentication')
        else:
            logger.warning('OpenSky client running without authentication (lower rate limits)')

        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self.request_count = 0
        self.error_count = 0

    @classmethod
    def from_config(cls) -> 'OpenSkyClient':
        """Create client from application configuration."""
        return cls(
            client_id=config.opensky.client_id,
            client_secret=config.opensky.client_secret,
            base_url=config.opensky.base_url,
            fetch_timeout=config.opensky.fetch_timeout_seconds,
            metadata_timeout=config.opensky.metadata_timeout_seconds,
        )

    def _url(self, path: str) -> str:
        if not path.startswith('/'):
            path = '/' + path
        return f'{self.base_url}{path}'

    def fetch(self, query: str) -> Optional[str]:
        """
        Fetch the raw response body for an OpenSky query path.

        Returns None on timeout, network error or non-2xx status.
        """
        url = self._url(query)
        logger.debug(f'Fetching {url}')
        with self._lock:
            self.request_count += 1

        try:
            response = self.session.get(url, auth=self.auth, timeout=self.fetch_timeout)
            response.raise_for_status()
            return response.text

        except requests.exceptions.Timeout:
            logger.warning(f'OpenSky API timeout after {self.fetch_timeout}s')
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 429:
                logger.warning('OpenSky rate limit exceeded')
            else:
                status = e.response.status_code if e.response is not None else '?'
                logger.warning(f'OpenSky API error: {status}')
        except requests.exceptions.RequestException as e:
            logger.warning(f'OpenSky request failed: {e}')

        with self._lock:
            self.error_count += 1
        return None

    def get_aircraft_metadata(self, icao24: str) -> Optional[AircraftMetadata]:
        """Look up registration, model and operator for an aircraft. Never raises."""
        if not icao24:
            return None
        icao24 = icao24.strip().lower()

        try:
            response = self.session.get(
                self._url(f'/metadata/aircraft/icao/{icao24}'),
                auth=self.auth,
                timeout=self.metadata_timeout,
            )
            if response.status_code != 200 or not response.text.strip():
                logger.debug(f'No metadata for aircraft {icao24}: {response.status_code}')
                return None
            data = response.json()
            if not isinstance(data, dict):
                return None
            return AircraftMetadata.from_json(icao24, data)

        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f'Failed to fetch metadata for aircraft {icao24}: {e}')
            return None

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                'requests': self.request_count,
                'errors': self.error_count,
                'authenticated': self.auth is not None,
            }
