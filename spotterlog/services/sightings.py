"""
Sighting service - business rules around the sighting collaborator.

Handles ownership checks and hands new or retried sightings to the
enrichment dispatcher once they are committed. Ownership failures are
raised synchronously and never reach the enrichment pipeline.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from spotterlog.auth import Identity
from spotterlog.enrichment import EnrichmentDispatcher
from spotterlog.errors import SightingNotFound, NotAuthorized
from spotterlog.models import Sighting, EnrichmentStatus, Visibility, utcnow
from spotterlog.repositories import SightingRepository, Page

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Fields a create/update request may set
EDITABLE_FIELDS = (
    'timestamp',
    'airport_iata_or_icao',
    'location_text',
    'airline',
    'callsign',
    'icao24',
    'registration',
    'aircraft_model',
    'notes',
    'visibility',
)


@dataclass
class SightingInput:
    """Validated request payload; None means "not provided"."""
    timestamp: Optional[datetime] = None
    airport_iata_or_icao: Optional[str] = None
    location_text: Optional[str] = None
    airline: Optional[str] = None
    callsign: Optional[str] = None
    icao24: Optional[str] = None
    registration: Optional[str] = None
    aircraft_model: Optional[str] = None
    notes: Optional[str] = None
    visibility: Optional[Visibility] = None


def clamp_page_size(size: int) -> int:
    return max(1, min(size, MAX_PAGE_SIZE))


class SightingService:
    """Create, update, delete, retry and list sightings."""

    def __init__(self, repository: SightingRepository, dispatcher: EnrichmentDispatcher):
        self.repository = repository
        self.dispatcher = dispatcher

    def create(self, data: SightingInput, identity: Identity) -> Sighting:
        """Persist a new sighting and start enriching it in the background."""
        now = utcnow()
        sighting = Sighting(
            owner_user_id=identity.user_id,
            enrichment_status=EnrichmentStatus.ENRICHING,
            created_at=now,
            updated_at=now,
        )
        self._apply(sighting, data)
        if sighting.visibility is None:
            sighting.visibility = Visibility.PUBLIC

        sighting = self.repository.save(sighting)
        logger.info(f'Created sighting {sighting.id} for {identity.user_id}')

        self.dispatcher.submit(sighting.id)
        return sighting

    def update(self, sighting_id: int, data: SightingInput, identity: Identity) -> Sighting:
        """Overwrite the fields provided in ``data``. Owner or admin only."""
        existing = self._owned(sighting_id, identity, 'update')
        changes = self._changes(data)
        if not changes:
            return existing

        updated = self.repository.update_fields(sighting_id, **changes)
        if updated is None:
            raise SightingNotFound()
        return updated

    def delete(self, sighting_id: int, identity: Identity) -> None:
        existing = self._owned(sighting_id, identity, 'delete')
        self.repository.delete(existing)
        logger.info(f'Deleted sighting {sighting_id}')

    def retry_enrichment(self, sighting_id: int, identity: Identity) -> Sighting:
        """Reset the sighting to ENRICHING and dispatch a new attempt."""
        existing = self._owned(sighting_id, identity, 'retry enrichment for')
        if not self.repository.update_enrichment(sighting_id, EnrichmentStatus.ENRICHING):
            raise SightingNotFound()
        existing.enrichment_status = EnrichmentStatus.ENRICHING

        logger.info(f'Retrying enrichment for sighting {sighting_id}')
        self.dispatcher.submit(existing.id)
        return existing

    def get(self, sighting_id: int, identity: Optional[Identity] = None) -> Sighting:
        """Fetch one sighting; private sightings are only visible to their owner or an admin."""
        sighting = self.repository.get(sighting_id)
        if sighting is None:
            raise SightingNotFound()
        if sighting.visibility == Visibility.PRIVATE and not self._may_modify(sighting, identity):
            # Indistinguishable from a missing sighting
            raise SightingNotFound()
        return sighting

    def list_for_user(self, identity: Identity, page: int = 0, size: int = 10) -> Page:
        return self.repository.list_by_owner(identity.user_id, max(page, 0), clamp_page_size(size))

    def list_public(self, page: int = 0, size: int = 10) -> Page:
        return self.repository.list_by_visibility(Visibility.PUBLIC, max(page, 0), clamp_page_size(size))

    def list_all(self, identity: Identity, page: int = 0, size: int = 50) -> Page:
        if not identity.is_admin:
            raise NotAuthorized('Access denied. Admin role required.')
        return self.repository.list_all(max(page, 0), clamp_page_size(size))

    def _owned(self, sighting_id: int, identity: Identity, action: str) -> Sighting:
        existing = self.repository.get(sighting_id)
        if existing is None:
            raise SightingNotFound()
        if not self._may_modify(existing, identity):
            raise NotAuthorized(f'Not authorised to {action} this sighting')
        return existing

    @staticmethod
    def _may_modify(sighting: Sighting, identity: Optional[Identity]) -> bool:
        if identity is None or not identity.is_authenticated:
            return False
        return identity.is_admin or sighting.owner_user_id == identity.user_id

    @staticmethod
    def _changes(data: SightingInput) -> dict:
        """Fields provided in ``data``, keyed by column name."""
        return {
            name: getattr(data, name)
            for name in EDITABLE_FIELDS
            if getattr(data, name) is not None
        }

    @classmethod
    def _apply(cls, sighting: Sighting, data: SightingInput) -> None:
        for name, value in cls._changes(data).items():
            setattr(sighting, name, value)
