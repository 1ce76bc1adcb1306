"""
Data access for sightings, cached OpenSky responses and user roles.

Each repository opens a short-lived session per call from the session
factory it was built with (``SessionLocal`` by default), so instances
are safe to share between request handlers and enrichment workers.
Returned ORM objects are detached; ``expire_on_commit=False`` keeps
their loaded attributes readable.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Callable

from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from spotterlog.models import (
    SessionLocal,
    Sighting,
    EnrichmentStatus,
    Visibility,
    OpenSkyCacheEntry,
    UserRole,
    ROLE_USER,
    utcnow,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class Page:
    """One page of a listing, ordered newest sighting first."""
    items: List[Sighting]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size

    def to_dict(self) -> dict:
        return {
            'items': [s.to_dict() for s in self.items],
            'page': self.page,
            'size': self.size,
            'total': self.total,
            'total_pages': self.total_pages,
        }


class SightingRepository:
    """CRUD and paginated listing for sightings."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal

    def get(self, sighting_id: int) -> Optional[Sighting]:
        with self._session_factory() as session:
            return session.get(Sighting, sighting_id)

    def save(self, sighting: Sighting) -> Sighting:
        """Insert a new sighting or merge an existing one, bumping its revision timestamp."""
        sighting.updated_at = utcnow()
        with self._session_factory() as session:
            if sighting.id is None:
                session.add(sighting)
            else:
                sighting = session.merge(sighting)
            session.commit()
            return sighting

    def delete(self, sighting: Sighting) -> None:
        with self._session_factory() as session:
            existing = session.get(Sighting, sighting.id)
            if existing is not None:
                session.delete(existing)
                session.commit()

    def update_enrichment(
        self,
        sighting_id: int,
        status: EnrichmentStatus,
        **fields,
    ) -> bool:
        """
        Set the enrichment status (and optional metadata columns) in place.

        A targeted UPDATE rather than a merge, so an edit the owner made
        while the attempt was running is not overwritten with the
        worker's stale copy. Returns False if the sighting is gone.
        """
        values = dict(fields)
        values['enrichment_status'] = status
        values['updated_at'] = utcnow()

        with self._session_factory() as session:
            result = session.execute(
                update(Sighting).where(Sighting.id == sighting_id).values(**values)
            )
            session.commit()
            return result.rowcount > 0

    def update_fields(self, sighting_id: int, **fields) -> Optional[Sighting]:
        """
        Write only the given columns and return the stored sighting.

        Leaves ``enrichment_status`` alone unless it is passed, so an
        owner's edit never rolls back a status a worker recorded after
        the edit was read. Returns None if the sighting is gone.
        """
        values = dict(fields)
        values['updated_at'] = utcnow()

        with self._session_factory() as session:
            result = session.execute(
                update(Sighting).where(Sighting.id == sighting_id).values(**values)
            )
            session.commit()
            if result.rowcount == 0:
                return None
            return session.get(Sighting, sighting_id)

    def list_by_owner(self, owner_user_id: str, page: int, size: int) -> Page:
        return self._paginate(Sighting.owner_user_id == owner_user_id, page, size)

    def list_by_visibility(self, visibility: Visibility, page: int, size: int) -> Page:
        return self._paginate(Sighting.visibility == visibility, page, size)

    def list_all(self, page: int, size: int) -> Page:
        return self._paginate(None, page, size)

    def _paginate(self, criterion, page: int, size: int) -> Page:
        query = select(Sighting)
        count_query = select(func.count()).select_from(Sighting)
        if criterion is not None:
            query = query.where(criterion)
            count_query = count_query.where(criterion)

        query = query.order_by(Sighting.timestamp.desc(), Sighting.id.desc())
        query = query.offset(page * size).limit(size)

        with self._session_factory() as session:
            total = session.execute(count_query).scalar_one()
            items = list(session.execute(query).scalars().all())

        return Page(items=items, page=page, size=size, total=total)


class OpenSkyCacheRepository:
    """Persisted OpenSky responses, keyed by query hash."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal

    def find_by_hash(self, query_hash: str) -> Optional[OpenSkyCacheEntry]:
        with self._session_factory() as session:
            return session.execute(
                select(OpenSkyCacheEntry).where(OpenSkyCacheEntry.query_hash == query_hash)
            ).scalar_one_or_none()

    def upsert(self, query_hash: str, response: str, expires_at: float) -> None:
        """
        Insert or replace the entry for ``query_hash``.

        Two workers racing on the same hash both fetched the same
        logical data, so last write wins.
        """
        with self._session_factory() as session:
            insert = pg_insert if session.get_bind().dialect.name == 'postgresql' else sqlite_insert
            stmt = insert(OpenSkyCacheEntry).values(
                query_hash=query_hash,
                response=response,
                expires_at=expires_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=['query_hash'],
                set_={
                    'response': stmt.excluded.response,
                    'expires_at': stmt.excluded.expires_at,
                }
            )
            session.execute(stmt)
            session.commit()

    def count(self) -> int:
        with self._session_factory() as session:
            return session.execute(
                select(func.count()).select_from(OpenSkyCacheEntry)
            ).scalar_one()


class UserRoleRepository:
    """Read-only role lookup."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal

    def get_role(self, user_id: str) -> str:
        with self._session_factory() as session:
            row = session.get(UserRole, user_id)
        if row is None or not row.role:
            return ROLE_USER
        return row.role.upper()
