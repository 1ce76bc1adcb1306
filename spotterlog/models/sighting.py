"""
Sighting model - one aircraft observation logged by a user.

The enrichment pipeline only reads ``icao24``, ``callsign`` and
``timestamp`` and writes ``enrichment_status`` plus the blank-only
metadata columns (registration, aircraft model, airline).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, DateTime, Integer, Index
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from spotterlog.models.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EnrichmentStatus(str, Enum):
    """
    Enrichment state of a sighting.

    ENRICHING is set on create and on every retry; each attempt ends in
    exactly one of ENRICHED or FAILED.
    """
    ENRICHING = 'ENRICHING'
    ENRICHED = 'ENRICHED'
    FAILED = 'FAILED'

    @property
    def is_terminal(self) -> bool:
        return self is not EnrichmentStatus.ENRICHING


class Visibility(str, Enum):
    """PUBLIC sightings are listed for everyone, PRIVATE only for the owner."""
    PUBLIC = 'PUBLIC'
    PRIVATE = 'PRIVATE'


class Sighting(Base):
    """A single aircraft sighting."""

    __tablename__ = 'sightings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    owner_user_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment='Identity of the user who logged the sighting'
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        comment='When the aircraft was seen (UTC)'
    )

    airport_iata_or_icao: Mapped[str] = mapped_column(String(4), nullable=False)
    location_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Aircraft identification
    airline: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    callsign: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    icao24: Mapped[Optional[str]] = mapped_column(
        String(6),
        nullable=True,
        comment='ICAO24 hex transponder address'
    )
    registration: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    aircraft_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    visibility: Mapped[Visibility] = mapped_column(
        SAEnum(Visibility, native_enum=False, length=10),
        nullable=False,
        default=Visibility.PUBLIC,
    )

    enrichment_status: Mapped[EnrichmentStatus] = mapped_column(
        SAEnum(EnrichmentStatus, native_enum=False, length=10),
        nullable=False,
        default=EnrichmentStatus.ENRICHING,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment='Revision timestamp'
    )

    __table_args__ = (
        Index('ix_sightings_visibility_timestamp', 'visibility', 'timestamp'),
    )

    def __repr__(self) -> str:
        return f'<Sighting {self.id} {self.icao24 or self.callsign or "?"} {self.enrichment_status}>'

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            'id': self.id,
            'owner_user_id': self.owner_user_id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'airport_iata_or_icao': self.airport_iata_or_icao,
            'location_text': self.location_text,
            'airline': self.airline,
            'callsign': self.callsign,
            'icao24': self.icao24,
            'registration': self.registration,
            'aircraft_model': self.aircraft_model,
            'notes': self.notes,
            'visibility': self.visibility.value if self.visibility else None,
            'enrichment_status': self.enrichment_status.value if self.enrichment_status else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
