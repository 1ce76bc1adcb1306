"""
OpenSkyCacheEntry model - persisted tier of the OpenSky response cache.

Rows are keyed by the MD5 hash of the query string and replaced on
re-fetch. Expiry is checked when a row is read; there is no background
sweep, since the number of distinct query shapes stays small.
"""

from sqlalchemy import String, Text, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from spotterlog.models.base import Base


class OpenSkyCacheEntry(Base):
    """Raw OpenSky response body with its expiry."""

    __tablename__ = 'opensky_cache'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    query_hash: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment='MD5 hex digest of the OpenSky query string'
    )

    response: Mapped[str] = mapped_column(Text, nullable=False)

    expires_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Unix timestamp after which the entry is stale'
    )

    def __repr__(self) -> str:
        return f'<OpenSkyCacheEntry {self.query_hash} expires={self.expires_at:.0f}>'
