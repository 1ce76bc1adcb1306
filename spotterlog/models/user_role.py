"""
UserRole model - server-side role assignments.

Roles are looked up by user id on every authenticated request; a user
without a row is an ordinary ``USER``.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from spotterlog.models.sighting import utcnow
from spotterlog.models.base import Base

ROLE_USER = 'USER'
ROLE_ADMIN = 'ADMIN'


class UserRole(Base):
    """Role granted to a user."""

    __tablename__ = 'user_roles'

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_USER)
    granted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    granted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f'<UserRole {self.user_id} {self.role}>'
