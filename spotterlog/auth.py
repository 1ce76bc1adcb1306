"""
Caller identity.

Authentication happens upstream: the proxy in front of the API verifies
the caller's token and forwards the user id in a trusted header
(``X-Authenticated-User`` by default). This module turns that header
into an :class:`Identity`, with the role looked up server side, and
keeps it on ``flask.g`` for the rest of the request.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Optional

from flask import g, request, current_app

from spotterlog.errors import AuthenticationRequired
from spotterlog.models import ROLE_ADMIN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The caller of the current request; ``user_id`` is None for anonymous callers."""
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and (self.role or '').upper() == ROLE_ADMIN


ANONYMOUS = Identity()


def resolve_identity() -> Identity:
    """Build the identity for the current request, caching it on ``g``."""
    if 'identity' in g:
        return g.identity

    header = current_app.config['AUTH_USER_HEADER']
    user_id = (request.headers.get(header) or '').strip()
    if not user_id:
        identity = ANONYMOUS
    else:
        role_repository = current_app.config['USER_ROLE_REPOSITORY']
        identity = Identity(user_id=user_id, role=role_repository.get_role(user_id))

    g.identity = identity
    return identity


def login_required(view):
    """Reject anonymous callers with 401 before the view runs."""

    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if not resolve_identity().is_authenticated:
            raise AuthenticationRequired()
        return view(*args, **kwargs)

    return wrapped
