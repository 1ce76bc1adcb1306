"""
Domain exceptions.

Raised by the service layer and translated into JSON responses by the
error handlers registered in :func:`spotterlog.app.create_app`. Nothing
in the enrichment pipeline raises these; its failures end up as a
``FAILED`` status instead.
"""

from typing import Any, Dict, Optional


class SpotterLogError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    default_message = 'An unexpected error occurred. Please try again later.'

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationError(SpotterLogError):
    status_code = 400
    default_message = 'Validation failed'


class AuthenticationRequired(SpotterLogError):
    status_code = 401
    default_message = 'Authentication required'


class NotAuthorized(SpotterLogError):
    status_code = 403
    default_message = 'Access denied'


class SightingNotFound(SpotterLogError):
    status_code = 404
    default_message = 'Sighting not found'
