"""
Service layer.

Business rules that sit between the HTTP endpoints and the
repositories, raising ``spotterlog.errors`` exceptions on failure.
"""

from spotterlog.services.sightings import SightingService, SightingInput, MAX_PAGE_SIZE

__all__ = ['SightingService', 'SightingInput', 'MAX_PAGE_SIZE']
