"""
API module for SpotterLog.

Provides REST endpoints for:
- Sightings (CRUD, listings, enrichment retry)
- Pipeline status
and the inbound rate limiting gate that fronts them.
"""

from spotterlog.api.sightings import sightings_bp
from spotterlog.api.metrics import metrics_bp
from spotterlog.api.gate import InboundRequestGate

__all__ = ['sightings_bp', 'metrics_bp', 'InboundRequestGate']
