"""
Sighting API endpoints.

Provides endpoints for:
- GET    /api/sightings              - Public sightings, newest first
- GET    /api/sightings/me           - The caller's sightings
- GET    /api/sightings/admin/all    - Every sighting (admin)
- GET    /api/sightings/<id>         - One sighting
- POST   /api/sightings              - Log a sighting (starts enrichment)
- PUT    /api/sightings/<id>         - Partial update (owner or admin)
- DELETE /api/sightings/<id>         - Delete (owner or admin)
- POST   /api/sightings/<id>/enrich  - Retry enrichment (owner or admin)

Enrichment outcome is only visible through ``enrichment_status``;
clients poll the sighting after creating or retrying it.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from flask import Blueprint, jsonify, request, current_app

from spotterlog.auth import login_required, resolve_identity
from spotterlog.errors import ValidationError
from spotterlog.models import Visibility
from spotterlog.services import SightingService, SightingInput

logger = logging.getLogger(__name__)

sightings_bp = Blueprint('sightings', __name__, url_prefix='/api/sightings')

ICAO24_RE = re.compile(r'^[0-9a-fA-F]{6}$')
AIRPORT_RE = re.compile(r'^[A-Za-z0-9]{3,4}$')

# column name -> max length for free-text fields
TEXT_LIMITS = {
    'location_text': 255,
    'airline': 100,
    'callsign': 8,
    'registration': 10,
    'aircraft_model': 100,
    'notes': 5000,
}


def _service() -> SightingService:
    return current_app.config['SIGHTING_SERVICE']


def _page_args(default_size: int):
    try:
        page = int(request.args.get('page', 0))
        size = int(request.args.get('size', default_size))
    except ValueError:
        raise ValidationError('page and size must be integers')
    return page, size


def _parse_timestamp(value) -> datetime:
    if not isinstance(value, str):
        raise ValueError('must be an ISO-8601 string')
    ts = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def parse_sighting_input(payload: Optional[dict], partial: bool) -> SightingInput:
    """
    Validate a request body.

    With ``partial=False`` (create) ``timestamp`` and
    ``airport_iata_or_icao`` are required.
    """
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')

    errors = {}
    data = SightingInput()

    if payload.get('timestamp') is not None:
        try:
            data.timestamp = _parse_timestamp(payload['timestamp'])
        except ValueError:
            errors['timestamp'] = 'must be an ISO-8601 timestamp'
    elif not partial:
        errors['timestamp'] = 'must not be null'

    airport = payload.get('airport_iata_or_icao')
    if airport is not None:
        if not isinstance(airport, str) or not AIRPORT_RE.match(airport.strip()):
            errors['airport_iata_or_icao'] = 'must be a 3-letter IATA or 4-letter ICAO code'
        else:
            data.airport_iata_or_icao = airport.strip().upper()
    elif not partial:
        errors['airport_iata_or_icao'] = 'must not be blank'

    icao24 = payload.get('icao24')
    if icao24 is not None:
        if not isinstance(icao24, str) or not ICAO24_RE.match(icao24.strip()):
            errors['icao24'] = 'must be a 6-character hex address'
        else:
            data.icao24 = icao24.strip().lower()

    for name, limit in TEXT_LIMITS.items():
        value = payload.get(name)
        if value is None:
            continue
        if not isinstance(value, str) or len(value) > limit:
            errors[name] = f'must be a string of at most {limit} characters'
        else:
            setattr(data, name, value.strip())

    if data.callsign:
        data.callsign = data.callsign.upper()

    visibility = payload.get('visibility')
    if visibility is not None:
        try:
            data.visibility = Visibility(str(visibility).upper())
        except ValueError:
            errors['visibility'] = 'must be PUBLIC or PRIVATE'

    if errors:
        raise ValidationError('Validation failed', details=errors)
    return data


@sightings_bp.route('', methods=['GET'])
def list_public_sightings():
    """Public sightings. Query parameters: page (default 0), size (default 10, max 100)."""
    page, size = _page_args(10)
    return jsonify(_service().list_public(page, size).to_dict())


@sightings_bp.route('/me', methods=['GET'])
@login_required
def list_my_sightings():
    page, size = _page_args(10)
    return jsonify(_service().list_for_user(resolve_identity(), page, size).to_dict())


@sightings_bp.route('/admin/all', methods=['GET'])
@login_required
def list_all_sightings():
    page, size = _page_args(50)
    return jsonify(_service().list_all(resolve_identity(), page, size).to_dict())


@sightings_bp.route('/<int:sighting_id>', methods=['GET'])
def get_sighting(sighting_id: int):
    sighting = _service().get(sighting_id, resolve_identity())
    return jsonify(sighting.to_dict())


@sightings_bp.route('', methods=['POST'])
@login_required
def create_sighting():
    """
    Log a new sighting.

    Responds immediately with ``enrichment_status: ENRICHING``; the
    OpenSky lookup runs in the background.
    """
    data = parse_sighting_input(request.get_json(silent=True), partial=False)
    sighting = _service().create(data, resolve_identity())
    return jsonify(sighting.to_dict()), 201


@sightings_bp.route('/<int:sighting_id>', methods=['PUT'])
@login_required
def update_sighting(sighting_id: int):
    data = parse_sighting_input(request.get_json(silent=True), partial=True)
    sighting = _service().update(sighting_id, data, resolve_identity())
    return jsonify(sighting.to_dict())


@sightings_bp.route('/<int:sighting_id>', methods=['DELETE'])
@login_required
def delete_sighting(sighting_id: int):
    _service().delete(sighting_id, resolve_identity())
    return '', 204


@sightings_bp.route('/<int:sighting_id>/enrich', methods=['POST'])
@login_required
def retry_enrichment(sighting_id: int):
    sighting = _service().retry_enrichment(sighting_id, resolve_identity())
    return jsonify({
        'id': sighting.id,
        'enrichment_status': sighting.enrichment_status.value,
    }), 202
