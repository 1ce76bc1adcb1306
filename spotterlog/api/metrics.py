"""
Metrics and status API endpoints.

Provides endpoints for:
- GET /api/metrics/status - Enrichment pipeline health and quota state

Exempt from the inbound gate so monitoring never competes with callers
for rate limit tokens.
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

logger = logging.getLogger(__name__)

metrics_bp = Blueprint('metrics', __name__, url_prefix='/api/metrics')


@metrics_bp.route('/status', methods=['GET'])
def get_system_status():
    """
    Get system health and status information.

    Returns:
    - Enrichment dispatcher and worker counters
    - Response cache statistics
    - Remaining OpenSky quota and tracked inbound buckets
    - Database connectivity
    """
    start_time = time.perf_counter()

    dispatcher = current_app.config['ENRICHMENT_DISPATCHER']
    cache = current_app.config['RESPONSE_CACHE']
    rate_limiters = current_app.config['RATE_LIMITERS']
    gate = current_app.extensions.get('inbound_gate')

    # Check database connectivity
    db_ok = True
    try:
        with current_app.config['SESSION_FACTORY']() as session:
            session.execute(text('SELECT 1'))
    except Exception as e:
        db_ok = False
        logger.error(f'Database health check failed: {e}')

    dispatcher_stats = dispatcher.stats
    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'status': 'healthy' if (db_ok and dispatcher_stats.get('running')) else 'degraded',
        'database': {
            'connected': db_ok,
        },
        'enrichment': {
            'dispatcher': dispatcher_stats,
            'worker': dispatcher.worker.stats,
        },
        'cache': cache.stats,
        'rate_limits': {
            **rate_limiters.stats,
            'inbound': gate.stats if gate else None,
        },
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })
