"""
SpotterLog Flask Application.

Main entry point for the web application. Initializes:
- Logging
- Database schema
- Enrichment worker pool
- Inbound rate limiting gate
- API routes and error handlers

Usage:
    python -m spotterlog.app

Or with gunicorn:
    gunicorn 'spotterlog.app:create_app()'
"""

import atexit
import logging
import os
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from spotterlog.api import sightings_bp, metrics_bp, InboundRequestGate
from spotterlog.cache import ResponseCache
from spotterlog.config import config
from spotterlog.enrichment import OpenSkyClient, EnrichmentWorker, EnrichmentDispatcher
from spotterlog.errors import SpotterLogError
from spotterlog.logging_config import configure_logging
from spotterlog.models import init_db, SessionLocal
from spotterlog.ratelimit import RateLimiterRegistry, rate_limiters as default_rate_limiters
from spotterlog.repositories import (
    SightingRepository,
    OpenSkyCacheRepository,
    UserRoleRepository,
    SessionFactory,
)
from spotterlog.services import SightingService

logger = logging.getLogger(__name__)


def error_response(status: int, message: str, details: Optional[dict] = None):
    """Uniform error body; never carries stack traces or provider detail."""
    body = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'status': status,
        'error': HTTPStatus(status).phrase,
        'message': message,
    }
    if details:
        body['details'] = details
    return jsonify(body), status


def create_app(
    session_factory: Optional[SessionFactory] = None,
    opensky_client: Optional[OpenSkyClient] = None,
    rate_limiters: Optional[RateLimiterRegistry] = None,
    start_workers: bool = True,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        session_factory: SQLAlchemy session factory. Defaults to the
                         configured engine, whose schema is created here.
        opensky_client: OpenSky client (created from config if None)
        rate_limiters: Rate limiter registry. Defaults to the process-wide
                       registry so every app in the process shares one quota.
        start_workers: Whether to start the enrichment worker threads.

    Returns:
        Configured Flask application instance.
    """
    configure_logging(config.debug)

    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.secret_key
    app.config['AUTH_USER_HEADER'] = config.auth.user_header

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    if session_factory is None:
        logger.info('Initializing database...')
        init_db()
        session_factory = SessionLocal

    rate_limiters = rate_limiters or default_rate_limiters
    sightings = SightingRepository(session_factory)
    cache = ResponseCache(OpenSkyCacheRepository(session_factory))

    worker = EnrichmentWorker(
        sightings=sightings,
        cache=cache,
        rate_limiters=rate_limiters,
        client=opensky_client or OpenSkyClient.from_config(),
    )
    dispatcher = EnrichmentDispatcher(worker)
    if start_workers:
        dispatcher.start()
        atexit.register(dispatcher.stop)

    app.config['SESSION_FACTORY'] = session_factory
    app.config['RATE_LIMITERS'] = rate_limiters
    app.config['RESPONSE_CACHE'] = cache
    app.config['ENRICHMENT_DISPATCHER'] = dispatcher
    app.config['USER_ROLE_REPOSITORY'] = UserRoleRepository(session_factory)
    app.config['SIGHTING_SERVICE'] = SightingService(sightings, dispatcher)

    # Gate first, so rejected calls never reach a view
    InboundRequestGate(rate_limiters, config.rate_limit.exempt_prefixes).init_app(app)

    # Register API blueprints
    app.register_blueprint(sightings_bp)
    app.register_blueprint(metrics_bp)

    # -------------------------------------------------------------------------
    # Operational routes
    # -------------------------------------------------------------------------

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    @app.route('/api/docs')
    def api_docs():
        """List the available endpoints."""
        routes = []
        for rule in sorted(app.url_map.iter_rules(), key=lambda r: r.rule):
            if rule.endpoint == 'static':
                continue
            methods = sorted(m for m in rule.methods if m not in ('HEAD', 'OPTIONS'))
            routes.append({'path': rule.rule, 'methods': methods, 'endpoint': rule.endpoint})
        return jsonify({'routes': routes})

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(SpotterLogError)
    def domain_error(e: SpotterLogError):
        logger.warning(f'{type(e).__name__}: {e.message}')
        return error_response(e.status_code, e.message, e.details)

    @app.errorhandler(404)
    def not_found(e):
        return error_response(404, 'Not found')

    @app.errorhandler(Exception)
    def server_error(e: Exception):
        if isinstance(e, HTTPException):
            return error_response(e.code or 500, e.description or HTTPStatus(e.code or 500).phrase)
        logger.exception('Unexpected error occurred')
        return error_response(500, SpotterLogError.default_message)

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    port = int(os.environ.get('PORT', 5000))
    logger.info(f'Starting SpotterLog on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
        use_reloader=False,  # Reloader would start a second worker pool
    )


if __name__ == '__main__':
    run_development_server()
