"""
Inbound request gate - per-caller rate limiting at the request boundary.

Runs as a Flask ``before_request`` hook, ahead of every view:

- operational endpoints (health, docs, metrics) pass untouched
- authenticated callers are keyed ``user:<id>`` and get the user policy
- anonymous callers are keyed ``ip:<addr>`` and get the stricter
  anonymous policy; behind a proxy the first ``X-Forwarded-For`` value
  is the client address

An over-quota request is answered with a fixed 429 body and never
reaches the view. Only the resolved key is logged.
"""

import logging
import threading
from typing import Sequence

from flask import Flask, request, jsonify

from spotterlog.auth import Identity, resolve_identity
from spotterlog.ratelimit import RateLimiterRegistry

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED = {
    'error': 'Rate limit exceeded',
    'message': 'Too many requests. Please try again later.',
}


def client_address() -> str:
    """Client IP, honoring the first value of a single X-Forwarded-For header."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    return request.remote_addr or 'unknown'


def resolve_key(identity: Identity) -> str:
    if identity.is_authenticated:
        return f'user:{identity.user_id}'
    return f'ip:{client_address()}'


class InboundRequestGate:
    """Rejects callers that have exhausted their bucket."""

    def __init__(self, registry: RateLimiterRegistry, exempt_prefixes: Sequence[str] = ()):
        self.registry = registry
        self.exempt_prefixes = tuple(exempt_prefixes)
        self._lock = threading.Lock()
        self._allowed = 0
        self._rejected = 0

    def init_app(self, app: Flask) -> None:
        app.before_request(self.check)
        app.extensions['inbound_gate'] = self

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.exempt_prefixes)

    def check(self):
        """``before_request`` hook; returns a response only when rejecting."""
        # CORS preflights are issued by the browser, not the caller
        if request.method == 'OPTIONS' or self.is_exempt(request.path):
            return None

        identity = resolve_identity()
        key = resolve_key(identity)
        bucket = self.registry.resolve_bucket(key, self.registry.policy_for(identity.is_authenticated))

        if bucket.try_consume(1):
            with self._lock:
                self._allowed += 1
            return None

        with self._lock:
            self._rejected += 1
        logger.warning(f'Rate limit exceeded for key: {key}')
        response = jsonify(RATE_LIMIT_EXCEEDED)
        response.status_code = 429
        return response

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                'allowed': self._allowed,
                'rejected': self._rejected,
            }
