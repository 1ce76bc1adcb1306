"""
Token bucket rate limiting.

Two kinds of buckets share the same primitive:

- One process-wide bucket guarding the OpenSky quota. Every enrichment
  attempt, for every user, draws from it.
- Lazily created per-caller buckets (``user:<id>`` or ``ip:<addr>``)
  used by the inbound request gate.

Buckets refill intervally: ``refill_amount`` tokens are added once per
elapsed ``refill_interval``, computed lazily on access and capped at
``capacity``. Callers always get an immediate yes/no; there is no
blocking acquire.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Dict, Callable

from spotterlog.config import config, RateLimitConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class BucketPolicy:
    """Capacity and refill schedule for a family of buckets."""
    name: str
    capacity: int
    refill_interval: float  # seconds
    refill_amount: Optional[int] = None  # defaults to capacity

    @property
    def tokens_per_refill(self) -> int:
        return self.capacity if self.refill_amount is None else self.refill_amount


class TokenBucket:
    """
    Thread-safe token bucket.

    ``try_consume`` is a single check-and-decrement under the bucket's
    lock, so concurrent callers never drive the balance negative or
    spend the same token twice.
    """

    def __init__(
        self,
        key: str,
        capacity: int,
        refill_interval: float,
        refill_amount: Optional[int] = None,
        clock: Clock = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError('capacity must be positive')
        if refill_interval <= 0:
            raise ValueError('refill_interval must be positive')

        self.key = key
        self.capacity = capacity
        self.refill_interval = refill_interval
        self.refill_amount = capacity if refill_amount is None else refill_amount
        self._clock = clock

        self._lock = threading.Lock()
        self._tokens: float = float(capacity)
        self._last_refill: float = clock()
        self._last_used: float = self._last_refill

    @classmethod
    def from_policy(cls, key: str, policy: BucketPolicy, clock: Clock = time.monotonic) -> 'TokenBucket':
        return cls(
            key=key,
            capacity=policy.capacity,
            refill_interval=policy.refill_interval,
            refill_amount=policy.tokens_per_refill,
            clock=clock,
        )

    def _refill(self, now: float) -> None:
        # Caller holds self._lock
        elapsed = now - self._last_refill
        if elapsed < self.refill_interval:
            return
        periods = int(elapsed // self.refill_interval)
        self._tokens = min(float(self.capacity), self._tokens + periods * self.refill_amount)
        self._last_refill += periods * self.refill_interval

    def try_consume(self, tokens: int = 1) -> bool:
        """Consume ``tokens`` if that many are available; never blocks."""
        if tokens <= 0:
            raise ValueError('tokens must be positive')

        with self._lock:
            now = self._clock()
            self._refill(now)
            self._last_used = now
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    @property
    def available_tokens(self) -> int:
        with self._lock:
            self._refill(self._clock())
            return int(self._tokens)

    def idle_for(self, now: float) -> float:
        """Seconds since the bucket was last consumed from."""
        return now - self._last_used

    def __repr__(self) -> str:
        return f'<TokenBucket {self.key} {self._tokens:.0f}/{self.capacity}>'


class RateLimiterRegistry:
    """
    Holds the shared OpenSky bucket and the keyed inbound buckets.

    Lookups of an existing key are lock-free dict reads; only the
    create path takes the registry lock, and it re-checks under the
    lock so concurrent first access for one key yields one bucket.

    Inbound buckets idle for longer than ``idle_seconds`` are swept out
    opportunistically on the create path. With ``idle_seconds`` at
    least one refill window an evicted bucket was already full, so
    eviction never hands a caller extra tokens.
    """

    def __init__(
        self,
        opensky_policy: BucketPolicy,
        user_policy: BucketPolicy,
        anonymous_policy: BucketPolicy,
        idle_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
    ):
        self.opensky_policy = opensky_policy
        self.user_policy = user_policy
        self.anonymous_policy = anonymous_policy
        self.idle_seconds = idle_seconds
        self._clock = clock

        self.opensky_bucket = TokenBucket.from_policy('global:opensky', opensky_policy, clock)

        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep: float = clock()
        self._evicted = 0

    @classmethod
    def from_config(cls, rate_config: Optional[RateLimitConfig] = None, clock: Clock = time.monotonic) -> 'RateLimiterRegistry':
        """Create a registry from application configuration."""
        rc = rate_config or config.rate_limit
        return cls(
            opensky_policy=BucketPolicy('opensky', rc.opensky_capacity, rc.opensky_window_seconds),
            user_policy=BucketPolicy('user', rc.user_capacity, rc.user_window_seconds),
            anonymous_policy=BucketPolicy('anonymous', rc.anonymous_capacity, rc.anonymous_window_seconds),
            idle_seconds=rc.idle_bucket_seconds,
            clock=clock,
        )

    def consume_external(self, tokens: int = 1) -> bool:
        """Draw from the process-wide OpenSky quota."""
        return self.opensky_bucket.try_consume(tokens)

    def policy_for(self, authenticated: bool) -> BucketPolicy:
        return self.user_policy if authenticated else self.anonymous_policy

    def resolve_bucket(self, key: str, policy: BucketPolicy) -> TokenBucket:
        """Return the bucket for ``key``, creating it from ``policy`` on first use."""
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket

        with self._lock:
            self._sweep_idle()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket.from_policy(key, policy, self._clock)
                self._buckets[key] = bucket
                logger.debug(f'Created {policy.name} bucket for {key}')
            return bucket

    def _sweep_idle(self) -> None:
        # Caller holds self._lock
        if not self.idle_seconds:
            return
        now = self._clock()
        if now - self._last_sweep < self.idle_seconds / 2:
            return
        self._last_sweep = now

        stale = [k for k, b in self._buckets.items() if b.idle_for(now) > self.idle_seconds]
        for k in stale:
            del self._buckets[k]
        if stale:
            self._evicted += len(stale)
            logger.info(f'Evicted {len(stale)} idle rate limit buckets')

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, key: str) -> bool:
        return key in self._buckets

    @property
    def stats(self) -> dict:
        return {
            'opensky_tokens': self.opensky_bucket.available_tokens,
            'opensky_capacity': self.opensky_bucket.capacity,
            'inbound_buckets': len(self._buckets),
            'evicted_buckets': self._evicted,
        }


# Singleton instance
rate_limiters = RateLimiterRegistry.from_config()
