"""
Redis-backed circuit breaker for the Microsoft Graph API.

State lives in Redis so the web process and every RQ worker share one view
of Graph health:
  - closed     → calls pass through
  - open       → failure_threshold consecutive failures; calls raise CircuitOpenError
  - half_open  → reset_timeout elapsed; the next call is a probe

Redis trouble never blocks a sync: breaker bookkeeping fails open.
"""
import logging
import time
from functools import wraps

from greenbook.sync.base import GreenbookError

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(GreenbookError):
    """Raised instead of calling a service whose breaker is open."""

    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open, service unavailable")


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker('graph', redis_client, ignore=(GraphNotFound,))
        page = breaker.call(session.get, url, timeout=30)

    Exceptions listed in `ignore` propagate without counting as failures
    (a 404 for one user says nothing about Graph's health).
    """

    PREFIX = 'greenbook:cb'

    def __init__(self, name, redis_client, failure_threshold=5, reset_timeout=120, ignore=()):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.ignore = tuple(ignore)

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State ─────────────────────────────────────────────────────────

    def _opened_at(self):
        try:
            value = self.redis.get(self._key('opened_at'))
            return float(value) if value else None
        except Exception:
            return None

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state')) or CLOSED
        except Exception:
            return CLOSED
        if current == OPEN:
            opened_at = self._opened_at()
            if opened_at is None or time.time() - opened_at >= self.reset_timeout:
                return HALF_OPEN
        return current

    @property
    def failure_count(self):
        try:
            return int(self.redis.get(self._key('failures')) or 0)
        except Exception:
            return 0

    def retry_after(self):
        opened_at = self._opened_at()
        if opened_at is None:
            return None
        return max(0.0, self.reset_timeout - (time.time() - opened_at))

    # ── Bookkeeping ───────────────────────────────────────────────────

    def _record_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Circuit '%s': could not record success", self.name, exc_info=True)

    def _record_failure(self, error):
        try:
            failures = self.redis.incr(self._key('failures'))
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', str(time.time()))
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            if failures >= self.failure_threshold:
                pipe.set(self._key('state'), OPEN)
                pipe.set(self._key('opened_at'), str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Circuit '%s': could not record failure", self.name, exc_info=True)
            return

        if failures >= self.failure_threshold:
            logger.warning("Circuit '%s' opened after %d failures: %s", self.name, failures, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, failures, self.failure_threshold, error)

    # ── Calls ─────────────────────────────────────────────────────────

    def call(self, func, *args, **kwargs):
        if self.state == OPEN:
            raise CircuitOpenError(self.name, retry_after=self.retry_after())
        try:
            result = func(*args, **kwargs)
        except self.ignore:
            self._record_success()
            raise
        except Exception as e:
            self._record_failure(e)
            raise
        self._record_success()
        return result

    def protect(self, func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def reset(self):
        try:
            self.redis.delete(self._key('state'), self._key('failures'), self._key('opened_at'))
            logger.info("Circuit '%s' reset", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def get_health(self):
        try:
            data = self.redis.hgetall(self._key('health')) or {}
        except Exception:
            data = {}
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_error': data.get('last_error', ''),
        }


# ── Registry ──────────────────────────────────────────────────────────────

_registry = {}


def get_breaker(name, redis_client=None, **kwargs):
    """Named breaker singleton; created against the shared Redis client on first use."""
    if name not in _registry:
        if redis_client is None:
            from greenbook.extensions import redis_client
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """Register the breakers for every external service Greenbook calls."""
    from greenbook.services.graph import GraphNotFound

    _registry['graph'] = CircuitBreaker(
        'graph', redis_client, failure_threshold=5, reset_timeout=120, ignore=(GraphNotFound,),
    )
    return dict(_registry)
