"""
Attempt limiting for sensitive operations such as role grants.

Counts attempts per identity string inside a fixed window anchored at the
identity's first attempt. Attempts 1..max_attempts are allowed; later ones
are denied until the window has elapsed, after which the identity starts
over.

Two backends:
- InMemoryAttemptLimiter: per-process counters sharded over independently
  locked buckets
- CacheAttemptLimiter: counters in the Django cache (django-redis in
  deployment) shared by every worker process
"""
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from functools import wraps
from typing import Callable, Dict, List, Optional, Tuple

from django.conf import settings
from django.core.cache import caches
from django.http import JsonResponse

from apps.core.exceptions import AttemptLimitExceeded
from apps.core.logging import SecurityLogger
from apps.core.middleware import get_client_ip

logger = logging.getLogger(__name__)


def _retry_after_seconds(remaining_ms: float) -> int:
    return max(1, math.ceil(remaining_ms / 1000))


class AttemptLimiter(ABC):
    """Time-windowed attempt counter keyed by identity string."""

    @abstractmethod
    def record(self, key: str, window_ms: int, max_attempts: int) -> Tuple[bool, int]:
        """
        Record one attempt for `key`.

        Returns:
            Tuple of (allowed, retry_after_seconds); retry_after is 0 when
            allowed and at least 1 when denied.
        """

    @abstractmethod
    def reset(self, key: str):
        """Forget all attempts for `key` (e.g. after a successful login)."""

    @abstractmethod
    def clear(self):
        """Forget all attempts."""


class InMemoryAttemptLimiter(AttemptLimiter):
    """
    Process-local limiter.

    Keys are spread over `shards` buckets, each with its own lock, so
    unrelated identities do not serialize on one lock. Expired entries of a
    bucket are evicted whenever that bucket is touched, which costs a scan
    of the bucket per call.
    """

    def __init__(self, shards: int = 16, clock: Callable[[], float] = time.monotonic):
        if shards < 1:
            raise ValueError("shards must be at least 1")
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(shards)]
        # key -> [window_start_ms, count, window_ms]
        self._buckets: List[Dict[str, list]] = [{} for _ in range(shards)]

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _shard(self, key: str) -> int:
        return hash(key) % len(self._buckets)

    def record(self, key: str, window_ms: int, max_attempts: int) -> Tuple[bool, int]:
        now_ms = self._now_ms()
        index = self._shard(key)
        bucket = self._buckets[index]

        with self._locks[index]:
            expired = [k for k, (started, _, window) in bucket.items() if now_ms - started >= window]
            for k in expired:
                del bucket[k]

            entry = bucket.get(key)
            if entry is None:
                bucket[key] = [now_ms, 1, window_ms]
                return True, 0

            started, count, _ = entry
            if count >= max_attempts:
                return False, _retry_after_seconds(started + window_ms - now_ms)

            entry[1] = count + 1
            return True, 0

    def reset(self, key: str):
        index = self._shard(key)
        with self._locks[index]:
            self._buckets[index].pop(key, None)

    def clear(self):
        for lock, bucket in zip(self._locks, self._buckets):
            with lock:
                bucket.clear()

    def __len__(self):
        return sum(len(bucket) for bucket in self._buckets)


class CacheAttemptLimiter(AttemptLimiter):
    """
    Limiter backed by a Django cache alias.

    The first attempt creates the counter with cache.add() and an expiry of
    one window; later attempts use cache.incr(), which is atomic in Redis.
    Denied attempts are counted too; the window start is not moved by them.
    """

    KEY_PREFIX = 'attempts:'

    def __init__(self, alias: str = 'default', clock: Callable[[], float] = time.time):
        self._alias = alias
        self._clock = clock

    @property
    def cache(self):
        return caches[self._alias]

    def _keys(self, key: str) -> Tuple[str, str]:
        base = f"{self.KEY_PREFIX}{key}"
        return f"{base}:count", f"{base}:start"

    def record(self, key: str, window_ms: int, max_attempts: int) -> Tuple[bool, int]:
        count_key, start_key = self._keys(key)
        now = self._clock()
        timeout = math.ceil(window_ms / 1000)

        if self.cache.add(count_key, 1, timeout=timeout):
            self.cache.set(start_key, now, timeout=timeout)
            return True, 0

        try:
            count = self.cache.incr(count_key)
        except ValueError:
            # Counter expired between add() and incr(); this is a fresh window
            self.cache.set(count_key, 1, timeout=timeout)
            self.cache.set(start_key, now, timeout=timeout)
            return True, 0

        if count <= max_attempts:
            return True, 0

        started = self.cache.get(start_key, now)
        return False, _retry_after_seconds(started * 1000 + window_ms - now * 1000)

    def reset(self, key: str):
        self.cache.delete_many(list(self._keys(key)))

    def clear(self):
        cache = self.cache
        if hasattr(cache, 'delete_pattern'):
            # django-redis
            cache.delete_pattern(f"{self.KEY_PREFIX}*")
        else:
            cache.clear()


_limiter: Optional[AttemptLimiter] = None
_limiter_lock = threading.Lock()


def _limiter_config() -> dict:
    config = {'BACKEND': 'memory', 'MAX_ATTEMPTS': 5, 'WINDOW_MS': 15 * 60 * 1000, 'CACHE_ALIAS': 'default'}
    config.update(getattr(settings, 'ATTEMPT_LIMITER', {}))
    return config


def get_attempt_limiter() -> AttemptLimiter:
    """Return the process-wide limiter, building it from settings on first use."""
    global _limiter
    if _limiter is None:
        with _limiter_lock:
            if _limiter is None:
                config = _limiter_config()
                if config['BACKEND'] == 'cache':
                    _limiter = CacheAttemptLimiter(alias=config['CACHE_ALIAS'])
                else:
                    _limiter = InMemoryAttemptLimiter()
                logger.info(f"Attempt limiter initialised: {_limiter.__class__.__name__}")
    return _limiter


def reset_attempt_limiter():
    """Clear and drop the process-wide limiter; the next use rebuilds it."""
    global _limiter
    with _limiter_lock:
        if _limiter is not None:
            _limiter.clear()
        _limiter = None


def _request_identity(request, identity_fields) -> str:
    data = getattr(request, 'data', None)
    if data is None:
        data = request.POST
    for name in identity_fields:
        try:
            value = data.get(name)
        except AttributeError:
            return ''
        if value:
            return str(value).strip().lower()
    return ''


def check_attempt_limit(request, operation: str, max_attempts: Optional[int] = None,
                        window_ms: Optional[int] = None, identity_fields=('phone', 'email'),
                        identity: Optional[str] = None):
    """
    Record an attempt for the request's client and target identity.

    The key is `operation:client-ip:identity`, where identity is the given
    `identity` or else the first non-empty field of `identity_fields` in the
    request body.

    Raises:
        AttemptLimitExceeded: the identity is out of attempts
    """
    config = _limiter_config()
    max_attempts = max_attempts or config['MAX_ATTEMPTS']
    window_ms = window_ms or config['WINDOW_MS']

    ip_address = get_client_ip(request)
    if identity is None:
        identity = _request_identity(request, identity_fields)
    key = f"{operation}:{ip_address}:{identity}"

    allowed, retry_after = get_attempt_limiter().record(key, window_ms, max_attempts)
    if allowed:
        return

    SecurityLogger.log_attempt_limit_exceeded(
        operation=operation,
        ip_address=ip_address,
        retry_after=retry_after,
        identity=identity or None,
    )
    raise AttemptLimitExceeded(
        f'Too many attempts. Please try again in {retry_after} seconds.',
        retry_after=retry_after,
        details={'operation': operation},
    )


def _find_request(args):
    for arg in args:
        if hasattr(arg, 'META') and hasattr(arg, 'method'):
            return arg
    raise TypeError("limit_attempts could not find the request among the view arguments")


def limit_attempts(operation: str, max_attempts: Optional[int] = None, window_ms: Optional[int] = None,
                   identity_fields=('phone', 'email')):
    """
    Decorator limiting attempts on a view function or APIView method.

    Over-limit requests get HTTP 429 with a Retry-After header and are not
    passed to the view.

    Usage:
        class OTPLoginView(APIView):
            @limit_attempts('otp_login')
            def post(self, request):
                ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            request = _find_request(args)
            try:
                check_attempt_limit(request, operation, max_attempts, window_ms, identity_fields)
            except AttemptLimitExceeded as e:
                response = JsonResponse(
                    {
                        'error': {
                            'code': e.code,
                            'message': e.message,
                            'retry_after': e.retry_after,
                        },
                        'request_id': getattr(request, 'request_id', None),
                    },
                    status=e.status_code
                )
                response['Retry-After'] = str(e.retry_after)
                return response
            return view_func(*args, **kwargs)

        return wrapped

    return decorator
