"""
Fixed-window rate limiting for automation runs.

The limiter is injected into the trigger resolver and keyed by automation
id. Counters live in a TTL-capable store: Redis when
``scheduler.redis_url`` is configured, otherwise an in-process store.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis

from errors import PersistenceError

logger = logging.getLogger(__name__)


class TTLStore:
    """Interface for counter stores with per-key expiry."""

    def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        """Increment key, setting its expiry when it is created. Returns the new count."""
        raise NotImplementedError

    def ttl(self, key: str) -> int:
        """Seconds until key expires, or -1 when it does not exist."""
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError


class InMemoryTTLStore(TTLStore):
    """Thread-safe in-process TTL store."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}  # key -> (count, expires_at)
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[int, float]]:
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._counters[key]
            return None
        return entry

    def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = (0, self._clock() + ttl_seconds)
            count = entry[0] + 1
            self._counters[key] = (count, entry[1])
            return count

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -1
            return max(0, int(entry[1] - self._clock()))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._counters.pop(key, None) is not None


class RedisTTLStore(TTLStore):
    """
    Redis-backed TTL store, shared by every scheduler process.

    Counters use INCR, with EXPIRE set when the counter is created so the
    window is fixed from the first run in it.
    """

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize the store.

        Args:
            url: Redis URL (defaults to config.scheduler.redis_url)
            client: Already connected client to use instead of url
        """
        from config import config

        self.url = url or config.scheduler.redis_url
        self.redis: Optional[redis.Redis] = client

    def connect(self) -> None:
        """Connect to Redis."""
        if self.redis is not None:
            return
        if not self.url:
            raise PersistenceError("No Redis URL configured for rate limiting")

        try:
            self.redis = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                health_check_interval=30,
                socket_keepalive=True,
                retry_on_timeout=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            # Test connection
            self.redis.ping()
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis = None
            raise PersistenceError(f"Redis connection failed: {e}") from e

    def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.redis is not None:
            self.redis.close()
            self.redis = None
            logger.info("Redis connection closed")

    def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        self.connect()
        try:
            count = int(self.redis.incr(key))
            if count == 1:
                self.redis.expire(key, ttl_seconds)
            return count
        except redis.RedisError as e:
            logger.error(f"Redis increment error: {e}")
            raise PersistenceError(f"Redis operation failed: {e}") from e

    def ttl(self, key: str) -> int:
        self.connect()
        try:
            ttl = int(self.redis.ttl(key))
        except redis.RedisError as e:
            logger.error(f"Redis ttl error: {e}")
            raise PersistenceError(f"Redis operation failed: {e}") from e
        # Redis reports -2 for a missing key
        return -1 if ttl == -2 else ttl

    def delete(self, key: str) -> bool:
        self.connect()
        try:
            return self.redis.delete(key) > 0
        except redis.RedisError as e:
            logger.error(f"Redis delete error: {e}")
            raise PersistenceError(f"Redis operation failed: {e}") from e


class RateLimiter:
    """Fixed-window counter limiter keyed by automation id."""

    def __init__(
        self,
        store: Optional[TTLStore] = None,
        max_runs: Optional[int] = None,
        window_seconds: Optional[int] = None
    ):
        """
        Initialize the limiter.

        Args:
            store: Counter store (defaults to Redis when a URL is configured,
                otherwise an in-memory store)
            max_runs: Runs allowed per window; 0 disables limiting
            window_seconds: Window length
        """
        from config import config

        if store is None:
            store = RedisTTLStore() if config.scheduler.redis_url else InMemoryTTLStore()
        self.store = store
        self.max_runs = config.scheduler.rate_limit_runs if max_runs is None else max_runs
        self.window_seconds = config.scheduler.rate_limit_window if window_seconds is None else window_seconds
        self.key_prefix = "automation_rate:"

    @property
    def enabled(self) -> bool:
        return self.max_runs > 0

    def is_allowed(self, key: str) -> Tuple[bool, int]:
        """
        Count a run for key and check it against the window.

        Args:
            key: Automation id

        Returns:
            Tuple of (allowed, seconds_until_reset)
        """
        if not self.enabled:
            return True, 0

        counter_key = f"{self.key_prefix}{key}"
        try:
            current_count = self.store.increment_with_expiry(counter_key, self.window_seconds)
            if current_count > self.max_runs:
                ttl = self.store.ttl(counter_key)
                return False, ttl if ttl > 0 else self.window_seconds
            return True, 0
        except Exception as e:
            logger.error(f"Rate limiter store error for {key}: {e}")
            # Fail closed
            return False, self.window_seconds

    def reset(self, key: str) -> bool:
        """Reset the counter for key."""
        try:
            return self.store.delete(f"{self.key_prefix}{key}")
        except Exception as e:
            logger.error(f"Rate limiter reset error for {key}: {e}")
            return False
