"""
cache/store.py -- Expiring key-value store used to persist session records.

The session layer only ever needs four single-key commands: SET with a TTL,
GET, EXPIRE and DEL. ExpiringStore names that contract; two backends
implement it:

  RedisStore   -- production. Thin wrapper over redis-py with decode_responses
                  so values come back as str. Redis' native key expiry is the
                  sole authority on session liveness.
  MemoryStore  -- dev and tests. Dict of key -> (value, expires_at) with an
                  injectable monotonic clock so tests can step time forward
                  instead of sleeping. Not shared between processes.

Neither backend catches exceptions. Deciding what an outage means
("not authenticated") is the session manager's job, not the store's.

Usage:
    store = open_store(get_settings())
    store.set("session:abc", '{"user_id": "..."}', ttl_seconds=86400)
    store.get("session:abc")          # str or None
    store.expire("session:abc", 86400)  # True if the key existed
    store.delete("session:abc")       # number of keys removed
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from redis import Redis

from core.config import Settings

logger = logging.getLogger("slidingauth.store")


class ExpiringStore(Protocol):
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def expire(self, key: str, ttl_seconds: int) -> bool: ...

    def delete(self, key: str) -> int: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisStore:
    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        # Explicit timeouts: the session layer has no timeout of its own.
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(key, value, ex=ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL. EXPIRE never creates a key, so a miss returns False."""
        return bool(self.client.expire(key, ttl_seconds))

    def delete(self, key: str) -> int:
        return int(self.client.delete(key))

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


class MemoryStore:
    """In-process expiring store with the same semantics as the Redis commands used.

    Expired keys are evicted lazily on access and in bulk by purge_expired().
    The lock makes each command atomic, which is what Redis guarantees for
    single-key commands; TestClient runs sync handlers on a thread pool.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[tuple[str, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
        return entry[0] if entry is not None else None

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._clock() + ttl_seconds)
            return True

    def delete(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return 0
            del self._data[key]
            return 1

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, or None if absent. Mirrors Redis TTL for tests."""
        with self._lock:
            entry = self._live(key)
            return entry[1] - self._clock() if entry is not None else None

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
            for k in expired:
                del self._data[k]
        return len(expired)

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._data)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._data.clear()


def open_store(settings: Settings) -> ExpiringStore:
    """Build the session store configured by settings.

    Called once from the app lifespan; the handle is injected into
    SessionManager rather than living as a module-level client.
    """
    if settings.redis_url:
        logger.info("Session store: redis")
        return RedisStore(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    logger.info("Session store: in-process memory")
    return MemoryStore()
