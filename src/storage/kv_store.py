"""
Key-Value Store
===============

String key/value persistence for the local engagement queue and the
delivery ledger.

Backends (fixed for the lifetime of the store):
    redis   - used when a server answers PING at construction time; later
              failures raise StoreUnavailableError
    memory  - process-local dict; used when Redis is unreachable at start
              (unless fallback_to_memory=False) or when memory_only=True

Values are opaque strings. Callers serialize, which lets the event store
notice and discard a corrupted value instead of failing here.

Without an explicit URL the connection comes from REDIS_URL, or from
REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD.
"""

import logging
from typing import Callable, Dict, Optional, TypeVar

import redis

from src.config.settings import env_value

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Redis client failures surfaced as StoreUnavailableError
BACKEND_ERRORS = (redis.RedisError, OSError)


def redis_url_from_env() -> str:
    url = env_value("REDIS_URL")
    if url:
        return url
    host = env_value("REDIS_HOST", "localhost")
    port = env_value("REDIS_PORT", 6379, int)
    db = env_value("REDIS_DB", 0, int)
    password = env_value("REDIS_PASSWORD")
    auth = f":{password}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


def _redact(url: str) -> str:
    return url.rsplit("@", 1)[-1]


class StoreUnavailableError(ConnectionError):
    """The configured Redis backend failed the operation; nothing was read or written."""
    pass


class KeyValueStore:
    """
    Prefixed string store on Redis, or on memory when Redis is not in use.

    The backend is chosen once, at construction. A store that connected to
    Redis never serves or accepts data from the memory dict afterwards: a
    failed operation raises StoreUnavailableError, so callers can tell an
    unreadable key from an absent one and a write is never acknowledged
    unless Redis holds it.

    Args:
        redis_url: Connection URL (environment if None)
        prefix: Namespace prepended to every key as "<prefix>:<key>"
        fallback_to_memory: False makes an unreachable Redis fatal at construction
        memory_only: Never touch Redis
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "shelfsignal",
        fallback_to_memory: bool = True,
        memory_only: bool = False,
    ):
        self.prefix = prefix
        self.fallback_to_memory = fallback_to_memory
        self._memory: Dict[str, str] = {}
        self._redis: Optional[redis.Redis] = None

        if not memory_only:
            self._redis = self._open(redis_url or redis_url_from_env())

    def _open(self, url: str) -> Optional[redis.Redis]:
        client = redis.from_url(url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5)
        try:
            client.ping()
        except BACKEND_ERRORS as e:
            if not self.fallback_to_memory:
                raise
            logger.warning(f"Redis at {_redact(url)} unreachable ({e}); queue kept in memory only")
            return None
        logger.info(f"Key-value store on Redis at {_redact(url)}")
        return client

    @property
    def backend(self) -> str:
        return "memory" if self._redis is None else "redis"

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _call(self, op: str, key: str, on_redis: Callable[[], T], on_memory: Callable[[], T]) -> T:
        if self._redis is None:
            return on_memory()
        try:
            return on_redis()
        except BACKEND_ERRORS as e:
            logger.warning(f"Redis {op} {key} failed: {e}")
            raise StoreUnavailableError(f"Redis {op} {key} failed: {e}") from e

    def get_raw(self, key: str) -> Optional[str]:
        """
        Stored string, or None when absent.

        Raises:
            StoreUnavailableError: Redis could not be read
        """
        k = self._key(key)
        return self._call("GET", k, lambda: self._redis.get(k), lambda: self._memory.get(k))

    def set_raw(self, key: str, value: str) -> bool:
        """
        Store `value` under `key`.

        Raises:
            StoreUnavailableError: Redis rejected the write (nothing stored)
        """
        k = self._key(key)

        def to_redis() -> bool:
            self._redis.set(k, value)
            return True

        def to_memory() -> bool:
            self._memory[k] = value
            return True

        return self._call("SET", k, to_redis, to_memory)

    def delete(self, key: str) -> bool:
        """True if the key existed."""
        k = self._key(key)
        return self._call(
            "DEL", k,
            lambda: self._redis.delete(k) > 0,
            lambda: self._memory.pop(k, None) is not None,
        )
