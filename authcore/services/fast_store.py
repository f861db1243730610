"""Fast shared key-value store backed by Redis."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from redis import Redis
from redis.exceptions import RedisError

from authcore.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class FastStore(Protocol):
    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int: ...

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None, *, only_if_absent: bool = False) -> bool: ...

    def pop(self, key: str) -> Optional[str]: ...

    def delete(self, *keys: str) -> int: ...

    def exists(self, key: str) -> bool: ...

    def ttl(self, key: str) -> int: ...


class RedisFastStore:
    """
    Namespaced Redis wrapper.

    Every RedisError is re-raised as StoreUnavailableError; callers decide
    whether that means fail closed (lockout) or fail open (throttling).
    """

    # INCR and set the expiry only when the window opens, in one round trip.
    _INCR_WITH_EXPIRY_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

    def __init__(self, client: Redis, key_prefix: str = "") -> None:
        self.client = client
        self.key_prefix = key_prefix
        self._incr_with_expiry = client.register_script(self._INCR_WITH_EXPIRY_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str, *, key_prefix: str = "", socket_timeout: float = 5.0) -> "RedisFastStore":
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _unavailable(self, op: str, exc: RedisError) -> StoreUnavailableError:
        logger.error("Redis %s failed: %s", op, exc)
        return StoreUnavailableError("redis")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as exc:
            raise self._unavailable("ping", exc) from exc

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        try:
            return int(self._incr_with_expiry(keys=[self._key(key)], args=[max(1, int(ttl_seconds))]))
        except RedisError as exc:
            raise self._unavailable("incr", exc) from exc

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except RedisError as exc:
            raise self._unavailable("get", exc) from exc

    def set(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        *,
        only_if_absent: bool = False,
    ) -> bool:
        try:
            ex = max(1, int(ttl_seconds)) if ttl_seconds is not None else None
            return bool(self.client.set(self._key(key), value, ex=ex, nx=only_if_absent))
        except RedisError as exc:
            raise self._unavailable("set", exc) from exc

    def pop(self, key: str) -> Optional[str]:
        """Atomically read and delete; used for single-use tokens."""
        try:
            return self.client.getdel(self._key(key))
        except RedisError as exc:
            raise self._unavailable("getdel", exc) from exc

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.client.delete(*[self._key(k) for k in keys]))
        except RedisError as exc:
            raise self._unavailable("delete", exc) from exc

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(self._key(key)))
        except RedisError as exc:
            raise self._unavailable("exists", exc) from exc

    def ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(self._key(key)))
        except RedisError as exc:
            raise self._unavailable("ttl", exc) from exc
