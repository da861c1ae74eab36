"""Session persistence for conversations.

Sessions are keyed by ``{application_id}:{session_id}`` and expire after a
fixed TTL measured from the last write. Each store also hands out a
per-key lock that the chat service holds for a whole turn, so two requests
for the same conversation never interleave.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import LockError

from shopagent.schemas.session import SessionState

logger = logging.getLogger(__name__)


class SessionLockError(Exception):
    """Raised when the per-session lock cannot be acquired in time."""


def session_key(application_id: str, session_id: str) -> str:
    return f"{application_id}:{session_id}"


class SessionStore(Protocol):
    async def get(self, key: str) -> SessionState | None: ...

    async def set(self, key: str, state: SessionState) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def touch(self, key: str) -> bool: ...

    def lock(self, key: str) -> AbstractAsyncContextManager[None]: ...

    async def ping(self) -> bool: ...


class InMemorySessionStore:
    """Process-local store; entries expire lazily on access."""

    backend = "memory"

    def __init__(self, ttl_seconds: int = 3600, lock_timeout_seconds: float = 60.0) -> None:
        self.ttl_seconds = ttl_seconds
        self.lock_timeout_seconds = lock_timeout_seconds
        self._data: dict[str, tuple[float, str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return payload

    async def get(self, key: str) -> SessionState | None:
        payload = self._live(key)
        return SessionState.model_validate_json(payload) if payload is not None else None

    async def set(self, key: str, state: SessionState) -> None:
        self._data[key] = (time.monotonic() + self.ttl_seconds, state.model_dump_json())

    async def delete(self, key: str) -> bool:
        # The key's lock stays: the deleting caller may still hold it.
        return self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def touch(self, key: str) -> bool:
        payload = self._live(key)
        if payload is None:
            return False
        self._data[key] = (time.monotonic() + self.ttl_seconds, payload)
        return True

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout_seconds)
        except TimeoutError as e:
            raise SessionLockError(f"Timed out waiting for session {key}") from e
        try:
            yield
        finally:
            lock.release()

    async def ping(self) -> bool:
        return True


class RedisSessionStore:
    """Redis-backed store shared across API workers."""

    backend = "redis"

    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: str = "agent:sess:",
        ttl_seconds: int = 3600,
        lock_timeout_seconds: float = 60.0,
    ) -> None:
        self.redis = redis
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.lock_timeout_seconds = lock_timeout_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> SessionState | None:
        payload = await self.redis.get(self._key(key))
        if payload is None:
            return None
        return SessionState.model_validate_json(payload)

    async def set(self, key: str, state: SessionState) -> None:
        await self.redis.set(self._key(key), state.model_dump_json(), ex=self.ttl_seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self.redis.delete(self._key(key)))

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(self._key(key)))

    async def touch(self, key: str) -> bool:
        return bool(await self.redis.expire(self._key(key), self.ttl_seconds))

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"{self.prefix}lock:{key}",
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        )
        if not await lock.acquire():
            raise SessionLockError(f"Timed out waiting for session {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Session lock for %s expired before release", key)

    async def ping(self) -> bool:
        return bool(await self.redis.ping())
