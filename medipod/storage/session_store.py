"""
Conversation session storage with an inactivity TTL.

Two backends share one interface: Redis for deployments (sessions
survive restarts and are shared across workers) and an in-process store
for the console demo and tests. Every read extends the TTL unless the
caller opts out.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as redis

from medipod.config import SessionConfig, settings
from medipod.errors import SessionExpired
from medipod.schemas.session_schema import Session

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLock:
    """FIFO asyncio locks per key. A key's lock is dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LockEntry())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(key, None)


class SessionStore(ABC):
    """Key-value store for sessions keyed by normalized identity."""

    @abstractmethod
    async def get(self, identity: str, extend: bool = True) -> Optional[Session]:
        """Load a session. Absence is a normal result."""

    @abstractmethod
    async def put(
        self,
        identity: str,
        session: Session,
        ttl: Optional[int] = None,
        keep_ttl: bool = False,
    ) -> None:
        """Store a session for ``ttl`` seconds, or keep its current expiry."""

    @abstractmethod
    async def delete(self, identity: str) -> None:
        ...

    @abstractmethod
    async def list_active(self) -> list[Session]:
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop sessions past their expiry and return how many were removed."""

    @abstractmethod
    def lock(self, identity: str):
        """Async context manager serialising work on one identity."""


class InMemorySessionStore(SessionStore):
    """Process-local store. Sessions are held as JSON like the Redis backend."""

    def __init__(
        self,
        config: SessionConfig = settings.session,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = config.ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, tuple[str, datetime]] = {}
        self._locks = KeyedLock()

    def _expiry(self, ttl: Optional[int]) -> datetime:
        return self._clock() + timedelta(seconds=ttl if ttl is not None else self._ttl)

    async def get(self, identity: str, extend: bool = True) -> Optional[Session]:
        entry = self._entries.get(identity)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[identity]
            raise SessionExpired(f"Session for {identity} expired at {expires_at.isoformat()}")
        if extend:
            expires_at = self._expiry(None)
            self._entries[identity] = (payload, expires_at)
        session = Session.model_validate_json(payload)
        session.expires_at = expires_at
        return session

    async def put(
        self,
        identity: str,
        session: Session,
        ttl: Optional[int] = None,
        keep_ttl: bool = False,
    ) -> None:
        existing = self._entries.get(identity)
        if keep_ttl and existing is not None:
            expires_at = existing[1]
        else:
            expires_at = self._expiry(ttl)
        session.expires_at = expires_at
        self._entries[identity] = (session.model_dump_json(), expires_at)

    async def delete(self, identity: str) -> None:
        self._entries.pop(identity, None)

    async def list_active(self) -> list[Session]:
        now = self._clock()
        sessions = []
        for payload, expires_at in self._entries.values():
            if expires_at > now:
                session = Session.model_validate_json(payload)
                session.expires_at = expires_at
                sessions.append(session)
        return sessions

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    @asynccontextmanager
    async def lock(self, identity: str) -> AsyncIterator[None]:
        async with self._locks.hold(identity):
            yield


class RedisSessionStore(SessionStore):
    """Redis-backed store. Expiry is enforced by Redis key TTLs."""

    def __init__(self, client: redis.Redis, config: SessionConfig = settings.session) -> None:
        self._client = client
        self._config = config

    def _key(self, identity: str) -> str:
        return f"{self._config.key_prefix}{identity}"

    @staticmethod
    def _decode(raw) -> str:
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    async def get(self, identity: str, extend: bool = True) -> Optional[Session]:
        key = self._key(identity)
        raw = await self._client.get(key)
        if raw is None:
            return None
        if extend:
            await self._client.expire(key, self._config.ttl_seconds)
        return Session.model_validate_json(self._decode(raw))

    async def put(
        self,
        identity: str,
        session: Session,
        ttl: Optional[int] = None,
        keep_ttl: bool = False,
    ) -> None:
        key = self._key(identity)
        payload = session.model_dump_json()
        if keep_ttl:
            # xx: only overwrite a live key, otherwise fall through and set a TTL
            if await self._client.set(key, payload, keepttl=True, xx=True):
                return
        await self._client.set(key, payload, ex=ttl if ttl is not None else self._config.ttl_seconds)

    async def delete(self, identity: str) -> None:
        await self._client.delete(self._key(identity))

    async def list_active(self) -> list[Session]:
        sessions = []
        async for key in self._client.scan_iter(match=f"{self._config.key_prefix}*"):
            raw = await self._client.get(key)
            if raw is not None:
                sessions.append(Session.model_validate_json(self._decode(raw)))
        return sessions

    async def purge_expired(self) -> int:
        """Remove session keys that have lost their TTL."""
        removed = 0
        async for key in self._client.scan_iter(match=f"{self._config.key_prefix}*"):
            ttl = await self._client.ttl(key)
            # -1: no expiry set; 0: expiring this instant
            if ttl == -1 or ttl == 0:
                await self._client.delete(key)
                removed += 1
        if removed:
            logger.info("Purged %d sessions without expiry", removed)
        return removed

    @asynccontextmanager
    async def lock(self, identity: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            f"{self._config.lock_prefix}{identity}",
            timeout=self._config.lock_timeout_sec,
            blocking_timeout=self._config.lock_timeout_sec,
        )
        async with lock:
            yield


def create_redis_client(config: SessionConfig = settings.session) -> redis.Redis:
    logger.info("Connecting session store to %s", config.redis_url)
    return redis.from_url(config.redis_url, decode_responses=True)


def build_session_store(config: SessionConfig = settings.session) -> SessionStore:
    """Pick the session backend named by SESSION_BACKEND."""
    if config.backend == "redis":
        return RedisSessionStore(create_redis_client(config), config)
    return InMemorySessionStore(config)
