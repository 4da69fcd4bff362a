"""Tests for the session stores."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from medipod.config import SessionConfig
from medipod.errors import SessionExpired
from medipod.schemas.session_schema import ConversationState, DraftBooking, Session
from medipod.storage.session_store import (
    InMemorySessionStore,
    KeyedLock,
    RedisSessionStore,
    build_session_store,
)
from tests.conftest import USER_ID, WEDNESDAY_10AM_UTC, FakeClock

CONFIG = replace(
    SessionConfig(),
    ttl_seconds=3600,
    key_prefix="test:session:",
    lock_prefix="test:lock:",
    lock_timeout_sec=10.0,
)


def make_session(**kwargs) -> Session:
    return Session(identity=USER_ID, **kwargs)


async def _keys(*keys):
    for key in keys:
        yield key


class TestInMemorySessionStore:
    def setup_method(self):
        self.clock = FakeClock(WEDNESDAY_10AM_UTC)
        self.store = InMemorySessionStore(CONFIG, clock=self.clock)

    @pytest.mark.asyncio
    async def test_missing_session_is_none(self):
        assert await self.store.get(USER_ID) is None

    @pytest.mark.asyncio
    async def test_round_trip(self):
        session = make_session(
            state=ConversationState.TIME_SELECTION,
            draft=DraftBooking(location="Westlands", zone="A", logistics_fee=215),
        )
        await self.store.put(USER_ID, session)
        loaded = await self.store.get(USER_ID)
        assert loaded.state == ConversationState.TIME_SELECTION
        assert loaded.draft == session.draft
        assert loaded.epoch == session.epoch

    @pytest.mark.asyncio
    async def test_expired_session_raises_and_is_removed(self):
        await self.store.put(USER_ID, make_session())
        self.clock.advance(seconds=3601)
        with pytest.raises(SessionExpired):
            await self.store.get(USER_ID)
        assert await self.store.get(USER_ID) is None

    @pytest.mark.asyncio
    async def test_read_extends_ttl(self):
        await self.store.put(USER_ID, make_session())
        self.clock.advance(seconds=3000)
        await self.store.get(USER_ID)
        self.clock.advance(seconds=3000)
        assert await self.store.get(USER_ID) is not None

    @pytest.mark.asyncio
    async def test_read_without_extend(self):
        await self.store.put(USER_ID, make_session())
        self.clock.advance(seconds=3000)
        await self.store.get(USER_ID, extend=False)
        self.clock.advance(seconds=700)
        with pytest.raises(SessionExpired):
            await self.store.get(USER_ID)

    @pytest.mark.asyncio
    async def test_keep_ttl_preserves_expiry(self):
        await self.store.put(USER_ID, make_session())
        first_expiry = (await self.store.get(USER_ID, extend=False)).expires_at
        self.clock.advance(seconds=1000)
        await self.store.put(USER_ID, make_session(), keep_ttl=True)
        assert (await self.store.get(USER_ID, extend=False)).expires_at == first_expiry

    @pytest.mark.asyncio
    async def test_keep_ttl_on_new_key_sets_ttl(self):
        session = make_session()
        await self.store.put(USER_ID, session, keep_ttl=True)
        assert session.expires_at is not None

    @pytest.mark.asyncio
    async def test_explicit_ttl(self):
        await self.store.put(USER_ID, make_session(), ttl=10)
        self.clock.advance(seconds=11)
        with pytest.raises(SessionExpired):
            await self.store.get(USER_ID)

    @pytest.mark.asyncio
    async def test_list_active_and_purge(self):
        await self.store.put("+254700000001", make_session(), ttl=10)
        await self.store.put("+254700000002", Session(identity="+254700000002"))
        self.clock.advance(seconds=60)
        active = await self.store.list_active()
        assert [s.identity for s in active] == ["+254700000002"]
        assert await self.store.purge_expired() == 1
        assert await self.store.purge_expired() == 0

    @pytest.mark.asyncio
    async def test_delete(self):
        await self.store.put(USER_ID, make_session())
        await self.store.delete(USER_ID)
        assert await self.store.get(USER_ID) is None

    @pytest.mark.asyncio
    async def test_lock_can_be_reacquired(self):
        async with self.store.lock(USER_ID):
            pass
        async with self.store.lock(USER_ID):
            pass

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self):
        for identity in ("+254700000001", "+254700000002", "+254700000003"):
            async with self.store.lock(identity):
                pass
        assert len(self.store._locks) == 0


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_entry_lives_only_while_held(self):
        locks = KeyedLock()
        async with locks.hold(USER_ID):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_waiters_run_in_arrival_order(self):
        locks = KeyedLock()
        order = []

        async def worker(n):
            async with locks.hold(USER_ID):
                await asyncio.sleep(0)
                order.append(n)

        await asyncio.gather(*(worker(n) for n in range(4)))
        assert order == [0, 1, 2, 3]
        assert len(locks) == 0


class TestRedisSessionStore:
    def setup_method(self):
        self.client = AsyncMock()
        self.store = RedisSessionStore(self.client, CONFIG)
        self.key = f"test:session:{USER_ID}"

    @pytest.mark.asyncio
    async def test_get_missing(self):
        self.client.get.return_value = None
        assert await self.store.get(USER_ID) is None
        self.client.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_extends_ttl(self):
        session = make_session(state=ConversationState.SUPPORT)
        self.client.get.return_value = session.model_dump_json()
        loaded = await self.store.get(USER_ID)
        assert loaded.state == ConversationState.SUPPORT
        self.client.get.assert_awaited_once_with(self.key)
        self.client.expire.assert_awaited_once_with(self.key, 3600)

    @pytest.mark.asyncio
    async def test_get_without_extend(self):
        self.client.get.return_value = make_session().model_dump_json()
        await self.store.get(USER_ID, extend=False)
        self.client.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self):
        self.client.get.return_value = make_session().model_dump_json().encode("utf-8")
        assert (await self.store.get(USER_ID)).identity == USER_ID

    @pytest.mark.asyncio
    async def test_put_sets_ttl(self):
        session = make_session()
        await self.store.put(USER_ID, session)
        self.client.set.assert_awaited_once_with(self.key, session.model_dump_json(), ex=3600)

    @pytest.mark.asyncio
    async def test_put_keep_ttl_on_live_key(self):
        self.client.set.return_value = True
        session = make_session()
        await self.store.put(USER_ID, session, keep_ttl=True)
        self.client.set.assert_awaited_once_with(
            self.key, session.model_dump_json(), keepttl=True, xx=True
        )

    @pytest.mark.asyncio
    async def test_put_keep_ttl_falls_back_when_key_gone(self):
        self.client.set.return_value = None
        session = make_session()
        await self.store.put(USER_ID, session, keep_ttl=True)
        assert self.client.set.await_count == 2
        assert self.client.set.await_args.kwargs == {"ex": 3600}

    @pytest.mark.asyncio
    async def test_delete(self):
        await self.store.delete(USER_ID)
        self.client.delete.assert_awaited_once_with(self.key)

    @pytest.mark.asyncio
    async def test_list_active(self):
        payload = make_session().model_dump_json()
        self.client.scan_iter = MagicMock(return_value=_keys("test:session:a", "test:session:b"))
        self.client.get.side_effect = [payload, None]
        sessions = await self.store.list_active()
        assert len(sessions) == 1
        self.client.scan_iter.assert_called_once_with(match="test:session:*")

    @pytest.mark.asyncio
    async def test_purge_removes_keys_without_expiry(self):
        self.client.scan_iter = MagicMock(return_value=_keys("test:session:a", "test:session:b"))
        self.client.ttl.side_effect = [-1, 1200]
        assert await self.store.purge_expired() == 1
        self.client.delete.assert_awaited_once_with("test:session:a")

    @pytest.mark.asyncio
    async def test_lock_uses_redis_lock(self):
        self.client.lock = MagicMock()
        async with self.store.lock(USER_ID):
            pass
        self.client.lock.assert_called_once_with(
            f"test:lock:{USER_ID}", timeout=10.0, blocking_timeout=10.0
        )
        self.client.lock.return_value.__aenter__.assert_awaited_once()


class TestBuildSessionStore:
    def test_memory_backend(self):
        store = build_session_store(replace(CONFIG, backend="memory"))
        assert isinstance(store, InMemorySessionStore)

    def test_redis_backend(self):
        store = build_session_store(replace(CONFIG, backend="redis",
                                            redis_url="redis://localhost:6379/9"))
        assert isinstance(store, RedisSessionStore)
