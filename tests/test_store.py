"""
tests/test_store.py -- Unit tests for cache/store.py and auth/store.py.

Covers:
  - MemoryStore: Redis-like SET/GET/EXPIRE/DEL semantics on a fake clock
  - RedisStore: command mapping onto a mocked redis client
  - open_store(): backend selection from settings
  - _purge_loop and lifespan: expired in-process sessions are evicted in the background
  - UserStore: CRUD, email normalization, duplicate and bad-field errors
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from sqlalchemy.exc import IntegrityError

import api.main as main
import cache.store as cache_store
from auth.models import User
from cache.store import MemoryStore, RedisStore, open_store
from core.config import Settings

# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class TestMemoryStore:
    def test_set_get(self, memory_store) -> None:
        memory_store.set("k", "v", 10)
        assert memory_store.get("k") == "v"

    def test_get_missing(self, memory_store) -> None:
        assert memory_store.get("missing") is None

    def test_key_expires_at_ttl(self, memory_store, clock) -> None:
        memory_store.set("k", "v", 10)
        clock.advance(9)
        assert memory_store.get("k") == "v"
        clock.advance(1)
        assert memory_store.get("k") is None

    def test_set_overwrites_value_and_ttl(self, memory_store, clock) -> None:
        memory_store.set("k", "a", 10)
        memory_store.set("k", "b", 100)
        clock.advance(50)
        assert memory_store.get("k") == "b"

    def test_non_positive_ttl_rejected(self, memory_store) -> None:
        with pytest.raises(ValueError):
            memory_store.set("k", "v", 0)

    def test_expire_resets_ttl(self, memory_store, clock) -> None:
        memory_store.set("k", "v", 10)
        clock.advance(8)
        assert memory_store.expire("k", 10) is True
        clock.advance(8)
        assert memory_store.get("k") == "v"
        assert memory_store.ttl("k") == 2

    def test_expire_missing_or_expired_key(self, memory_store, clock) -> None:
        assert memory_store.expire("missing", 10) is False
        memory_store.set("k", "v", 10)
        clock.advance(10)
        assert memory_store.expire("k", 10) is False
        assert memory_store.get("k") is None

    def test_delete_counts(self, memory_store) -> None:
        memory_store.set("k", "v", 10)
        assert memory_store.delete("k") == 1
        assert memory_store.delete("k") == 0

    def test_purge_expired(self, memory_store, clock) -> None:
        memory_store.set("short", "v", 5)
        memory_store.set("long", "v", 50)
        clock.advance(10)
        assert memory_store.purge_expired() == 1
        assert len(memory_store) == 1

    def test_close_empties(self, memory_store) -> None:
        memory_store.set("k", "v", 10)
        memory_store.close()
        assert len(memory_store) == 0

    def test_ping(self, memory_store) -> None:
        assert memory_store.ping() is True


# ---------------------------------------------------------------------------
# Background purge
# ---------------------------------------------------------------------------


async def _run_purge_loop_briefly(store: MemoryStore) -> None:
    task = asyncio.create_task(main._purge_loop(store, interval=0))
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestPurgeLoop:
    def test_abandoned_sessions_are_evicted(self, memory_store, clock) -> None:
        memory_store.set("session:gone", "{}", 5)
        memory_store.set("session:live", "{}", 50)
        clock.advance(10)
        asyncio.run(_run_purge_loop_briefly(memory_store))
        assert set(memory_store._data) == {"session:live"}

    def test_loop_keeps_running_after_empty_pass(self) -> None:
        store = MagicMock()
        store.purge_expired.return_value = 0
        asyncio.run(_run_purge_loop_briefly(store))
        assert store.purge_expired.call_count >= 2

    def test_lifespan_starts_and_cancels_task_for_memory_store(self, monkeypatch) -> None:
        settings = Settings(
            _env_file=None,
            database_url=f"sqlite:///file:test_lifespan_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
        )
        monkeypatch.setattr(main, "get_settings", lambda: settings)
        app = FastAPI()

        async def run() -> None:
            async with main.lifespan(app):
                assert isinstance(app.state.session_store, MemoryStore)
                assert not app.state.purge_task.done()
            with pytest.raises(asyncio.CancelledError):
                await app.state.purge_task

        asyncio.run(run())
        assert app.state.purge_task.cancelled()


# ---------------------------------------------------------------------------
# RedisStore
# ---------------------------------------------------------------------------


@pytest.fixture()
def redis_client(monkeypatch) -> MagicMock:
    client = MagicMock()
    monkeypatch.setattr(cache_store.Redis, "from_url", MagicMock(return_value=client))
    return client


class TestRedisStore:
    def test_client_options(self, redis_client) -> None:
        RedisStore("redis://cache:6379/0", socket_timeout=2.5)
        cache_store.Redis.from_url.assert_called_once_with(
            "redis://cache:6379/0",
            decode_responses=True,
            socket_timeout=2.5,
            socket_connect_timeout=2.5,
        )

    def test_set_uses_ex(self, redis_client) -> None:
        RedisStore("redis://cache").set("session:a", "{}", 86400)
        redis_client.set.assert_called_once_with("session:a", "{}", ex=86400)

    def test_expire_maps_to_bool(self, redis_client) -> None:
        store = RedisStore("redis://cache")
        redis_client.expire.return_value = 1
        assert store.expire("session:a", 60) is True
        redis_client.expire.return_value = 0
        assert store.expire("session:a", 60) is False

    def test_get_and_delete_pass_through(self, redis_client) -> None:
        store = RedisStore("redis://cache")
        redis_client.get.return_value = "value"
        redis_client.delete.return_value = 1
        assert store.get("session:a") == "value"
        assert store.delete("session:a") == 1

    def test_errors_propagate(self, redis_client) -> None:
        from redis.exceptions import ConnectionError as RedisConnectionError

        redis_client.get.side_effect = RedisConnectionError("down")
        with pytest.raises(RedisConnectionError):
            RedisStore("redis://cache").get("session:a")


class TestOpenStore:
    def test_memory_without_redis_url(self) -> None:
        assert isinstance(open_store(Settings(_env_file=None)), MemoryStore)

    def test_redis_with_url(self, redis_client) -> None:
        store = open_store(Settings(_env_file=None, redis_url="redis://cache:6379/0"))
        assert isinstance(store, RedisStore)

    def test_production_requires_redis(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, environment="production")


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


class TestUserStore:
    def test_create_assigns_id_and_timestamps(self, user_store, make_user) -> None:
        user = make_user(user_store)
        assert len(user.id) == 32
        assert user.created_at and user.updated_at
        assert user.email_verified is False
        assert user.role == "user"

    def test_email_is_normalized(self, user_store, make_user) -> None:
        user = make_user(user_store, email="  Ada@Example.COM ")
        assert user.email == "ada@example.com"
        assert user_store.get_by_email("ADA@example.com").id == user.id

    def test_duplicate_email_raises(self, user_store, make_user) -> None:
        make_user(user_store)
        with pytest.raises(IntegrityError):
            make_user(user_store, email="ADA@example.com")

    def test_unknown_role_rejected(self, user_store) -> None:
        with pytest.raises(ValueError):
            user_store.create_user(User(name="x", email="x@example.com", password_hash="h", salt="s", role="root"))

    def test_get_missing(self, user_store) -> None:
        assert user_store.get_by_email("nobody@example.com") is None
        assert user_store.get_by_id("0" * 32) is None

    def test_update_fields(self, user_store, make_user) -> None:
        user = make_user(user_store)
        updated = user_store.update_user(user.id, name="Augusta", email_verified=True)
        assert updated.name == "Augusta"
        assert updated.email_verified is True
        assert updated.email == user.email

    def test_update_unknown_field_rejected(self, user_store, make_user) -> None:
        user = make_user(user_store)
        with pytest.raises(ValueError):
            user_store.update_user(user.id, id="other")

    def test_update_bad_role_rejected(self, user_store, make_user) -> None:
        user = make_user(user_store)
        with pytest.raises(ValueError):
            user_store.update_user(user.id, role="root")

    def test_update_missing_user(self, user_store) -> None:
        assert user_store.update_user("0" * 32, name="x") is None

