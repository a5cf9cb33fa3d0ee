"""Tests for the SQLite-backed cache and credential stores."""

from __future__ import annotations

import pytest

from conftest import KEY_A, KEY_B, KEY_C, TEST_FERNET_KEY
from synthgate.core.encryption import SecretCipher
from synthgate.core.security import hash_credential
from synthgate.db.engine import create_all, create_engine
from synthgate.gateway.cache import ResponseCache
from synthgate.gateway.credential_pool import CredentialPool
from synthgate.gateway.stores import SqlCacheStore, SqlCredentialStore
from synthgate.gateway.types import CacheEntry, GenerationPayload


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/gateway.db")
    await create_all(engine)
    yield engine
    await engine.dispose()


# ==========================================================================
# Test: SqlCacheStore
# ==========================================================================


class TestSqlCacheStore:
    @pytest.mark.asyncio
    async def test_put_get_bytes_and_text(self, engine):
        store = SqlCacheStore(engine)
        await store.put(CacheEntry(key="a" * 64, result=b"\x00\xffaudio", created_at=10.0))
        await store.put(CacheEntry(key="b" * 64, result="こんにちは", created_at=11.0))

        audio = await store.get("a" * 64)
        text = await store.get("b" * 64)
        assert audio.result == b"\x00\xffaudio"
        assert text.result == "こんにちは"
        assert text.created_at == 11.0
        assert await store.get("c" * 64) is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self, engine):
        store = SqlCacheStore(engine)
        await store.put(CacheEntry(key="k", result=b"old", created_at=1.0))
        await store.put(CacheEntry(key="k", result=b"new", created_at=2.0))
        assert (await store.get("k")).result == b"new"
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_delete_and_age_pruning(self, engine):
        store = SqlCacheStore(engine)
        for i in range(5):
            await store.put(CacheEntry(key=f"k{i}", result=b"x", created_at=float(i)))

        await store.delete("k4")
        assert await store.delete_older_than(2.0) == 2
        assert await store.count() == 2
        assert await store.delete_oldest(1) == 1
        assert [e.key for e in await store.recent(10)] == ["k3"]
        assert await store.delete_oldest(0) == 0

    @pytest.mark.asyncio
    async def test_recent_newest_first(self, engine):
        store = SqlCacheStore(engine)
        for i in range(4):
            await store.put(CacheEntry(key=f"k{i}", result=b"x", created_at=float(i)))

        assert [e.key for e in await store.recent(2)] == ["k3", "k2"]
        assert [e.key for e in await store.recent(10, newer_than=1.0)] == ["k3", "k2"]

    @pytest.mark.asyncio
    async def test_cache_survives_restart(self, tmp_path, clock):
        url = f"sqlite+aiosqlite:///{tmp_path}/cache.db"
        payload = GenerationPayload(content="persist me")

        store = SqlCacheStore.from_url(url)
        await store.initialize()
        cache = ResponseCache(store, clock=clock)
        await cache.put(payload, b"audio-bytes")
        await cache.close()
        await store.close()

        store = SqlCacheStore.from_url(url)
        await store.initialize()
        cache = ResponseCache(store, clock=clock)
        assert await cache.get(payload, memory_only=True) is None
        assert (await cache.get(payload)).result == b"audio-bytes"
        await store.close()


# ==========================================================================
# Test: SqlCredentialStore
# ==========================================================================


class TestSqlCredentialStore:
    @pytest.mark.asyncio
    async def test_usage_roundtrip(self, engine):
        store = SqlCredentialStore(engine)
        key_hash = hash_credential(KEY_A)
        await store.save_usage({key_hash: {"usage_count": 3, "last_used_at": 5.0, "cooldown_until": 99.0}})
        await store.save_usage({key_hash: {"usage_count": 4, "last_used_at": 6.0, "cooldown_until": None}})

        usage = await store.load_usage()
        assert usage == {key_hash: {"usage_count": 4, "last_used_at": 6.0, "cooldown_until": None}}

        await store.delete_usage(key_hash)
        assert await store.load_usage() == {}

    @pytest.mark.asyncio
    async def test_secrets_encrypted_at_rest(self, engine):
        store = SqlCredentialStore(engine, cipher=SecretCipher(TEST_FERNET_KEY))
        await store.save_secrets([KEY_B, KEY_C])

        assert await store.load_secrets() == [KEY_B, KEY_C]
        async with engine.connect() as conn:
            raw = (await conn.exec_driver_sql("SELECT ciphertext FROM credential_secrets")).scalars().all()
        assert all(KEY_B.encode() not in blob and KEY_C.encode() not in blob for blob in raw)

    @pytest.mark.asyncio
    async def test_save_secrets_replaces(self, engine):
        store = SqlCredentialStore(engine, cipher=SecretCipher(TEST_FERNET_KEY))
        await store.save_secrets([KEY_B, KEY_C])
        await store.save_secrets([KEY_C])
        assert await store.load_secrets() == [KEY_C]

    @pytest.mark.asyncio
    async def test_no_cipher_means_no_secrets(self, engine):
        store = SqlCredentialStore(engine)
        await store.save_secrets([KEY_B])
        assert await store.load_secrets() == []

    @pytest.mark.asyncio
    async def test_pool_state_survives_restart(self, tmp_path, clock):
        url = f"sqlite+aiosqlite:///{tmp_path}/pool.db"
        cipher = SecretCipher(TEST_FERNET_KEY)

        store = SqlCredentialStore.from_url(url, cipher=cipher)
        await store.initialize()
        pool = CredentialPool([KEY_A], store=store, clock=clock)
        await pool.initialize()
        await pool.record_success()
        await pool.record_success()
        await pool.add_credential(KEY_B)
        await pool.record_rate_limit("key_1", cooldown=30.0)
        await store.close()

        store = SqlCredentialStore.from_url(url, cipher=cipher)
        await store.initialize()
        pool = CredentialPool([KEY_A], store=store, clock=clock)
        await pool.initialize()

        assert len(pool) == 2
        assert pool.get("key_1").usage_count == 2
        assert pool.get("key_1").cooldown_until == pytest.approx(clock() + 30.0)
        assert (await pool.select_usable()).slot_id == "key_2"
        await store.close()
