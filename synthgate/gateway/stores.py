"""SQLAlchemy-backed durable stores for the cache and the credential pool.

Both stores are keyed by one-way digests: cached results by ``hash_payload``
and credential state by ``hash_credential``. Raw request text never reaches the
database, and raw secrets only do so as Fernet ciphertext.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from synthgate.core.encryption import SecretCipher
from synthgate.core.security import hash_credential
from synthgate.db.engine import create_all, create_engine, create_session_factory
from synthgate.gateway.types import CacheEntry
from synthgate.models import CachedResult, CredentialSecret, CredentialUsage

logger = logging.getLogger(__name__)


class _SqlStore:
    def __init__(self, engine: AsyncEngine, owns_engine: bool = False):
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = create_session_factory(engine)
        self._owns_engine = owns_engine

    @classmethod
    def from_url(cls, database_url: str, **kwargs):
        return cls(create_engine(database_url), owns_engine=True, **kwargs)

    async def initialize(self) -> None:
        await create_all(self.engine)

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------


class SqlCacheStore(_SqlStore):
    """Persistent tier of the response cache."""

    async def get(self, key: str) -> CacheEntry | None:
        async with self.session_factory() as session:
            row = await session.get(CachedResult, key)
            if row is None:
                return None
            return _to_entry(row)

    async def put(self, entry: CacheEntry) -> None:
        is_text = isinstance(entry.result, str)
        data = entry.result.encode("utf-8") if is_text else entry.result
        async with self.session_factory() as session:
            await session.merge(
                CachedResult(
                    key_hash=entry.key,
                    data=data,
                    is_text=is_text,
                    created_at=entry.created_at,
                )
            )
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(CachedResult).where(CachedResult.key_hash == key))
            await session.commit()

    async def delete_older_than(self, cutoff: float) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(CachedResult).where(CachedResult.created_at < cutoff))
            await session.commit()
            return result.rowcount or 0

    async def count(self) -> int:
        async with self.session_factory() as session:
            return (await session.execute(select(func.count()).select_from(CachedResult))).scalar_one()

    async def delete_oldest(self, n: int) -> int:
        if n <= 0:
            return 0
        async with self.session_factory() as session:
            oldest = select(CachedResult.key_hash).order_by(CachedResult.created_at.asc()).limit(n)
            keys = list((await session.execute(oldest)).scalars())
            if not keys:
                return 0
            await session.execute(delete(CachedResult).where(CachedResult.key_hash.in_(keys)))
            await session.commit()
            return len(keys)

    async def recent(self, limit: int, newer_than: float = 0.0) -> list[CacheEntry]:
        """Newest entries first, optionally only those created after ``newer_than``."""
        async with self.session_factory() as session:
            stmt = (
                select(CachedResult)
                .where(CachedResult.created_at > newer_than)
                .order_by(CachedResult.created_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_entry(row) for row in rows]


def _to_entry(row: CachedResult) -> CacheEntry:
    result = row.data.decode("utf-8") if row.is_text else bytes(row.data)
    return CacheEntry(key=row.key_hash, result=result, created_at=row.created_at)


# ---------------------------------------------------------------------------
# Credential usage + encrypted secrets
# ---------------------------------------------------------------------------


class SqlCredentialStore(_SqlStore):
    """Durable usage counters/cooldowns and (optionally) runtime-added secrets."""

    def __init__(self, engine: AsyncEngine, owns_engine: bool = False, cipher: SecretCipher | None = None):
        super().__init__(engine, owns_engine=owns_engine)
        self.cipher = cipher

    async def load_usage(self) -> dict[str, dict]:
        async with self.session_factory() as session:
            rows = (await session.execute(select(CredentialUsage))).scalars().all()
            return {
                row.key_hash: {
                    "usage_count": row.usage_count,
                    "last_used_at": row.last_used_at,
                    "cooldown_until": row.cooldown_until,
                }
                for row in rows
            }

    async def save_usage(self, usage: dict[str, dict]) -> None:
        """Upsert usage rows. ``usage`` maps key hash to the same shape ``load_usage`` returns."""
        async with self.session_factory() as session:
            for key_hash, state in usage.items():
                await session.merge(
                    CredentialUsage(
                        key_hash=key_hash,
                        usage_count=state.get("usage_count", 0),
                        last_used_at=state.get("last_used_at", 0.0),
                        cooldown_until=state.get("cooldown_until"),
                    )
                )
            await session.commit()

    async def delete_usage(self, key_hash: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(CredentialUsage).where(CredentialUsage.key_hash == key_hash))
            await session.commit()

    async def load_secrets(self) -> list[str]:
        if self.cipher is None:
            return []
        async with self.session_factory() as session:
            stmt = select(CredentialSecret).order_by(CredentialSecret.position.asc())
            rows = (await session.execute(stmt)).scalars().all()

        secrets: list[str] = []
        for row in rows:
            secret = self.cipher.decrypt(row.ciphertext)
            if secret:
                secrets.append(secret)
            else:
                logger.warning("Skipping undecryptable credential %s", row.key_hash)
        return secrets

    async def save_secrets(self, secrets: list[str]) -> None:
        """Replace the stored secret list. No-op without a cipher."""
        if self.cipher is None:
            return
        async with self.session_factory() as session:
            await session.execute(delete(CredentialSecret))
            for position, secret in enumerate(secrets):
                session.add(
                    CredentialSecret(
                        key_hash=hash_credential(secret),
                        ciphertext=self.cipher.encrypt(secret),
                        position=position,
                    )
                )
            await session.commit()
