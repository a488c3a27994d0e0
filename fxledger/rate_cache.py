from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Protocol

from sqlalchemy import (
    Column,
    Float,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from fxledger.rates import RateTable

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CachedRates:
    key: str
    table: RateTable
    expires_at: float | None


class RateCacheStore(Protocol):
    def get(self, key: str) -> CachedRates | None:
        ...

    def put(self, entry: CachedRates) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryRateCacheStore:
    def __init__(self) -> None:
        self._entries: dict[str, CachedRates] = {}

    def get(self, key: str) -> CachedRates | None:
        return self._entries.get(key)

    def put(self, entry: CachedRates) -> None:
        self._entries[entry.key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class SqlRateCacheStore:
    """Rate cache entries in a ``rate_cache`` table, one row per key."""

    def __init__(self, engine: Engine | str) -> None:
        if isinstance(engine, str):
            options: dict = {}
            if engine.startswith("sqlite"):
                options["connect_args"] = {"check_same_thread": False}
                if engine in ("sqlite://", "sqlite:///:memory:"):
                    # One shared connection, otherwise each worker thread sees its own database.
                    options["poolclass"] = StaticPool
            engine = create_engine(engine, **options)
        self.engine = engine
        self.metadata = MetaData()
        self.rate_cache = Table(
            "rate_cache",
            self.metadata,
            Column("cache_key", String(32), primary_key=True),
            Column("base", String(3)),
            Column("rates", Text, nullable=False),
            Column("expires_at", Float),
        )
        self.metadata.create_all(self.engine)

    def get(self, key: str) -> CachedRates | None:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(self.rate_cache).where(self.rate_cache.c.cache_key == key)
            ).mappings().first()
        if not row:
            return None
        rates = {code: Decimal(value) for code, value in json.loads(row["rates"]).items()}
        return CachedRates(
            key=row["cache_key"],
            table=RateTable(rates=rates, base=row["base"]),
            expires_at=row["expires_at"],
        )

    def put(self, entry: CachedRates) -> None:
        serialized = json.dumps({code: str(value) for code, value in entry.table.rates.items()})
        with self.engine.begin() as conn:
            conn.execute(delete(self.rate_cache).where(self.rate_cache.c.cache_key == entry.key))
            conn.execute(
                insert(self.rate_cache).values(
                    cache_key=entry.key,
                    base=entry.table.base,
                    rates=serialized,
                    expires_at=entry.expires_at,
                )
            )

    def delete(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self.rate_cache).where(self.rate_cache.c.cache_key == key))


class RateCache:
    """Time-limited rate tables keyed by base currency."""

    def __init__(
        self,
        store: RateCacheStore | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else InMemoryRateCacheStore()
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def get(self, base: str) -> RateTable | None:
        key = _cache_key(base)
        cached = self.store.get(key)
        if cached is None:
            return None
        if cached.expires_at is not None and cached.expires_at <= self.clock():
            self.store.delete(key)
            return None
        return cached.table

    def put(self, base: str, table: RateTable) -> None:
        key = _cache_key(base)
        self.store.put(
            CachedRates(key=key, table=table, expires_at=self.clock() + self.ttl_seconds)
        )

    def invalidate(self, base: str) -> None:
        self.store.delete(_cache_key(base))

    async def aget(self, base: str) -> RateTable | None:
        """``get`` run in a worker thread so a database store never blocks the event loop."""
        return await asyncio.to_thread(self.get, base)

    async def aput(self, base: str, table: RateTable) -> None:
        await asyncio.to_thread(self.put, base, table)


def _cache_key(base: str) -> str:
    return f"rates:{base.strip().upper()}"
