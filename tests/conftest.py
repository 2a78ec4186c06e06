from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

import pytest

os.environ.setdefault("PF_OTEL_ENABLED", "false")

from politefetch.core.config import Settings  # noqa: E402
from politefetch.services.repository import (  # noqa: E402
    FetchMeta,
    RepositoryConflictError,
    RepositoryError,
    ScrapedItem,
)


class FakeRepository:
    """In-memory stand-in for PostgresRepository.

    Each method yields to the event loop once before touching state so
    concurrent callers interleave, then applies its change without awaiting,
    which mirrors a single-row atomic statement.
    """

    def __init__(self) -> None:
        self.locks: dict[str, datetime] = {}
        self.fetch_meta: dict[str, FetchMeta] = {}
        self.items: dict[tuple[str, str], ScrapedItem] = {}
        self.data_writes: list[tuple[str, Any]] = []
        self.lock_calls: list[str] = []
        self.failing: set[str] = set()

    async def insert_lock(self, name: str, expires_at: datetime) -> None:
        await self._enter("insert_lock")
        if name in self.locks:
            raise RepositoryConflictError(f"job lock {name!r} already exists")
        self.locks[name] = expires_at

    async def steal_expired_lock(self, name: str, expires_at: datetime) -> int:
        await self._enter("steal_expired_lock")
        current = self.locks.get(name)
        if current is None or current >= datetime.now(timezone.utc):
            return 0
        self.locks[name] = expires_at
        return 1

    async def delete_lock(self, name: str) -> None:
        await self._enter("delete_lock")
        self.locks.pop(name, None)

    async def get_fetch_meta(self, item_url: str) -> FetchMeta | None:
        await self._enter("get_fetch_meta")
        return self.fetch_meta.get(item_url)

    async def touch_fetch_meta(self, item_url: str) -> None:
        await self._enter("touch_fetch_meta")
        self.data_writes.append(("touch_fetch_meta", item_url))
        meta = self.fetch_meta.get(item_url)
        if meta is not None:
            meta.updated_at = datetime.now(timezone.utc)

    async def upsert_fetch_meta(self, meta: FetchMeta) -> None:
        await self._enter("upsert_fetch_meta")
        self.data_writes.append(("upsert_fetch_meta", meta.item_url))
        meta.updated_at = datetime.now(timezone.utc)
        self.fetch_meta[meta.item_url] = meta

    async def upsert_scraped_items(self, items: list[ScrapedItem]) -> int:
        await self._enter("upsert_scraped_items")
        for item in items:
            self.data_writes.append(("upsert_scraped_item", item.natural_key))
            self.items[item.natural_key] = item
        return len(items)

    async def close(self) -> None:
        return None

    async def _enter(self, method: str) -> None:
        await asyncio.sleep(0)
        if method.endswith("_lock"):
            self.lock_calls.append(method)
        if method in self.failing:
            raise RepositoryError(f"{method} failed: simulated outage")


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def make_settings():
    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "environment": "test",
            "scraper_bearer_token": "test-token",
            "seed_urls": ["https://allowed.example/a"],
            "allowed_domains": ["allowed.example"],
            "rate_limit_base_ms": 0,
            "rate_limit_jitter_ms": 0,
            "retry_base_delay_ms": 0,
            "retry_jitter_ms": 0,
            "otel_enabled": False,
        }
        values.update(overrides)
        return Settings(**values)

    return factory
