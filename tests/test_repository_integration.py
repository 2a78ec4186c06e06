from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from politefetch.core.urls import canonicalize, content_hash
from politefetch.jobs.lock import acquire_lock, release_lock
from politefetch.services.repository import FetchMeta, PostgresRepository, ScrapedItem

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("PF_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require PF_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_reset_schema(database_url))


def test_concurrent_lock_acquisition_has_one_winner(database_url: str) -> None:
    async def scenario() -> list[bool]:
        repository = PostgresRepository(database_url, max_pool_size=5)
        try:
            return list(await asyncio.gather(*(acquire_lock(repository, "scrape", 10) for _ in range(5))))
        finally:
            await repository.close()

    assert _run(scenario()).count(True) == 1


def test_expired_lock_is_taken_over_and_released(database_url: str) -> None:
    async def scenario() -> tuple[bool, bool, int]:
        repository = PostgresRepository(database_url)
        try:
            await repository.insert_lock("scrape", datetime.now(timezone.utc) - timedelta(minutes=1))
            stolen = await acquire_lock(repository, "scrape", 10)
            second = await acquire_lock(repository, "scrape", 10)
            await release_lock(repository, "scrape")
            pool = await repository._get_pool()
            remaining = await pool.fetchval("select count(*) from job_lock")
            return stolen, second, remaining
        finally:
            await repository.close()

    assert _run(scenario()) == (True, False, 0)


def test_item_upsert_is_keyed_by_canonical_url(database_url: str) -> None:
    first_url = "https://allowed.example/quote/1?utm_source=feed"
    second_url = "https://allowed.example/quote/1/#top"

    def item(url: str, title: str) -> ScrapedItem:
        return ScrapedItem(
            source_domain="allowed.example",
            item_url=url,
            canonical_item_url=canonicalize(url),
            title=title,
            content_hash=content_hash(title),
            metadata={"source_page": "https://allowed.example/"},
        )

    async def scenario() -> list[asyncpg.Record]:
        repository = PostgresRepository(database_url)
        try:
            await repository.upsert_scraped_items([item(first_url, "first")])
            await repository.upsert_scraped_items([item(second_url, "second")])
            pool = await repository._get_pool()
            return await pool.fetch("select canonical_item_url, title, metadata from scraped_items")
        finally:
            await repository.close()

    rows = _run(scenario())
    assert len(rows) == 1
    assert rows[0]["canonical_item_url"] == "https://allowed.example/quote/1"
    assert rows[0]["title"] == "second"


def test_fetch_meta_round_trip_and_touch(database_url: str) -> None:
    async def scenario() -> tuple[FetchMeta | None, FetchMeta | None, FetchMeta | None]:
        repository = PostgresRepository(database_url)
        try:
            missing = await repository.get_fetch_meta("https://allowed.example/a")
            await repository.upsert_fetch_meta(FetchMeta(item_url="https://allowed.example/a", etag='"v1"'))
            stored = await repository.get_fetch_meta("https://allowed.example/a")
            await asyncio.sleep(0.01)
            await repository.touch_fetch_meta("https://allowed.example/a")
            touched = await repository.get_fetch_meta("https://allowed.example/a")
            return missing, stored, touched
        finally:
            await repository.close()

    missing, stored, touched = _run(scenario())
    assert missing is None
    assert stored is not None and stored.etag == '"v1"'
    assert touched is not None and touched.etag == '"v1"'
    assert touched.updated_at >= stored.updated_at


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _reset_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        await conn.execute("truncate table job_lock, fetch_meta, scraped_items restart identity")
    finally:
        await conn.close()
