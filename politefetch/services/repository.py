from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from politefetch.core.config import get_settings
from politefetch.core.errors import PersistenceError


class RepositoryError(PersistenceError):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryConflictError(RepositoryError):
    """Raised when an insert hits a uniqueness constraint."""


@dataclass(slots=True)
class FetchMeta:
    item_url: str
    etag: str | None = None
    last_modified: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class ScrapedItem:
    source_domain: str
    item_url: str
    canonical_item_url: str
    title: str
    content_hash: str
    metadata: dict[str, Any] = field(default_factory=dict)
    last_seen_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.source_domain, self.canonical_item_url)


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 10) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def insert_lock(self, name: str, expires_at: datetime) -> None:
        pool = await self._get_pool()
        with _translate_errors("insert job lock"):
            try:
                await pool.execute(
                    """
                    insert into job_lock (name, expires_at)
                    values ($1, $2)
                    """,
                    name,
                    expires_at,
                )
            except pg_exc.UniqueViolationError as exc:
                raise RepositoryConflictError(f"job lock {name!r} already exists") from exc

    async def steal_expired_lock(self, name: str, expires_at: datetime) -> int:
        pool = await self._get_pool()
        with _translate_errors("steal expired job lock"):
            rows = await pool.fetch(
                """
                update job_lock
                set expires_at = $2
                where name = $1 and expires_at < now()
                returning name
                """,
                name,
                expires_at,
            )
        return len(rows)

    async def delete_lock(self, name: str) -> None:
        pool = await self._get_pool()
        with _translate_errors("delete job lock"):
            await pool.execute("delete from job_lock where name = $1", name)

    async def get_fetch_meta(self, item_url: str) -> FetchMeta | None:
        pool = await self._get_pool()
        with _translate_errors("load fetch meta"):
            row = await pool.fetchrow(
                """
                select item_url, etag, last_modified, updated_at
                from fetch_meta
                where item_url = $1
                """,
                item_url,
            )
        if not row:
            return None
        return FetchMeta(
            item_url=row["item_url"],
            etag=row["etag"],
            last_modified=row["last_modified"],
            updated_at=row["updated_at"],
        )

    async def touch_fetch_meta(self, item_url: str) -> None:
        pool = await self._get_pool()
        with _translate_errors("touch fetch meta"):
            await pool.execute(
                "update fetch_meta set updated_at = now() where item_url = $1",
                item_url,
            )

    async def upsert_fetch_meta(self, meta: FetchMeta) -> None:
        pool = await self._get_pool()
        with _translate_errors("upsert fetch meta"):
            await pool.execute(
                """
                insert into fetch_meta (item_url, etag, last_modified, updated_at)
                values ($1, $2, $3, now())
                on conflict (item_url) do update
                set
                  etag = excluded.etag,
                  last_modified = excluded.last_modified,
                  updated_at = excluded.updated_at
                """,
                meta.item_url,
                meta.etag,
                meta.last_modified,
            )

    async def upsert_scraped_items(self, items: list[ScrapedItem]) -> int:
        if not items:
            return 0
        pool = await self._get_pool()
        with _translate_errors("upsert scraped items"):
            await pool.executemany(
                """
                insert into scraped_items (
                  source_domain,
                  item_url,
                  canonical_item_url,
                  title,
                  metadata,
                  content_hash,
                  last_seen_at
                )
                values ($1, $2, $3, $4, $5::jsonb, $6, $7)
                on conflict (source_domain, canonical_item_url) do update
                set
                  item_url = excluded.item_url,
                  title = excluded.title,
                  metadata = excluded.metadata,
                  content_hash = excluded.content_hash,
                  last_seen_at = excluded.last_seen_at
                """,
                [
                    (
                        item.source_domain,
                        item.item_url,
                        item.canonical_item_url,
                        item.title,
                        json.dumps(item.metadata),
                        item.content_hash,
                        item.last_seen_at,
                    )
                    for item in items
                ],
            )
        return len(items)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("PF_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
        raise RepositoryError(f"{action} failed: {exc}") from exc
    except OSError as exc:  # pragma: no cover - network dependent
        raise RepositoryUnavailableError(f"{action} failed: database unreachable") from exc


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
