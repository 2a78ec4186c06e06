from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Protocol

from politefetch.core.errors import LockContentionError
from politefetch.services.repository import RepositoryConflictError, RepositoryError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "scrape"
DEFAULT_TTL_MINUTES = 10


class LockStore(Protocol):
    async def insert_lock(self, name: str, expires_at: datetime) -> None: ...

    async def steal_expired_lock(self, name: str, expires_at: datetime) -> int: ...

    async def delete_lock(self, name: str) -> None: ...


async def acquire_lock(
    store: LockStore,
    name: str = DEFAULT_LOCK_NAME,
    ttl_minutes: float = DEFAULT_TTL_MINUTES,
    *,
    now: datetime | None = None,
) -> bool:
    """Take the named lease, stealing it only when the current one has expired.

    The steal is a single conditional update in the store, so two callers
    racing for an expired lease cannot both win. Any store error other than the
    uniqueness conflict counts as failure to acquire.
    """
    current = now or datetime.now(timezone.utc)
    expires_at = current + timedelta(minutes=ttl_minutes)

    try:
        await store.insert_lock(name, expires_at)
        return True
    except RepositoryConflictError:
        pass
    except RepositoryError as exc:
        logger.error("lock acquisition failed for name=%s: %s", name, exc)
        return False

    try:
        stolen = await store.steal_expired_lock(name, expires_at)
    except RepositoryError as exc:
        logger.error("expired lock steal failed for name=%s: %s", name, exc)
        return False

    if stolen:
        logger.warning("stole expired lock name=%s", name)
    return stolen > 0


async def release_lock(store: LockStore, name: str = DEFAULT_LOCK_NAME) -> None:
    try:
        await store.delete_lock(name)
    except RepositoryError as exc:
        logger.error("lock release failed for name=%s: %s", name, exc)


@asynccontextmanager
async def job_lock(
    store: LockStore,
    name: str = DEFAULT_LOCK_NAME,
    ttl_minutes: float = DEFAULT_TTL_MINUTES,
) -> AsyncIterator[None]:
    if not await acquire_lock(store, name, ttl_minutes):
        raise LockContentionError(f"another {name} job is already running")
    try:
        yield
    finally:
        await release_lock(store, name)
