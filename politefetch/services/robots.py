from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Iterable
from functools import lru_cache
from urllib.parse import urlsplit

import httpx
from protego import Protego

from politefetch.core.config import get_settings
from politefetch.core.errors import PolicyDeniedError

logger = logging.getLogger(__name__)

MISSING_ROBOTS_STATUS_CODES = {404, 410}


class RobotsCache:
    """Parsed robots.txt policies keyed by origin, shared across runs."""

    def __init__(self, ttl_seconds: float = 3600.0) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, Protego]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, origin: str) -> Protego | None:
        entry = self._entries.get(origin)
        if entry is None:
            return None
        fetched_at, policy = entry
        if time.monotonic() - fetched_at >= self.ttl_seconds:
            del self._entries[origin]
            return None
        return policy

    def put(self, origin: str, policy: Protego) -> None:
        self._entries[origin] = (time.monotonic(), policy)

    def lock(self, origin: str) -> asyncio.Lock:
        return self._locks[origin]


class RobotsGate:
    """Allow-list plus robots.txt check, failing closed on any doubt.

    A host outside ``allowed_domains`` is denied without touching the network.
    For allowed hosts the origin's robots.txt is fetched and evaluated for
    ``user_agent`` with longest-match precedence and ``*``/``$`` patterns. A
    missing file (404/410) means allow-all; any other non-2xx status,
    transport error or parse error means deny. Parsed policies live in
    ``cache`` until its TTL runs out; failures are not cached.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        allowed_domains: Iterable[str],
        user_agent: str,
        timeout_seconds: float = 5.0,
        cache: RobotsCache | None = None,
    ) -> None:
        self.client = client
        self.allowed_domains = {domain.strip().lower() for domain in allowed_domains if domain.strip()}
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.cache = cache if cache is not None else RobotsCache()

    async def is_allowed(self, url: str) -> bool:
        try:
            parsed = urlsplit(url)
            host = (parsed.hostname or "").lower()
        except ValueError:
            logger.warning("robots check rejected malformed url=%s", url)
            return False

        if host not in self.allowed_domains:
            logger.warning("domain not allowlisted: %s", host or "<none>")
            return False

        origin = f"{parsed.scheme}://{parsed.netloc}"
        try:
            policy = await self._get_policy(origin)
            return bool(policy.can_fetch(url, self.user_agent))
        except Exception as exc:
            logger.warning("robots.txt check failed for %s: %s", url, exc)
            return False

    async def ensure_allowed(self, url: str) -> None:
        if not await self.is_allowed(url):
            raise PolicyDeniedError(f"robots policy denies {url}")

    async def _get_policy(self, origin: str) -> Protego:
        async with self.cache.lock(origin):
            policy = self.cache.get(origin)
            if policy is not None:
                return policy

            policy = await self._fetch_policy(origin)
            self.cache.put(origin, policy)
            return policy

    async def _fetch_policy(self, origin: str) -> Protego:
        robots_url = f"{origin}/robots.txt"
        response = await self.client.get(
            robots_url,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout_seconds,
            follow_redirects=True,
        )
        if response.status_code in MISSING_ROBOTS_STATUS_CODES:
            logger.info("no robots.txt at %s; allowing all paths", origin)
            return Protego.parse("")
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"robots.txt returned HTTP {response.status_code}",
                request=response.request,
                response=response,
            )
        return Protego.parse(response.text)


@lru_cache
def get_robots_cache() -> RobotsCache:
    return RobotsCache(ttl_seconds=get_settings().robots_cache_ttl_seconds)
