from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar
from uuid import uuid4

import httpx
from opentelemetry import trace

from politefetch.core.config import Settings
from politefetch.core.errors import PersistenceError, PolicyDeniedError
from politefetch.core.security import check_kill_switch
from politefetch.core.urls import canonicalize
from politefetch.jobs.extract import Extractor, build_scraped_items, no_extraction
from politefetch.jobs.lock import job_lock
from politefetch.jobs.rate_limit import RateLimiter
from politefetch.jobs.retry import with_retry
from politefetch.schemas.scrape import RunResponse, RunSummary, SeedResult
from politefetch.services.fetcher import NotModified, conditional_get
from politefetch.services.repository import FetchMeta
from politefetch.services.robots import RobotsCache, RobotsGate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

SUCCESS_STATUSES = {200, 304}


class ScrapePipeline:
    def __init__(
        self,
        *,
        repository: Any,
        client: httpx.AsyncClient,
        robots: RobotsGate,
        rate_limiter: RateLimiter,
        user_agent: str,
        fetch_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_base_delay_ms: float = 1000.0,
        retry_jitter_ms: float = 1000.0,
        concurrency: int = 3,
        extractor: Extractor = no_extraction,
    ) -> None:
        self.repository = repository
        self.client = client
        self.robots = robots
        self.rate_limiter = rate_limiter
        self.user_agent = user_agent
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_jitter_ms = retry_jitter_ms
        self.concurrency = max(1, concurrency)
        self.extractor = extractor

    async def run(self, seeds: Sequence[str]) -> RunResponse:
        run_id = f"job_{uuid4().hex[:12]}"
        started_at = time.perf_counter()
        logger.info("starting scrape run run_id=%s seeds=%s", run_id, len(seeds))

        with tracer.start_as_current_span("pipeline.run") as span:
            span.set_attribute("pipeline.run_id", run_id)
            span.set_attribute("pipeline.seed_count", len(seeds))
            semaphore = asyncio.Semaphore(self.concurrency)

            async def bounded(url: str) -> SeedResult:
                async with semaphore:
                    return await self.process_seed(url)

            results = list(await asyncio.gather(*(bounded(url) for url in seeds)))

        summary = summarize(results, run_id=run_id, duration_ms=int((time.perf_counter() - started_at) * 1000))
        logger.info(
            "scrape run completed run_id=%s duration_ms=%s urls_processed=%s total_items=%s total_bytes=%s success_rate=%.2f",
            summary.run_id,
            summary.duration_ms,
            summary.urls_processed,
            summary.total_items,
            summary.total_bytes,
            summary.success_rate,
        )
        return RunResponse(ok=True, results=results, summary=summary)

    async def process_seed(self, url: str) -> SeedResult:
        with tracer.start_as_current_span("pipeline.process_seed") as span:
            span.set_attribute("seed.url", url)
            try:
                result = await self._process_seed(url)
            except Exception as exc:
                logger.warning("error processing url=%s: %s", url, exc)
                result = SeedResult(url=url, status="error", error=str(exc) or type(exc).__name__)
            span.set_attribute("seed.status", str(result.status))
            return result

    async def _process_seed(self, url: str) -> SeedResult:
        try:
            await self.robots.ensure_allowed(url)
        except PolicyDeniedError:
            return SeedResult(url=url, status="robots_disallowed")

        meta_key = canonicalize(url)
        meta = await self._persist("load fetch meta", url, self.repository.get_fetch_meta(meta_key))

        try:
            outcome = await with_retry(
                lambda: conditional_get(
                    self.client,
                    url,
                    meta,
                    user_agent=self.user_agent,
                    timeout_seconds=self.fetch_timeout_seconds,
                ),
                self.max_retries,
                self.retry_base_delay_ms,
                jitter_ms=self.retry_jitter_ms,
            )

            if isinstance(outcome, NotModified):
                await self._persist("touch fetch meta", url, self.repository.touch_fetch_meta(meta_key))
                return SeedResult(url=url, status=304, cached=True)

            items = build_scraped_items(url, self.extractor(url, outcome.content))
            stored = 0
            if items:
                written = await self._persist("upsert scraped items", url, self.repository.upsert_scraped_items(items))
                stored = written or 0

            await self._persist(
                "upsert fetch meta",
                url,
                self.repository.upsert_fetch_meta(
                    FetchMeta(item_url=meta_key, etag=outcome.etag, last_modified=outcome.last_modified)
                ),
            )
            return SeedResult(url=url, status=200, items=stored, bytes=outcome.size, hash=outcome.hash)
        finally:
            await self.rate_limiter.wait()

    async def _persist(self, action: str, url: str, write: Awaitable[T]) -> T | None:
        try:
            return await write
        except PersistenceError as exc:
            logger.error("%s failed for url=%s: %s", action, url, exc)
            return None


def summarize(results: Iterable[SeedResult], *, run_id: str, duration_ms: int) -> RunSummary:
    results = list(results)
    fetched = [result for result in results if result.status == 200]
    succeeded = sum(1 for result in results if result.status in SUCCESS_STATUSES)
    return RunSummary(
        run_id=run_id,
        urls_processed=len(results),
        total_items=sum(result.items or 0 for result in fetched),
        total_bytes=sum(result.bytes or 0 for result in fetched),
        duration_ms=duration_ms,
        success_rate=succeeded / len(results) if results else 0.0,
        timestamp=datetime.now(timezone.utc),
    )


def build_pipeline(
    settings: Settings,
    repository: Any,
    client: httpx.AsyncClient,
    *,
    extractor: Extractor = no_extraction,
    robots_cache: RobotsCache | None = None,
) -> ScrapePipeline:
    return ScrapePipeline(
        repository=repository,
        client=client,
        robots=RobotsGate(
            client,
            allowed_domains=settings.allowed_domains,
            user_agent=settings.user_agent,
            timeout_seconds=settings.robots_timeout_seconds,
            cache=robots_cache if robots_cache is not None else RobotsCache(settings.robots_cache_ttl_seconds),
        ),
        rate_limiter=RateLimiter(settings.rate_limit_base_ms, settings.rate_limit_jitter_ms),
        user_agent=settings.user_agent,
        fetch_timeout_seconds=settings.fetch_timeout_seconds,
        max_retries=settings.max_retries,
        retry_base_delay_ms=settings.retry_base_delay_ms,
        retry_jitter_ms=settings.retry_jitter_ms,
        concurrency=settings.concurrency,
        extractor=extractor,
    )


async def execute_run(
    settings: Settings,
    repository: Any,
    *,
    client: httpx.AsyncClient | None = None,
    extractor: Extractor = no_extraction,
    robots_cache: RobotsCache | None = None,
) -> RunResponse:
    """Run one locked pass over the configured seeds.

    Raises ``OperationalDisabledError`` before touching the lock when the kill
    switch is on, and ``LockContentionError`` when another run holds the lease.
    The lock is released on every exit path once acquired. Pass a long-lived
    ``robots_cache`` so robots.txt policies outlive a single run.
    """
    check_kill_switch(settings)
    async with job_lock(repository, settings.lock_name, settings.lock_ttl_minutes):
        if client is not None:
            pipeline = build_pipeline(settings, repository, client, extractor=extractor, robots_cache=robots_cache)
            return await pipeline.run(settings.seed_urls)
        async with httpx.AsyncClient(follow_redirects=True) as owned_client:
            pipeline = build_pipeline(settings, repository, owned_client, extractor=extractor, robots_cache=robots_cache)
            return await pipeline.run(settings.seed_urls)
