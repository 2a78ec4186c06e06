from __future__ import annotations

import argparse
import asyncio
import logging
import random

from opentelemetry import trace

from politefetch.core.config import Settings, get_settings
from politefetch.core.errors import LockContentionError, OperationalDisabledError
from politefetch.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from politefetch.jobs.pipeline import execute_run
from politefetch.schemas.scrape import RunResponse
from politefetch.services.repository import get_repository
from politefetch.services.robots import RobotsCache, get_robots_cache

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_cycle(settings: Settings, repository, robots_cache: RobotsCache | None = None) -> RunResponse | None:
    """Run one internal pass; returns ``None`` when the run was skipped."""
    with tracer.start_as_current_span("worker.run_cycle"):
        try:
            return await execute_run(settings, repository, robots_cache=robots_cache)
        except OperationalDisabledError:
            logger.warning("scraper disabled by kill switch; skipping cycle")
        except LockContentionError:
            logger.info("scrape lock %s is held by another run; skipping cycle", settings.lock_name)
    return None


async def run_worker(*, once: bool = False) -> RunResponse | None:
    settings = get_settings()
    configure_logging(settings.log_level)
    telemetry_runtime = setup_telemetry(settings, "worker")
    repository = get_repository()
    robots_cache = get_robots_cache()

    backoff = settings.worker_error_backoff_seconds
    try:
        while True:
            try:
                report = await run_cycle(settings, repository, robots_cache)
                if once:
                    return report
                backoff = settings.worker_error_backoff_seconds
                await asyncio.sleep(settings.schedule_interval_seconds)
            except Exception as exc:
                if once:
                    raise
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker cycle failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await repository.close()
        shutdown_telemetry(telemetry_runtime)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the seed fetch pipeline on a fixed schedule.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle, print the JSON result and exit",
    )
    args = parser.parse_args()

    report = asyncio.run(run_worker(once=args.once))
    if args.once:
        print(report.model_dump_json(indent=2, exclude_none=True) if report else '{"skipped": true}')


if __name__ == "__main__":
    main()
