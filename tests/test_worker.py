from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import politefetch.worker as worker
from politefetch.services.robots import RobotsCache


def test_run_cycle_skips_when_disabled(fake_repository, make_settings) -> None:
    report = asyncio.run(worker.run_cycle(make_settings(scraper_disabled=True), fake_repository))

    assert report is None
    assert fake_repository.lock_calls == []


def test_run_cycle_skips_when_lock_is_held(fake_repository, make_settings) -> None:
    fake_repository.locks["scrape"] = datetime.now(timezone.utc) + timedelta(minutes=5)

    report = asyncio.run(worker.run_cycle(make_settings(), fake_repository))

    assert report is None
    assert fake_repository.lock_calls == ["insert_lock", "steal_expired_lock"]


def test_run_worker_once_returns_report_and_closes_repository(fake_repository, make_settings, monkeypatch) -> None:
    settings = make_settings()
    closed: list[bool] = []
    captured: dict[str, object] = {}
    robots_cache = RobotsCache()

    async def fake_execute_run(run_settings, repository, *, robots_cache=None):
        captured["settings"] = run_settings
        captured["repository"] = repository
        captured["robots_cache"] = robots_cache
        return "report"

    async def fake_close() -> None:
        closed.append(True)

    fake_repository.close = fake_close
    monkeypatch.setattr(worker, "get_settings", lambda: settings)
    monkeypatch.setattr(worker, "get_repository", lambda: fake_repository)
    monkeypatch.setattr(worker, "execute_run", fake_execute_run)
    monkeypatch.setattr(worker, "get_robots_cache", lambda: robots_cache)

    assert asyncio.run(worker.run_worker(once=True)) == "report"
    assert captured == {"settings": settings, "repository": fake_repository, "robots_cache": robots_cache}
    assert closed == [True]
