import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from politefetch.core.config import Settings, get_settings
from politefetch.core.errors import AuthorizationError, LockContentionError, OperationalDisabledError
from politefetch.core.security import authorize_invocation
from politefetch.jobs.pipeline import execute_run
from politefetch.schemas.scrape import RunRejected, RunResponse, RunSkipped
from politefetch.services.repository import get_repository
from politefetch.services.robots import RobotsCache, get_robots_cache

router = APIRouter()
logger = logging.getLogger(__name__)


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(follow_redirects=True) as client:
        yield client


@router.get(
    "",
    response_model=RunResponse,
    response_model_exclude_none=True,
    responses={
        401: {"model": RunRejected},
        403: {"model": RunRejected},
        423: {"model": RunSkipped},
        500: {"model": RunRejected},
        503: {"model": RunRejected},
    },
)
async def run_scrape(
    request: Request,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    client: httpx.AsyncClient = Depends(get_http_client),
    robots_cache: RobotsCache = Depends(get_robots_cache),
):
    started_at = datetime.now(timezone.utc)
    try:
        authorize_invocation(settings, request.headers)
        return await execute_run(settings, repository, client=client, robots_cache=robots_cache)
    except AuthorizationError as exc:
        return _rejected(exc.status_code, str(exc))
    except OperationalDisabledError as exc:
        return _rejected(exc.status_code, str(exc))
    except LockContentionError as exc:
        logger.info("scrape run skipped: lock %s is held", settings.lock_name)
        payload = RunSkipped(skipped="Another scraping job is already running", timestamp=_now())
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(mode="json"))
    except Exception as exc:
        elapsed_ms = (datetime.now(timezone.utc) - started_at).total_seconds() * 1000.0
        logger.exception("scrape run failed duration_ms=%.0f", elapsed_ms)
        return _rejected(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal server error")


def _rejected(status_code: int, message: str) -> JSONResponse:
    payload = RunRejected(error=message, timestamp=_now())
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))


def _now() -> datetime:
    return datetime.now(timezone.utc)
