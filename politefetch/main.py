from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from politefetch.api.router import api_router
from politefetch.core.config import get_settings
from politefetch.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from politefetch.services.repository import get_repository

QUIET_PATHS = {"/", "/healthz"}

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.telemetry = setup_telemetry(settings, "api")
    logger.info(
        "politefetch api starting environment=%s seeds=%s allowed_domains=%s scraper_disabled=%s",
        settings.environment,
        len(settings.seed_urls),
        ",".join(settings.allowed_domains),
        settings.scraper_disabled,
    )
    try:
        yield
    finally:
        await get_repository().close()
        shutdown_telemetry(app.state.telemetry)


configure_logging(settings.log_level)
app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    # Scheduler health probes arrive every few seconds.
    level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
    logger.log(
        level,
        "http request method=%s path=%s status=%s duration_ms=%.2f scheduled=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        settings.scheduler_header in request.headers,
    )
    return response


app.include_router(api_router)
