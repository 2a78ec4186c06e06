from fastapi import APIRouter, Depends

from politefetch.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Liveness plus whether the kill switch currently blocks scrape runs."""
    return {
        "status": "ok",
        "scraper": "disabled" if settings.scraper_disabled else "enabled",
    }
