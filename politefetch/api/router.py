from fastapi import APIRouter

from politefetch.api.routes import health, scrape

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(scrape.router, prefix="/scrape", tags=["pipeline"])
