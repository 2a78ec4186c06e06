from datetime import datetime

from pydantic import BaseModel, Field


class SeedResult(BaseModel):
    url: str
    status: int | str
    items: int | None = None
    bytes: int | None = None
    hash: str | None = None
    cached: bool | None = None
    error: str | None = None


class RunSummary(BaseModel):
    run_id: str
    urls_processed: int
    total_items: int
    total_bytes: int
    duration_ms: int
    success_rate: float
    timestamp: datetime


class RunResponse(BaseModel):
    ok: bool = True
    results: list[SeedResult] = Field(default_factory=list)
    summary: RunSummary


class RunRejected(BaseModel):
    error: str
    timestamp: datetime


class RunSkipped(BaseModel):
    skipped: str
    timestamp: datetime
