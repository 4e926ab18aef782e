"""
Internal API routes for cross-service communication.

Protected by X-API-Key header (shared secret between services).
Lets an external cron drive the migration scheduler instead of (or in
addition to) the in-process runner.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.session import get_async_db, get_session_factory
from app.features.migration import (
    JobRepository,
    JobStatus,
    RateLimitRepository,
    migration_runner,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["Internal"])


# =============================================================================
# API Key Dependency
# =============================================================================

async def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    """Verify cross-service API key."""
    if not settings.cross_service_api_key:
        raise HTTPException(status_code=503, detail="Internal API not configured")
    if x_api_key != settings.cross_service_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


# =============================================================================
# Schemas
# =============================================================================

class TickResponse(BaseModel):
    reclaimed: int
    released: int
    budget: int
    dispatched: int
    calls_used: int
    failed: int
    stop_reason: str


class RateLimitInfo(BaseModel):
    usage_15min: int
    limit_15min: int
    usage_daily: int
    limit_daily: int
    window_reset_at: int
    updated_at: int


class QueueStats(BaseModel):
    jobs: dict[str, int]
    rate_limit: Optional[RateLimitInfo] = None
    runner_active: bool
    last_tick: Optional[TickResponse] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/migration/tick",
    response_model=TickResponse,
    dependencies=[Depends(verify_api_key)],
)
async def run_migration_tick(db_factory=Depends(get_session_factory)):
    """Run one scheduler tick now."""
    try:
        result = await migration_runner.run_tick(db_factory)
    except asyncio.TimeoutError:
        logger.error("Migration tick hit its time limit")
        raise HTTPException(status_code=504, detail="Tick exceeded time limit")

    if result is None:
        raise HTTPException(status_code=409, detail="A tick is already running")
    return TickResponse(**asdict(result))


@router.get(
    "/migration/stats",
    response_model=QueueStats,
    dependencies=[Depends(verify_api_key)],
)
async def migration_stats(db: AsyncSession = Depends(get_async_db)):
    """Job counts by status, rate limit estimate and last tick."""
    jobs = JobRepository(db)
    counts = {status.value: await jobs.count(status=status) for status in JobStatus}

    state = await RateLimitRepository(db).get_state()
    last = migration_runner.last_result

    return QueueStats(
        jobs=counts,
        rate_limit=RateLimitInfo(
            usage_15min=state.usage_15min,
            limit_15min=state.limit_15min,
            usage_daily=state.usage_daily,
            limit_daily=state.limit_daily,
            window_reset_at=state.window_reset_at,
            updated_at=state.updated_at,
        ) if state else None,
        runner_active=migration_runner.running,
        last_tick=TickResponse(**asdict(last)) if last else None,
    )
