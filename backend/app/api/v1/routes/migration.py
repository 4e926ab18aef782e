"""
Migration Routes

User-facing endpoints for migrating Strava history.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_async_db
from app.features.migration import (
    FixRequest,
    FixResult,
    MigrationAlreadyActiveError,
    MigrationError,
    MigrationNotConnectedError,
    MigrationScope,
    MigrationService,
    MigrationStateResponse,
    MigrationUserNotFoundError,
    VerifyResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class CancelResponse(BaseModel):
    cancelled: int


def _http_error(error: MigrationError) -> HTTPException:
    """Map migration errors to HTTP status codes."""
    if isinstance(error, MigrationAlreadyActiveError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, MigrationUserNotFoundError):
        return HTTPException(status_code=404, detail="User not found")
    if isinstance(error, MigrationNotConnectedError):
        return HTTPException(status_code=400, detail="Strava not connected")
    return HTTPException(status_code=400, detail=str(error))


@router.post(
    "/users/{user_id}/migration",
    response_model=MigrationStateResponse,
    status_code=202,
)
async def start_migration(
    user_id: str,
    scope: Optional[MigrationScope] = None,
    db: AsyncSession = Depends(get_async_db),
):
    """Queue a migration. The scheduler picks it up on its next tick."""
    service = MigrationService(db)
    try:
        return await service.enqueue(user_id, scope or MigrationScope())
    except MigrationError as e:
        raise _http_error(e)


@router.delete("/users/{user_id}/migration", response_model=CancelResponse)
async def cancel_migration(user_id: str, db: AsyncSession = Depends(get_async_db)):
    """Cancel the active migration and reset progress."""
    service = MigrationService(db)
    return CancelResponse(cancelled=await service.cancel(user_id))


@router.get("/users/{user_id}/migration", response_model=MigrationStateResponse)
async def get_migration(user_id: str, db: AsyncSession = Depends(get_async_db)):
    """Current migration status, progress and report."""
    service = MigrationService(db)
    return await service.get_state(user_id)


@router.get("/users/{user_id}/migration/verify", response_model=VerifyResult)
async def verify_migration(user_id: str, db: AsyncSession = Depends(get_async_db)):
    """Imported activities without cached streams."""
    service = MigrationService(db)
    return await service.verify(user_id)


@router.post("/users/{user_id}/migration/fix", response_model=FixResult)
async def fix_migration(
    user_id: str,
    request: Optional[FixRequest] = None,
    db: AsyncSession = Depends(get_async_db),
):
    """Queue streams for the activities that are missing them."""
    service = MigrationService(db)
    try:
        return await service.fix(user_id, request)
    except MigrationError as e:
        raise _http_error(e)
