"""
API Router v1

Combines all route modules.
"""

from fastapi import APIRouter

from app.api.v1.routes import internal, migration

api_router = APIRouter()

api_router.include_router(migration.router, tags=["Migration"])
api_router.include_router(internal.router)
