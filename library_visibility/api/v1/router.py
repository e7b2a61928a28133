"""API v1 router - aggregates all endpoint routers."""

from fastapi import APIRouter

from library_visibility.api.v1 import exclusions, hidden

api_router = APIRouter()

api_router.include_router(exclusions.router, prefix="/exclusions", tags=["exclusions"])
api_router.include_router(hidden.router, prefix="/hidden", tags=["hidden"])
