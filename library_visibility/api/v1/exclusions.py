"""Admin endpoints for rebuilding and inspecting per-user exclusion sets."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.core.auth import require_admin
from library_visibility.core.errors import UnknownEntityTypeError
from library_visibility.db.database import get_db
from library_visibility.db.models import UserExcludedEntity
from library_visibility.services.entity_stats import get_entity_stats
from library_visibility.services.exclusion_service import (
    ExclusionComputationService, get_exclusion_service,
)
from library_visibility.services.exclusion_types import EntityType, ExclusionReason
from library_visibility.services.user_service import get_user

router = APIRouter(dependencies=[Depends(require_admin)])


# ==================== Pydantic Schemas ====================

class RecomputeResponse(BaseModel):
    userId: int
    total: int
    direct: int
    cascade: int
    empty: int
    durationMs: int


class RecomputeErrorItem(BaseModel):
    userId: int
    error: str


class RecomputeAllResponse(BaseModel):
    success: int
    failed: int
    errors: list[RecomputeErrorItem]


class ExclusionCountItem(BaseModel):
    """Row count for one (user, type, reason) group."""
    userId: int
    entityType: str
    reason: str
    count: int


class EntityStatsResponse(BaseModel):
    entityType: str
    excludedCount: int
    visibleCount: int
    updatedAt: datetime | None


class ExcludedEntityResponse(BaseModel):
    entityType: str
    entityId: str
    instanceId: str
    reason: str
    computedAt: datetime | None


# ==================== Helper Functions ====================

async def _require_user(db: AsyncSession, user_id: int) -> None:
    if await get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")


def _parse_entity_type(value: str | None) -> EntityType | None:
    if value is None:
        return None
    try:
        return EntityType.parse(value)
    except UnknownEntityTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ==================== Recompute Endpoints ====================

@router.post("/recompute/{user_id}", response_model=RecomputeResponse)
async def recompute_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    service: ExclusionComputationService = Depends(get_exclusion_service),
):
    """Rebuild one user's exclusions and wait for the result."""
    await _require_user(db, user_id)
    result = await service.recompute_for_user(user_id)
    return RecomputeResponse(
        userId=result.user_id,
        total=result.total,
        direct=result.direct,
        cascade=result.cascade,
        empty=result.empty,
        durationMs=result.duration_ms,
    )


@router.post("/recompute-all", response_model=RecomputeAllResponse)
async def recompute_all(
    service: ExclusionComputationService = Depends(get_exclusion_service),
):
    """Rebuild exclusions for every user, one after another."""
    outcome = await service.recompute_all_users()
    return RecomputeAllResponse(
        success=outcome.success,
        failed=outcome.failed,
        errors=[
            RecomputeErrorItem(userId=item["user_id"], error=item["error"])
            for item in outcome.errors
        ],
    )


# ==================== Inspection Endpoints ====================

@router.get("/stats", response_model=list[ExclusionCountItem])
async def get_exclusion_counts(
    user_id: Optional[int] = Query(None, description="Limit to one user"),
    db: AsyncSession = Depends(get_db),
):
    """Exclusion row counts grouped by user, entity type and reason."""
    query = select(
        UserExcludedEntity.user_id,
        UserExcludedEntity.entity_type,
        UserExcludedEntity.reason,
        func.count(),
    )
    if user_id is not None:
        query = query.where(UserExcludedEntity.user_id == user_id)
    query = query.group_by(
        UserExcludedEntity.user_id,
        UserExcludedEntity.entity_type,
        UserExcludedEntity.reason,
    ).order_by(
        UserExcludedEntity.user_id,
        UserExcludedEntity.entity_type,
        UserExcludedEntity.reason,
    )

    result = await db.execute(query)
    return [
        ExclusionCountItem(userId=uid, entityType=entity_type, reason=reason, count=count)
        for uid, entity_type, reason, count in result.all()
    ]


@router.get("/users/{user_id}/stats", response_model=list[EntityStatsResponse])
async def get_user_stats(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Per-type counts published by the user's last full recompute."""
    await _require_user(db, user_id)
    rows = await get_entity_stats(db, user_id)
    return [
        EntityStatsResponse(
            entityType=row.entity_type,
            excludedCount=row.excluded_count,
            visibleCount=row.visible_count,
            updatedAt=row.updated_at,
        )
        for row in rows
    ]


@router.get("/users/{user_id}", response_model=list[ExcludedEntityResponse])
async def list_user_exclusions(
    user_id: int,
    entity_type: Optional[str] = Query(None, description="scene, performer, studio, tag, group, gallery or image"),
    reason: Optional[str] = Query(None, description="restricted, hidden, cascade or empty"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List a user's exclusion rows."""
    await _require_user(db, user_id)
    parsed_type = _parse_entity_type(entity_type)

    query = select(UserExcludedEntity).where(UserExcludedEntity.user_id == user_id)
    if parsed_type is not None:
        query = query.where(UserExcludedEntity.entity_type == parsed_type.value)
    if reason is not None:
        try:
            query = query.where(UserExcludedEntity.reason == ExclusionReason(reason.lower()).value)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown exclusion reason: {reason!r}")

    query = query.order_by(
        UserExcludedEntity.entity_type,
        UserExcludedEntity.entity_id,
        UserExcludedEntity.instance_id,
    ).limit(limit).offset(offset)

    result = await db.execute(query)
    return [
        ExcludedEntityResponse(
            entityType=row.entity_type,
            entityId=row.entity_id,
            instanceId=row.instance_id,
            reason=row.reason,
            computedAt=row.computed_at,
        )
        for row in result.scalars().all()
    ]
