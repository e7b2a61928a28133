"""Hidden entity endpoints: hide, unhide and list a user's manually hidden items."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.core.auth import require_admin
from library_visibility.core.errors import UnknownEntityTypeError
from library_visibility.db.database import get_db
from library_visibility.services.hidden_entity_service import (
    HiddenEntityService, get_hidden_entity_service,
)
from library_visibility.services.exclusion_types import EntityType
from library_visibility.services.user_service import get_user

router = APIRouter(dependencies=[Depends(require_admin)])


# ==================== Pydantic Schemas ====================

class HideRequest(BaseModel):
    entityType: str
    entityId: str
    instanceId: str = ""


class HideResponse(BaseModel):
    entityType: str
    entityId: str
    instanceId: str
    cascadeCount: int


class UnhideResponse(BaseModel):
    entityType: str
    entityId: str
    instanceId: str
    recomputeQueued: bool


class UnhideAllResponse(BaseModel):
    removed: int


class HiddenEntityResponse(BaseModel):
    entityType: str
    entityId: str
    instanceId: str
    hiddenAt: datetime | None


# ==================== Helper Functions ====================

async def _require_user(db: AsyncSession, user_id: int) -> None:
    if await get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")


def _parse_entity_type(value: str) -> EntityType:
    try:
        return EntityType.parse(value)
    except UnknownEntityTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ==================== Endpoints ====================

@router.get("/{user_id}", response_model=list[HiddenEntityResponse])
async def list_hidden_entities(
    user_id: int,
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    db: AsyncSession = Depends(get_db),
    service: HiddenEntityService = Depends(get_hidden_entity_service),
):
    """List a user's hidden entities, newest first."""
    await _require_user(db, user_id)
    parsed_type = _parse_entity_type(entity_type) if entity_type else None

    rows = await service.list_hidden(user_id, parsed_type)
    return [
        HiddenEntityResponse(
            entityType=row.entity_type,
            entityId=row.entity_id,
            instanceId=row.instance_id,
            hiddenAt=row.hidden_at,
        )
        for row in rows
    ]


@router.post("/{user_id}", response_model=HideResponse)
async def hide_entity(
    user_id: int,
    request: HideRequest,
    db: AsyncSession = Depends(get_db),
    service: HiddenEntityService = Depends(get_hidden_entity_service),
):
    """Hide an entity; its one-hop cascade is applied before returning."""
    await _require_user(db, user_id)
    entity_type = _parse_entity_type(request.entityType)

    cascade_count = await service.hide_entity(user_id, entity_type, request.entityId, request.instanceId)
    return HideResponse(
        entityType=entity_type.value,
        entityId=request.entityId,
        instanceId=request.instanceId,
        cascadeCount=cascade_count,
    )


@router.delete("/{user_id}/{entity_type}/{entity_id}", response_model=UnhideResponse)
async def unhide_entity(
    user_id: int,
    entity_type: str,
    entity_id: str,
    instance_id: str = Query("", description="Instance the entity was hidden in"),
    db: AsyncSession = Depends(get_db),
    service: HiddenEntityService = Depends(get_hidden_entity_service),
):
    """Unhide an entity. The full recompute this requires runs in the background."""
    await _require_user(db, user_id)
    parsed_type = _parse_entity_type(entity_type)

    if not await service.unhide_entity(user_id, parsed_type, entity_id, instance_id):
        raise HTTPException(status_code=404, detail=f"{parsed_type.value} {entity_id} is not hidden")

    return UnhideResponse(
        entityType=parsed_type.value,
        entityId=entity_id,
        instanceId=instance_id,
        recomputeQueued=True,
    )


@router.delete("/{user_id}", response_model=UnhideAllResponse)
async def unhide_all(
    user_id: int,
    entity_type: Optional[str] = Query(None, description="Only unhide this entity type"),
    db: AsyncSession = Depends(get_db),
    service: HiddenEntityService = Depends(get_hidden_entity_service),
):
    """Unhide everything (optionally of one type) and rebuild the user's exclusions."""
    await _require_user(db, user_id)
    parsed_type = _parse_entity_type(entity_type) if entity_type else None

    removed = await service.unhide_all(user_id, parsed_type)
    return UnhideAllResponse(removed=removed)
