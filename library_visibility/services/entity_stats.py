"""Per-user, per-type exclusion counts for dashboards."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.db.database import dialect_insert
from library_visibility.db.models import UserEntityStats, UserExcludedEntity
from library_visibility.services.exclusion_types import EntityType
from library_visibility.services.library_graph import LibraryGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityCounts:
    excluded: int
    visible: int


async def update_entity_stats(
    session: AsyncSession,
    graph: LibraryGraph,
    user_id: int,
) -> dict[EntityType, EntityCounts]:
    """
    Upsert one stats row per entity type from the user's current exclusion rows.

    excluded_count is the number of rows, which may name IDs absent from the
    library or one entity under several instances. visible_count counts live
    entities that no row covers, so the two need not add up to the library size.

    Must run inside the recompute transaction, after all rows are written.
    """
    result = await session.execute(
        select(UserExcludedEntity.entity_type, func.count())
        .where(UserExcludedEntity.user_id == user_id)
        .group_by(UserExcludedEntity.entity_type)
    )
    excluded_by_type = {entity_type: count for entity_type, count in result.all()}

    insert = dialect_insert(session)
    now = datetime.now(timezone.utc)
    counts: dict[EntityType, EntityCounts] = {}

    for entity_type in EntityType:
        excluded = excluded_by_type.get(entity_type.value, 0)
        visible = await graph.count_visible(session, user_id, entity_type)

        stmt = insert(UserEntityStats).values(
            user_id=user_id,
            entity_type=entity_type.value,
            instance_id="",
            excluded_count=excluded,
            visible_count=visible,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "entity_type", "instance_id"],
            set_={
                "excluded_count": stmt.excluded.excluded_count,
                "visible_count": stmt.excluded.visible_count,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        counts[entity_type] = EntityCounts(excluded=excluded, visible=visible)

    logger.debug(f"Updated entity stats for user {user_id}")
    return counts


async def get_entity_stats(session: AsyncSession, user_id: int) -> list[UserEntityStats]:
    """Stats rows for one user, ordered by entity type."""
    result = await session.execute(
        select(UserEntityStats)
        .where(UserEntityStats.user_id == user_id)
        .order_by(UserEntityStats.entity_type)
    )
    return list(result.scalars().all())
