"""Turn a user's hidden items and content restrictions into direct exclusions."""

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.core.errors import UnknownEntityTypeError
from library_visibility.db.models import UserContentRestriction, UserHiddenEntity
from library_visibility.services.exclusion_types import (
    EntityType, ExclusionKey, ExclusionMap, ExclusionReason, RestrictionMode,
    RESTRICTABLE_TYPES, drop_covered,
)
from library_visibility.services.library_graph import LibraryGraph

logger = logging.getLogger(__name__)


def parse_entity_ids(raw: str | None) -> list[str] | None:
    """Decode a restriction's JSON ID array. Returns None when unusable."""
    try:
        decoded = json.loads(raw) if raw else []
    except (TypeError, ValueError):
        return None
    if not isinstance(decoded, list):
        return None
    return [str(item) for item in decoded if item is not None and not isinstance(item, (list, dict))]


async def resolve_direct_exclusions(
    session: AsyncSession,
    graph: LibraryGraph,
    user_id: int,
) -> ExclusionMap:
    """
    Compute the direct exclusion map for one user.

    Restrictions are processed first (reason 'restricted'), then hidden items
    (reason 'hidden'). A key produced twice keeps its first reason, and a
    scoped key is dropped when the global key for the same entity is present.
    Restrictions that cannot be interpreted are logged and skipped.
    """
    exclusions: ExclusionMap = {}

    result = await session.execute(
        select(UserContentRestriction)
        .where(UserContentRestriction.user_id == user_id)
        .order_by(UserContentRestriction.id)
    )
    restrictions = result.scalars().all()

    for restriction in restrictions:
        excluded_ids = await _restricted_ids(session, graph, restriction)
        if excluded_ids is None:
            continue
        entity_type = EntityType.parse(restriction.entity_type)
        for entity_id in excluded_ids:
            exclusions.setdefault(ExclusionKey(entity_type, entity_id, ""), ExclusionReason.RESTRICTED)

    result = await session.execute(
        select(UserHiddenEntity)
        .where(UserHiddenEntity.user_id == user_id)
        .order_by(UserHiddenEntity.id)
    )
    for hidden in result.scalars().all():
        try:
            entity_type = EntityType.parse(hidden.entity_type)
        except UnknownEntityTypeError:
            logger.warning(
                f"Skipping hidden entity {hidden.id} for user {user_id}: "
                f"unknown entity type {hidden.entity_type!r}"
            )
            continue
        key = ExclusionKey(entity_type, hidden.entity_id, hidden.instance_id or "")
        exclusions.setdefault(key, ExclusionReason.HIDDEN)

    return drop_covered(exclusions)


async def _restricted_ids(
    session: AsyncSession,
    graph: LibraryGraph,
    restriction: UserContentRestriction,
) -> list[str] | None:
    """IDs one restriction excludes, or None if the restriction is unusable."""
    try:
        entity_type = EntityType.parse(restriction.entity_type)
    except UnknownEntityTypeError:
        entity_type = None
    if entity_type not in RESTRICTABLE_TYPES:
        logger.warning(
            f"Skipping restriction {restriction.id} for user {restriction.user_id}: "
            f"entity type {restriction.entity_type!r} cannot be restricted"
        )
        return None

    try:
        mode = RestrictionMode(str(restriction.mode).upper())
    except ValueError:
        logger.warning(
            f"Skipping restriction {restriction.id} for user {restriction.user_id}: "
            f"unknown mode {restriction.mode!r}"
        )
        return None

    listed_ids = parse_entity_ids(restriction.entity_ids)
    if listed_ids is None:
        logger.warning(
            f"Skipping restriction {restriction.id} for user {restriction.user_id}: "
            f"entityIds is not a JSON array"
        )
        return None

    listed_ids = await graph.expand_hierarchy(session, entity_type, listed_ids, restriction.depth)

    if mode == RestrictionMode.EXCLUDE:
        return listed_ids

    # INCLUDE: everything of this type except the listed IDs
    allowed = set(listed_ids)
    universe = await graph.all_ids(session, entity_type)
    return [entity_id for entity_id in universe if entity_id not in allowed]
