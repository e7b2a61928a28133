"""
Empty-entity closure.

Runs after the direct and cascade rows have been written (flushed) inside the
recompute transaction and reads them back from user_excluded_entities, so it
observes exactly what the first phase produced. It is a single pass: every
query runs before any 'empty' row is inserted, so an entity emptied here never
empties another entity in the same recompute.
"""

import logging

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from library_visibility.db.models import Tag, TagParent
from library_visibility.services.exclusion_types import (
    EntityType, ExclusionKey, ExclusionMap, ExclusionReason,
)
from library_visibility.services.library_graph import (
    ENTITY_MODELS, Relation, exclusion_exists,
    GALLERY_IMAGES, PERFORMER_SCENES, PERFORMER_IMAGES, STUDIO_SCENES, STUDIO_IMAGES,
    GROUP_SCENES, TAG_SCENES, TAG_PERFORMERS, TAG_STUDIOS, TAG_GROUPS,
)

logger = logging.getLogger(__name__)

# An entity is empty when none of these relations reaches a visible entity.
# None marks types that are content themselves and never become empty.
EMPTY_RULES: dict[EntityType, tuple[Relation, ...] | None] = {
    EntityType.SCENE: None,
    EntityType.PERFORMER: (PERFORMER_SCENES, PERFORMER_IMAGES),
    EntityType.STUDIO: (STUDIO_SCENES, STUDIO_IMAGES),
    EntityType.TAG: (TAG_SCENES, TAG_PERFORMERS, TAG_STUDIOS, TAG_GROUPS),
    EntityType.GROUP: (GROUP_SCENES,),
    EntityType.GALLERY: (GALLERY_IMAGES,),
    EntityType.IMAGE: None,
}


def _has_visible_target(user_id: int, relation: Relation, parent):
    """EXISTS clause: ``parent`` reaches at least one live, non-excluded target."""
    if relation.target_model is None:
        child = relation.table
        stmt = select(child.id)
    else:
        child = relation.target_model
        stmt = (
            select(child.id)
            .select_from(relation.table)
            .join(
                child,
                and_(child.id == relation.target_id, child.instance_id == relation.target_instance),
            )
        )
    return stmt.where(
        relation.source_id == parent.id,
        relation.source_instance == parent.instance_id,
        child.deleted_at.is_(None),
        ~exclusion_exists(user_id, relation.target_type, child.id, child.instance_id),
    ).exists()


def _has_live_children():
    """EXISTS clause: the tag is a parent of at least one live tag."""
    child = aliased(Tag)
    return (
        select(TagParent.tag_id)
        .join(child, and_(child.id == TagParent.tag_id, child.instance_id == TagParent.instance_id))
        .where(
            TagParent.parent_id == Tag.id,
            TagParent.instance_id == Tag.instance_id,
            child.deleted_at.is_(None),
        )
        .exists()
    )


async def compute_empty_exclusions(session: AsyncSession, user_id: int) -> ExclusionMap:
    """
    Find entities left without visible content by the exclusions already
    written for ``user_id`` in this session's transaction.

    Rows carry the entity's own instance_id. Tags that organize other tags
    are never marked empty.
    """
    empties: ExclusionMap = {}

    for entity_type, relations in EMPTY_RULES.items():
        if relations is None:
            continue

        parent = ENTITY_MODELS[entity_type]
        stmt = select(parent.id, parent.instance_id).where(
            parent.deleted_at.is_(None),
            ~exclusion_exists(user_id, entity_type, parent.id, parent.instance_id),
            *(~_has_visible_target(user_id, relation, parent) for relation in relations),
        )
        if entity_type == EntityType.TAG:
            stmt = stmt.where(~_has_live_children())

        result = await session.execute(stmt.order_by(parent.id, parent.instance_id))
        found = 0
        for entity_id, instance_id in result.all():
            empties[ExclusionKey(entity_type, entity_id, instance_id)] = ExclusionReason.EMPTY
            found += 1

        if found:
            logger.debug(f"User {user_id}: {found} empty {entity_type.plural}")

    return empties
