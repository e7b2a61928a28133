"""
Read-only accessor for the library relationship graph.

Every query here is a pure read, so one LibraryGraph can serve concurrent
recomputes for different users. Relations are described declaratively by
``Relation`` so the cascade propagator and the empty-entity closure walk the
same edges.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from library_visibility.config import get_settings
from library_visibility.db.models import (
    Scene, Performer, Studio, Tag, TagParent, Group, Gallery, Image, UserExcludedEntity,
    ScenePerformer, SceneTag, SceneInheritedTag, SceneGroup, SceneGallery,
    ImageGallery, ImagePerformer, PerformerTag, StudioTag, GroupTag,
)
from library_visibility.services.exclusion_types import (
    EntityType, ExclusionKey, HIERARCHICAL_TYPES,
)

logger = logging.getLogger(__name__)
settings = get_settings()


ENTITY_MODELS = {
    EntityType.SCENE: Scene,
    EntityType.PERFORMER: Performer,
    EntityType.STUDIO: Studio,
    EntityType.TAG: Tag,
    EntityType.GROUP: Group,
    EntityType.GALLERY: Gallery,
    EntityType.IMAGE: Image,
}


@dataclass(frozen=True, eq=False)
class Relation:
    """
    A directed edge type "source entity -> target entities".

    ``table`` holds the link columns. When ``target_model`` is None the
    link table is the target entity table itself (e.g. scenes.studio_id).
    """

    name: str
    source_type: EntityType
    target_type: EntityType
    table: type
    source_id: object
    source_instance: object
    target_id: object
    target_instance: object
    target_model: type | None = None


PERFORMER_SCENES = Relation(
    "performer->scenes", EntityType.PERFORMER, EntityType.SCENE, ScenePerformer,
    ScenePerformer.performer_id, ScenePerformer.performer_instance_id,
    ScenePerformer.scene_id, ScenePerformer.scene_instance_id, Scene,
)
PERFORMER_IMAGES = Relation(
    "performer->images", EntityType.PERFORMER, EntityType.IMAGE, ImagePerformer,
    ImagePerformer.performer_id, ImagePerformer.performer_instance_id,
    ImagePerformer.image_id, ImagePerformer.image_instance_id, Image,
)
STUDIO_SCENES = Relation(
    "studio->scenes", EntityType.STUDIO, EntityType.SCENE, Scene,
    Scene.studio_id, Scene.instance_id, Scene.id, Scene.instance_id,
)
STUDIO_IMAGES = Relation(
    "studio->images", EntityType.STUDIO, EntityType.IMAGE, Image,
    Image.studio_id, Image.instance_id, Image.id, Image.instance_id,
)
TAG_SCENES = Relation(
    "tag->scenes", EntityType.TAG, EntityType.SCENE, SceneTag,
    SceneTag.tag_id, SceneTag.tag_instance_id,
    SceneTag.scene_id, SceneTag.scene_instance_id, Scene,
)
TAG_INHERITED_SCENES = Relation(
    "tag->inherited scenes", EntityType.TAG, EntityType.SCENE, SceneInheritedTag,
    SceneInheritedTag.tag_id, SceneInheritedTag.tag_instance_id,
    SceneInheritedTag.scene_id, SceneInheritedTag.scene_instance_id, Scene,
)
TAG_PERFORMERS = Relation(
    "tag->performers", EntityType.TAG, EntityType.PERFORMER, PerformerTag,
    PerformerTag.tag_id, PerformerTag.tag_instance_id,
    PerformerTag.performer_id, PerformerTag.performer_instance_id, Performer,
)
TAG_STUDIOS = Relation(
    "tag->studios", EntityType.TAG, EntityType.STUDIO, StudioTag,
    StudioTag.tag_id, StudioTag.tag_instance_id,
    StudioTag.studio_id, StudioTag.studio_instance_id, Studio,
)
TAG_GROUPS = Relation(
    "tag->groups", EntityType.TAG, EntityType.GROUP, GroupTag,
    GroupTag.tag_id, GroupTag.tag_instance_id,
    GroupTag.group_id, GroupTag.group_instance_id, Group,
)
GROUP_SCENES = Relation(
    "group->scenes", EntityType.GROUP, EntityType.SCENE, SceneGroup,
    SceneGroup.group_id, SceneGroup.group_instance_id,
    SceneGroup.scene_id, SceneGroup.scene_instance_id, Scene,
)
GALLERY_SCENES = Relation(
    "gallery->scenes", EntityType.GALLERY, EntityType.SCENE, SceneGallery,
    SceneGallery.gallery_id, SceneGallery.gallery_instance_id,
    SceneGallery.scene_id, SceneGallery.scene_instance_id, Scene,
)
GALLERY_IMAGES = Relation(
    "gallery->images", EntityType.GALLERY, EntityType.IMAGE, ImageGallery,
    ImageGallery.gallery_id, ImageGallery.gallery_instance_id,
    ImageGallery.image_id, ImageGallery.image_instance_id, Image,
)


def exclusion_exists(user_id: int, entity_type: EntityType, id_column, instance_column):
    """EXISTS clause: the entity has an exclusion row (global or same instance)."""
    excluded = aliased(UserExcludedEntity)
    return (
        select(excluded.id)
        .where(
            excluded.user_id == user_id,
            excluded.entity_type == entity_type.value,
            excluded.entity_id == id_column,
            or_(excluded.instance_id == "", excluded.instance_id == instance_column),
        )
        .exists()
    )


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class LibraryGraph:
    """Queries answering "which X relate to Y" over the synced library."""

    def __init__(self, chunk_size: int | None = None):
        self.chunk_size = chunk_size or settings.exclusion_query_chunk_size

    async def related(
        self,
        session: AsyncSession,
        relation: Relation,
        sources: Iterable[ExclusionKey],
    ) -> list[ExclusionKey]:
        """
        Follow one relation hop from ``sources``.

        Global sources (empty instance_id) match links in every instance and
        produce global targets. Scoped sources only match links in their own
        instance and produce targets scoped to the target's instance.
        """
        sources = list(sources)
        global_ids = sorted({s.entity_id for s in sources if not s.instance_id})
        scoped = sorted({(s.entity_id, s.instance_id) for s in sources if s.instance_id})

        targets: list[ExclusionKey] = []
        for chunk in chunked(global_ids, self.chunk_size):
            rows = await self._fetch_targets(session, relation, relation.source_id.in_(chunk))
            targets.extend(ExclusionKey(relation.target_type, target_id, "") for target_id, _ in rows)

        for chunk in chunked(scoped, self.chunk_size):
            condition = or_(*(
                and_(relation.source_id == entity_id, relation.source_instance == instance_id)
                for entity_id, instance_id in chunk
            ))
            rows = await self._fetch_targets(session, relation, condition)
            targets.extend(
                ExclusionKey(relation.target_type, target_id, target_instance)
                for target_id, target_instance in rows
            )

        return targets

    async def _fetch_targets(
        self, session: AsyncSession, relation: Relation, condition
    ) -> list[tuple[str, str]]:
        """Live (target_id, target_instance) pairs for links matching ``condition``."""
        if relation.target_model is None:
            result = await session.execute(
                select(relation.target_id, relation.target_instance)
                .where(condition, relation.table.deleted_at.is_(None))
                .distinct()
            )
            return [(row[0], row[1]) for row in result.all()]

        target = relation.target_model
        result = await session.execute(
            select(relation.target_id, relation.target_instance, target.id, target.deleted_at)
            .select_from(relation.table)
            .outerjoin(
                target,
                and_(target.id == relation.target_id, target.instance_id == relation.target_instance),
            )
            .where(condition)
        )

        live: list[tuple[str, str]] = []
        for target_id, target_instance, existing_id, deleted_at in result.all():
            if existing_id is None:
                logger.warning(
                    f"Skipping orphaned {relation.name} link: "
                    f"{relation.target_type.value} {target_id} (instance '{target_instance}') does not exist"
                )
                continue
            if deleted_at is not None:
                continue
            live.append((target_id, target_instance))
        return live

    async def all_ids(self, session: AsyncSession, entity_type: EntityType) -> list[str]:
        """All live IDs of a type across instances (used for INCLUDE inversion)."""
        model = ENTITY_MODELS[entity_type]
        result = await session.execute(
            select(model.id).where(model.deleted_at.is_(None)).distinct().order_by(model.id)
        )
        return [row[0] for row in result.all()]

    async def count_visible(self, session: AsyncSession, user_id: int, entity_type: EntityType) -> int:
        """Live entities of a type (one per instance) not covered by any of the user's exclusion rows."""
        model = ENTITY_MODELS[entity_type]
        result = await session.execute(
            select(func.count()).select_from(model).where(
                model.deleted_at.is_(None),
                ~exclusion_exists(user_id, entity_type, model.id, model.instance_id),
            )
        )
        return result.scalar_one_or_none() or 0

    async def expand_hierarchy(
        self,
        session: AsyncSession,
        entity_type: EntityType,
        ids: Iterable[str],
        depth: int | None,
    ) -> list[str]:
        """
        Expand tag or studio IDs to themselves plus descendants.

        depth 0/None returns the IDs unchanged, N walks N levels down,
        a negative depth walks the whole subtree. Cycles are tolerated.
        """
        expanded = dict.fromkeys(ids)
        if not depth or entity_type not in HIERARCHICAL_TYPES:
            return list(expanded)

        frontier = list(expanded)
        level = 0
        while frontier and (depth < 0 or level < depth):
            children = await self._children(session, entity_type, frontier)
            frontier = [child for child in dict.fromkeys(children) if child not in expanded]
            expanded.update(dict.fromkeys(frontier))
            level += 1

        return list(expanded)

    async def _children(
        self, session: AsyncSession, entity_type: EntityType, parent_ids: list[str]
    ) -> list[str]:
        children: list[str] = []
        for chunk in chunked(parent_ids, self.chunk_size):
            if entity_type == EntityType.TAG:
                stmt = (
                    select(TagParent.tag_id)
                    .join(Tag, and_(Tag.id == TagParent.tag_id, Tag.instance_id == TagParent.instance_id))
                    .where(TagParent.parent_id.in_(chunk), Tag.deleted_at.is_(None))
                )
            else:
                stmt = select(Studio.id).where(Studio.parent_id.in_(chunk), Studio.deleted_at.is_(None))
            result = await session.execute(stmt.distinct())
            children.extend(sorted(row[0] for row in result.all()))
        return children
