"""One-hop cascade from directly excluded entities to what they contain."""

import logging
from typing import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.services.exclusion_types import (
    EntityType, ExclusionKey, ExclusionMap, ExclusionReason, is_covered,
)
from library_visibility.services.library_graph import (
    LibraryGraph, Relation,
    PERFORMER_SCENES, STUDIO_SCENES,
    TAG_SCENES, TAG_INHERITED_SCENES, TAG_PERFORMERS, TAG_STUDIOS, TAG_GROUPS,
    GROUP_SCENES, GALLERY_SCENES, GALLERY_IMAGES,
)

logger = logging.getLogger(__name__)

# Every entity type must appear here; scenes and images contain nothing.
CASCADE_RULES: dict[EntityType, tuple[Relation, ...]] = {
    EntityType.SCENE: (),
    EntityType.PERFORMER: (PERFORMER_SCENES,),
    EntityType.STUDIO: (STUDIO_SCENES,),
    EntityType.TAG: (TAG_SCENES, TAG_INHERITED_SCENES, TAG_PERFORMERS, TAG_STUDIOS, TAG_GROUPS),
    EntityType.GROUP: (GROUP_SCENES,),
    EntityType.GALLERY: (GALLERY_SCENES, GALLERY_IMAGES),
    EntityType.IMAGE: (),
}


async def propagate_cascades(
    session: AsyncSession,
    graph: LibraryGraph,
    direct: Mapping[ExclusionKey, ExclusionReason],
) -> ExclusionMap:
    """
    Expand each direct exclusion exactly one relation hop.

    Returns only new keys, each with reason 'cascade'. Keys already present in
    ``direct`` keep their direct reason and are not returned. A global key
    (instance_id "") covers every instance of the same entity, so scoped
    targets it covers are dropped. Cascade results are not expanded further.
    """
    sources_by_type: dict[EntityType, list[ExclusionKey]] = {}
    for key in direct:
        sources_by_type.setdefault(key.entity_type, []).append(key)

    cascades: ExclusionMap = {}
    scoped_keys: dict[tuple[EntityType, str], list[ExclusionKey]] = {}
    for entity_type, sources in sources_by_type.items():
        for relation in CASCADE_RULES[entity_type]:
            for target in await graph.related(session, relation, sources):
                if is_covered(target, direct) or is_covered(target, cascades):
                    continue
                entity = (target.entity_type, target.entity_id)
                if target.is_global:
                    for scoped in scoped_keys.pop(entity, ()):
                        del cascades[scoped]
                else:
                    scoped_keys.setdefault(entity, []).append(target)
                cascades[target] = ExclusionReason.CASCADE

    if cascades:
        logger.debug(f"Cascade added {len(cascades)} exclusions from {len(direct)} direct exclusions")
    return cascades
