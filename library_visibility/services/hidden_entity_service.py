"""Service for a user's manually hidden entities.

Writes the user_hidden_entities facts and keeps user_excluded_entities in
step through the exclusion engine's incremental paths.
"""

import logging
from functools import lru_cache

from sqlalchemy import select, delete, func

from library_visibility.db.database import dialect_insert
from library_visibility.db.models import UserHiddenEntity
from library_visibility.services.exclusion_service import (
    ExclusionComputationService, get_exclusion_service,
)
from library_visibility.services.exclusion_types import EntityType

logger = logging.getLogger(__name__)


class HiddenEntityService:
    def __init__(self, exclusions: ExclusionComputationService):
        self.exclusions = exclusions

    @property
    def session_factory(self):
        return self.exclusions.session_factory

    async def hide_entity(
        self,
        user_id: int,
        entity_type: EntityType | str,
        entity_id: str,
        instance_id: str = "",
    ) -> int:
        """
        Hide one entity for a user.

        Records the fact (a no-op if already hidden), then applies the hidden
        row and its cascade. Returns the number of cascade rows attempted.
        """
        entity_type = EntityType.parse(entity_type)
        instance_id = instance_id or ""

        async with self.session_factory() as session:
            async with session.begin():
                insert = dialect_insert(session)
                stmt = insert(UserHiddenEntity).values(
                    user_id=user_id,
                    entity_type=entity_type.value,
                    entity_id=entity_id,
                    instance_id=instance_id,
                ).on_conflict_do_nothing(
                    index_elements=["user_id", "entity_type", "entity_id", "instance_id"],
                )
                await session.execute(stmt)

        return await self.exclusions.add_hidden_entity(user_id, entity_type, entity_id, instance_id)

    async def unhide_entity(
        self,
        user_id: int,
        entity_type: EntityType | str,
        entity_id: str,
        instance_id: str = "",
    ) -> bool:
        """Unhide one entity. Returns False if it was not hidden."""
        entity_type = EntityType.parse(entity_type)
        instance_id = instance_id or ""

        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(UserHiddenEntity).where(
                    UserHiddenEntity.user_id == user_id,
                    UserHiddenEntity.entity_type == entity_type.value,
                    UserHiddenEntity.entity_id == entity_id,
                    UserHiddenEntity.instance_id == instance_id,
                )
            )
            if not result.scalar_one():
                logger.debug(f"User {user_id} has no hidden {entity_type.value} {entity_id}")
                return False

        await self.exclusions.remove_hidden_entity(user_id, entity_type, entity_id, instance_id)
        return True

    async def unhide_all(self, user_id: int, entity_type: EntityType | str | None = None) -> int:
        """
        Remove every hidden entity for a user, optionally of one type, and
        rebuild the user's exclusions before returning.
        """
        conditions = [UserHiddenEntity.user_id == user_id]
        if entity_type is not None:
            conditions.append(UserHiddenEntity.entity_type == EntityType.parse(entity_type).value)

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(UserHiddenEntity).where(*conditions))
                removed = result.rowcount or 0

        if removed:
            logger.info(f"Unhid {removed} entities for user {user_id}")
            await self.exclusions.recompute_for_user(user_id)
        return removed

    async def list_hidden(
        self, user_id: int, entity_type: EntityType | str | None = None
    ) -> list[UserHiddenEntity]:
        """A user's hidden entities, newest first."""
        query = select(UserHiddenEntity).where(UserHiddenEntity.user_id == user_id)
        if entity_type is not None:
            query = query.where(UserHiddenEntity.entity_type == EntityType.parse(entity_type).value)

        async with self.session_factory() as session:
            result = await session.execute(
                query.order_by(UserHiddenEntity.hidden_at.desc(), UserHiddenEntity.id.desc())
            )
            return list(result.scalars().all())


@lru_cache
def get_hidden_entity_service() -> HiddenEntityService:
    return HiddenEntityService(get_exclusion_service())
