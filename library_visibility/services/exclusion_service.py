"""
Exclusion computation service.

Maintains user_excluded_entities, the per-user materialized set of hidden
library entities that browse queries anti-join against.

Exclusion sources, in priority order:
- user_content_restrictions -> reason='restricted'
- user_hidden_entities      -> reason='hidden'
- one hop from the above    -> reason='cascade'
- nothing visible left      -> reason='empty'

Full rebuilds run in one transaction (delete, direct + cascade insert, empty
insert, stats). Hiding is applied incrementally; unhiding deletes the fact and
queues a full rebuild in the background.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy import select, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from library_visibility.core.tasks import TaskManager
from library_visibility.db.database import async_session, dialect_insert
from library_visibility.db.models import User, UserExcludedEntity, UserHiddenEntity
from library_visibility.services.cascade import propagate_cascades
from library_visibility.services.direct_exclusions import resolve_direct_exclusions
from library_visibility.services.empty_closure import compute_empty_exclusions
from library_visibility.services.entity_stats import EntityCounts, update_entity_stats
from library_visibility.services.exclusion_types import (
    EntityType, ExclusionKey, ExclusionMap, ExclusionReason, is_covered,
)
from library_visibility.services.library_graph import LibraryGraph, chunked

logger = logging.getLogger(__name__)

NATURAL_KEY = ["user_id", "entity_type", "entity_id", "instance_id"]

# Rows an incoming direct reason may overwrite
DERIVED_REASONS = [ExclusionReason.CASCADE.value, ExclusionReason.EMPTY.value]


@dataclass
class RecomputeResult:
    """Row counts written by one full recompute."""
    user_id: int
    direct: int
    cascade: int
    empty: int
    stats: dict[EntityType, EntityCounts] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return self.direct + self.cascade + self.empty


@dataclass
class RecomputeAllResult:
    """Outcome of recomputing every user."""
    success: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)


def _exclusion_rows(user_id: int, exclusions: ExclusionMap, computed_at: datetime) -> list[dict]:
    return [
        {
            "user_id": user_id,
            "entity_type": key.entity_type.value,
            "entity_id": key.entity_id,
            "instance_id": key.instance_id,
            "reason": reason.value,
            "computed_at": computed_at,
        }
        for key, reason in exclusions.items()
    ]


async def _insert_exclusions(
    session: AsyncSession, user_id: int, exclusions: ExclusionMap, computed_at: datetime
) -> None:
    if not exclusions:
        return
    await session.execute(insert(UserExcludedEntity), _exclusion_rows(user_id, exclusions, computed_at))


class ExclusionComputationService:
    """
    Computes and maintains pre-computed exclusions for each user.

    Holds only a session factory, a read-only graph accessor and the
    background task manager. Recomputes for the same user are serialized
    with a per-user lock; different users may recompute concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        graph: LibraryGraph | None = None,
        task_manager: TaskManager | None = None,
    ):
        self.session_factory = session_factory
        self.graph = graph or LibraryGraph()
        self.task_manager = task_manager or TaskManager.get_instance()
        self._user_locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        return self._user_locks.setdefault(user_id, asyncio.Lock())

    async def recompute_for_user(self, user_id: int) -> RecomputeResult:
        """
        Rebuild a user's exclusion set from scratch.

        Waits for any in-flight recompute of the same user first, so the most
        recently requested rebuild always reads the latest facts. Errors roll
        the transaction back and propagate; the previous set stays in place.
        """
        lock = self._lock_for(user_id)
        if lock.locked():
            logger.info(f"Exclusion recompute for user {user_id} already running, waiting for it")
        async with lock:
            return await self._recompute(user_id)

    async def _recompute(self, user_id: int) -> RecomputeResult:
        logger.info(f"Recomputing exclusions for user {user_id}")
        t0 = time.monotonic()

        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(UserExcludedEntity).where(UserExcludedEntity.user_id == user_id)
                )

                # Phase 1: restrictions + hidden items
                direct = await resolve_direct_exclusions(session, self.graph, user_id)
                t1 = time.monotonic()

                # Phase 2: one hop outward
                cascade = await propagate_cascades(session, self.graph, direct)
                t2 = time.monotonic()

                computed_at = datetime.now(timezone.utc)
                await _insert_exclusions(session, user_id, {**direct, **cascade}, computed_at)

                # Phase 3: reads the rows just written
                empty = await compute_empty_exclusions(session, user_id)
                await _insert_exclusions(session, user_id, empty, computed_at)
                t3 = time.monotonic()

                stats = await update_entity_stats(session, self.graph, user_id)

        t4 = time.monotonic()
        result = RecomputeResult(
            user_id=user_id,
            direct=len(direct),
            cascade=len(cascade),
            empty=len(empty),
            stats=stats,
            duration_ms=int((t4 - t0) * 1000),
        )
        logger.info(
            f"Recomputed exclusions for user {user_id}: total={result.total} "
            f"(direct={result.direct}, cascade={result.cascade}, empty={result.empty}) "
            f"direct={int((t1 - t0) * 1000)}ms cascade={int((t2 - t1) * 1000)}ms "
            f"empty={int((t3 - t2) * 1000)}ms write={int((t4 - t3) * 1000)}ms"
        )
        return result

    async def recompute_all_users(self) -> RecomputeAllResult:
        """Recompute every user one after another; a failing user does not stop the run."""
        logger.info("Recomputing exclusions for all users")

        async with self.session_factory() as session:
            result = await session.execute(select(User.id).order_by(User.id))
            user_ids = [row[0] for row in result.all()]

        outcome = RecomputeAllResult()
        for user_id in user_ids:
            try:
                await self.recompute_for_user(user_id)
                outcome.success += 1
            except Exception as e:
                logger.error(f"Failed to recompute exclusions for user {user_id}: {e}", exc_info=True)
                outcome.failed += 1
                outcome.errors.append({"user_id": user_id, "error": str(e)})

        logger.info(
            f"Recomputed exclusions for {len(user_ids)} users: "
            f"success={outcome.success}, failed={outcome.failed}"
        )
        return outcome

    async def add_hidden_entity(
        self,
        user_id: int,
        entity_type: EntityType | str,
        entity_id: str,
        instance_id: str = "",
    ) -> int:
        """
        Apply a newly hidden entity without a full rebuild.

        Upserts the 'hidden' row and inserts its one-hop cascade, skipping keys
        that already exist or that an existing global row covers. A global row
        written here replaces scoped rows for the same entity, the way a full
        recompute would. Entities this leaves empty are picked up by the next
        full recompute. Returns the number of cascade rows attempted.

        Holds the user's lock, so it never interleaves with a recompute.
        """
        entity_type = EntityType.parse(entity_type)
        key = ExclusionKey(entity_type, entity_id, instance_id or "")
        t0 = time.monotonic()

        async with self._lock_for(user_id):
            async with self.session_factory() as session:
                async with session.begin():
                    cascades = await propagate_cascades(session, self.graph, {key: ExclusionReason.HIDDEN})
                    existing = await self._global_rows(session, user_id, [key, *cascades])
                    dialect = dialect_insert(session)
                    now = datetime.now(timezone.utc)

                    covering = existing.get(key.as_global())
                    if key.is_global or covering is None or not covering.is_direct:
                        hidden_row = _exclusion_rows(user_id, {key: ExclusionReason.HIDDEN}, now)[0]
                        stmt = dialect(UserExcludedEntity).values(**hidden_row)
                        stmt = stmt.on_conflict_do_update(
                            index_elements=NATURAL_KEY,
                            set_={"reason": ExclusionReason.HIDDEN.value, "computed_at": now},
                            where=UserExcludedEntity.reason.in_(DERIVED_REASONS),
                        )
                        await session.execute(stmt)
                        if key.is_global:
                            await self._delete_scoped_rows(session, user_id, [key])

                    cascades = {
                        target: reason for target, reason in cascades.items()
                        if not is_covered(target, existing)
                    }
                    if cascades:
                        await session.execute(
                            dialect(UserExcludedEntity).on_conflict_do_nothing(index_elements=NATURAL_KEY),
                            _exclusion_rows(user_id, cascades, now),
                        )
                        await self._delete_scoped_rows(
                            session, user_id, [target for target in cascades if target.is_global],
                            reasons=DERIVED_REASONS,
                        )

        logger.info(
            f"Hid {entity_type.value} {entity_id} (instance '{key.instance_id}') for user {user_id}: "
            f"{len(cascades)} cascade rows in {int((time.monotonic() - t0) * 1000)}ms"
        )
        return len(cascades)

    async def _global_rows(
        self, session: AsyncSession, user_id: int, keys: list[ExclusionKey]
    ) -> ExclusionMap:
        """The user's existing global rows for the entities behind ``keys``."""
        ids_by_type: dict[EntityType, set[str]] = {}
        for key in keys:
            ids_by_type.setdefault(key.entity_type, set()).add(key.entity_id)

        rows: ExclusionMap = {}
        for entity_type, ids in ids_by_type.items():
            for chunk in chunked(sorted(ids), self.graph.chunk_size):
                result = await session.execute(
                    select(UserExcludedEntity.entity_id, UserExcludedEntity.reason).where(
                        UserExcludedEntity.user_id == user_id,
                        UserExcludedEntity.entity_type == entity_type.value,
                        UserExcludedEntity.instance_id == "",
                        UserExcludedEntity.entity_id.in_(chunk),
                    )
                )
                for row_id, reason in result.all():
                    rows[ExclusionKey(entity_type, row_id, "")] = ExclusionReason(reason)
        return rows

    async def _delete_scoped_rows(
        self,
        session: AsyncSession,
        user_id: int,
        keys: list[ExclusionKey],
        reasons: list[str] | None = None,
    ) -> None:
        """Delete per-instance rows for the entities behind ``keys``."""
        ids_by_type: dict[EntityType, set[str]] = {}
        for key in keys:
            ids_by_type.setdefault(key.entity_type, set()).add(key.entity_id)

        for entity_type, ids in ids_by_type.items():
            for chunk in chunked(sorted(ids), self.graph.chunk_size):
                stmt = delete(UserExcludedEntity).where(
                    UserExcludedEntity.user_id == user_id,
                    UserExcludedEntity.entity_type == entity_type.value,
                    UserExcludedEntity.instance_id != "",
                    UserExcludedEntity.entity_id.in_(chunk),
                )
                if reasons:
                    stmt = stmt.where(UserExcludedEntity.reason.in_(reasons))
                await session.execute(stmt)

    async def remove_hidden_entity(
        self,
        user_id: int,
        entity_type: EntityType | str,
        entity_id: str,
        instance_id: str = "",
    ) -> None:
        """
        Delete a hidden-entity fact and its 'hidden' row, then queue a full
        recompute in the background.

        Unhiding can bring back cascade and empty rows elsewhere, which only a
        full rebuild resolves. The caller does not wait for it; its errors are
        logged and discarded. The deletion holds the user's lock; the queued
        recompute takes it again once it runs.
        """
        entity_type = EntityType.parse(entity_type)
        instance_id = instance_id or ""

        async with self._lock_for(user_id):
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(UserHiddenEntity).where(
                            UserHiddenEntity.user_id == user_id,
                            UserHiddenEntity.entity_type == entity_type.value,
                            UserHiddenEntity.entity_id == entity_id,
                            UserHiddenEntity.instance_id == instance_id,
                        )
                    )
                    await session.execute(
                        delete(UserExcludedEntity).where(
                            UserExcludedEntity.user_id == user_id,
                            UserExcludedEntity.entity_type == entity_type.value,
                            UserExcludedEntity.entity_id == entity_id,
                            UserExcludedEntity.instance_id == instance_id,
                            UserExcludedEntity.reason == ExclusionReason.HIDDEN.value,
                        )
                    )

        task_name = f"exclusions:recompute:user:{user_id}"
        if self.task_manager.get_task(task_name) is not None:
            logger.debug(f"Recompute for user {user_id} already queued, queueing another behind it")
        logger.info(
            f"Unhid {entity_type.value} {entity_id} (instance '{instance_id}') for user {user_id}, "
            f"queueing recompute"
        )
        self.task_manager.create_task(
            self.recompute_for_user(user_id),
            name=task_name,
            suppress_errors=True,
        )


@lru_cache
def get_exclusion_service() -> ExclusionComputationService:
    """Process-wide service instance (FastAPI dependency)."""
    return ExclusionComputationService()
