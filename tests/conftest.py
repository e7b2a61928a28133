import os

# Settings are read once at import time; point them at SQLite before any
# library_visibility module is imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["RECOMPUTE_ALL_ENABLED"] = "false"

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from library_visibility.core.tasks import TaskManager
from library_visibility.db.database import Base
from library_visibility.db.models import User, UserExcludedEntity
from library_visibility.services.exclusion_service import ExclusionComputationService
from library_visibility.services.library_graph import LibraryGraph

INSTANCE = "inst1"
USER_ID = 1


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def task_manager():
    return TaskManager()


@pytest.fixture
def graph():
    # Small chunks so multi-chunk query paths run in every test
    return LibraryGraph(chunk_size=2)


@pytest.fixture
def service(session_factory, graph, task_manager):
    return ExclusionComputationService(
        session_factory=session_factory,
        graph=graph,
        task_manager=task_manager,
    )


@pytest.fixture
def seed(session_factory):
    async def _seed(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
    return _seed


@pytest.fixture
async def user_id(seed):
    await seed(User(id=USER_ID, username="alice"))
    return USER_ID


@pytest.fixture
def exclusions(session_factory):
    """Read a user's exclusion rows as a set of (type, id, reason)."""
    async def _read(user_id: int, with_instance: bool = False) -> set[tuple]:
        async with session_factory() as session:
            result = await session.execute(
                select(
                    UserExcludedEntity.entity_type,
                    UserExcludedEntity.entity_id,
                    UserExcludedEntity.instance_id,
                    UserExcludedEntity.reason,
                ).where(UserExcludedEntity.user_id == user_id)
            )
            rows = result.all()
        if with_instance:
            return {tuple(row) for row in rows}
        return {(entity_type, entity_id, reason) for entity_type, entity_id, _, reason in rows}
    return _read
