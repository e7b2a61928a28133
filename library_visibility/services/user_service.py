"""User lookups shared by the API endpoints."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility.db.models import User


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
