"""Lookups against the user table owned by the auth/profile service."""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.models.user import User


async def get_user_by_id(
    db: AsyncSession,
    user_id: UUID,
) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_users_by_ids(
    db: AsyncSession,
    user_ids: Iterable[UUID],
) -> dict[UUID, User]:
    """Resolve several users at once, keyed by id. Unknown ids are left out."""
    ids = set(user_ids)
    if not ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(ids)))
    return {user.id: user for user in result.scalars().all()}
