from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.domain.models import UserProfile, Workspace


async def get_profile(session: AsyncSession, *, user_id: str) -> UserProfile | None:
    result = await session.execute(select(UserProfile).where(UserProfile.id == user_id))
    return result.scalar_one_or_none()


async def find_profile_by_email(session: AsyncSession, *, email: str) -> UserProfile | None:
    # Emails are compared case-insensitively; the first registered match wins.
    result = await session.execute(
        select(UserProfile)
        .where(func.lower(UserProfile.email) == email.strip().lower())
        .order_by(UserProfile.created_at)
        .limit(1)
    )
    return result.scalars().first()


async def get_profiles(session: AsyncSession, *, user_ids: Iterable[str]) -> dict[str, UserProfile]:
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    result = await session.execute(select(UserProfile).where(UserProfile.id.in_(ids)))
    return {profile.id: profile for profile in result.scalars().all()}


async def set_last_workspace(session: AsyncSession, *, user_id: str, workspace_id: str) -> None:
    await session.execute(
        update(UserProfile).where(UserProfile.id == user_id).values(last_workspace_id=workspace_id)
    )


async def get_workspace(session: AsyncSession, *, workspace_id: str) -> Workspace | None:
    result = await session.execute(select(Workspace).where(Workspace.id == workspace_id))
    return result.scalar_one_or_none()


async def count_owned_workspaces(session: AsyncSession, *, owner_id: str) -> int:
    result = await session.execute(
        select(func.count(Workspace.id)).where(Workspace.owner_id == owner_id)
    )
    return int(result.scalar_one())


async def insert_workspace(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    owner_id: str,
) -> Workspace:
    row = Workspace(name=name, slug=slug, owner_id=owner_id)
    session.add(row)
    await session.flush()
    return row

