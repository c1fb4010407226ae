from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.domain.models import WorkspaceMember


async def get_member(
    session: AsyncSession,
    *,
    workspace_id: str,
    user_id: str,
) -> WorkspaceMember:
    # Strict single-row read; raises NoResultFound when the pair has no membership row.
    result = await session.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    return result.scalar_one()


async def find_member(
    session: AsyncSession,
    *,
    workspace_id: str,
    user_id: str,
) -> WorkspaceMember | None:
    result = await session.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_member_user_ids(session: AsyncSession, *, workspace_id: str) -> set[str]:
    result = await session.execute(
        select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id)
    )
    return set(result.scalars().all())


async def count_members(session: AsyncSession, *, workspace_id: str) -> int:
    result = await session.execute(
        select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == workspace_id)
    )
    return int(result.scalar_one())


async def insert_member(
    session: AsyncSession,
    *,
    workspace_id: str,
    user_id: str,
    role: str,
    flags: dict[str, bool],
    invited_by: str | None = None,
) -> WorkspaceMember:
    # Flush immediately so the unique (workspace_id, user_id) constraint surfaces here.
    row = WorkspaceMember(
        workspace_id=workspace_id,
        user_id=user_id,
        role=role,
        invited_by=invited_by,
        joined_at=datetime.now(timezone.utc),
        **flags,
    )
    session.add(row)
    await session.flush()
    return row


async def list_members(session: AsyncSession, *, workspace_id: str) -> list[WorkspaceMember]:
    result = await session.execute(
        select(WorkspaceMember)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.created_at, WorkspaceMember.id)
    )
    return list(result.scalars().all())


async def delete_member(session: AsyncSession, *, workspace_id: str, user_id: str) -> None:
    await session.execute(
        delete(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
