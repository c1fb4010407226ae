from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.domain.models import WorkspaceInvitation


async def get_by_token(session: AsyncSession, *, token: str) -> WorkspaceInvitation | None:
    result = await session.execute(
        select(WorkspaceInvitation).where(WorkspaceInvitation.invite_token == token)
    )
    return result.scalar_one_or_none()


async def get_by_id(session: AsyncSession, *, invitation_id: str) -> WorkspaceInvitation | None:
    result = await session.execute(
        select(WorkspaceInvitation).where(WorkspaceInvitation.id == invitation_id)
    )
    return result.scalar_one_or_none()


async def find_for_email(
    session: AsyncSession,
    *,
    workspace_id: str,
    email: str,
) -> WorkspaceInvitation | None:
    # Latest invitation for the address; older rows are replaced on re-invite.
    result = await session.execute(
        select(WorkspaceInvitation)
        .where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.email == email.lower(),
        )
        .order_by(WorkspaceInvitation.invited_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def list_pending_emails(session: AsyncSession, *, workspace_id: str) -> set[str]:
    result = await session.execute(
        select(WorkspaceInvitation.email).where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.status == "pending",
        )
    )
    return {email.lower() for email in result.scalars().all()}


async def insert_invitation(
    session: AsyncSession,
    *,
    workspace_id: str,
    email: str,
    role: str,
    invited_by: str,
    token: str,
    invited_at: datetime,
    expires_at: datetime,
) -> WorkspaceInvitation:
    row = WorkspaceInvitation(
        workspace_id=workspace_id,
        email=email.lower(),
        role=role,
        invited_by=invited_by,
        invite_token=token,
        status="pending",
        invited_at=invited_at,
        expires_at=expires_at,
    )
    session.add(row)
    await session.flush()
    return row


async def delete_invitation(session: AsyncSession, *, invitation_id: str) -> None:
    await session.execute(delete(WorkspaceInvitation).where(WorkspaceInvitation.id == invitation_id))


async def list_pending(session: AsyncSession, *, workspace_id: str) -> list[WorkspaceInvitation]:
    # Newest first, matching the order the team screen renders.
    result = await session.execute(
        select(WorkspaceInvitation)
        .where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.status == "pending",
        )
        .order_by(WorkspaceInvitation.invited_at.desc())
    )
    return list(result.scalars().all())
