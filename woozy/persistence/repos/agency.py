from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.domain.models import AgencyTeamMember, AgencyWorkspaceProvision


async def find_active_delegation(
    session: AsyncSession,
    *,
    member_user_id: str,
) -> AgencyTeamMember | None:
    # A user may sit on several rosters; the oldest active delegation decides the principal.
    result = await session.execute(
        select(AgencyTeamMember)
        .where(
            AgencyTeamMember.member_user_id == member_user_id,
            AgencyTeamMember.can_manage_agency.is_(True),
            AgencyTeamMember.status == "active",
        )
        .order_by(AgencyTeamMember.created_at.asc(), AgencyTeamMember.id.asc())
        .limit(1)
    )
    return result.scalars().first()


async def list_roster(session: AsyncSession, *, agency_owner_id: str) -> list[AgencyTeamMember]:
    result = await session.execute(
        select(AgencyTeamMember)
        .where(AgencyTeamMember.agency_owner_id == agency_owner_id)
        .order_by(AgencyTeamMember.created_at.desc(), AgencyTeamMember.id.asc())
    )
    return list(result.scalars().all())


async def list_roster_entries(
    session: AsyncSession,
    *,
    agency_owner_id: str,
    entry_ids: list[str],
) -> list[AgencyTeamMember]:
    # Entries from other rosters are filtered out rather than reported.
    if not entry_ids:
        return []
    result = await session.execute(
        select(AgencyTeamMember)
        .where(
            AgencyTeamMember.agency_owner_id == agency_owner_id,
            AgencyTeamMember.id.in_(entry_ids),
        )
        .order_by(AgencyTeamMember.created_at.asc(), AgencyTeamMember.id.asc())
    )
    return list(result.scalars().all())


async def get_roster_entry(session: AsyncSession, *, entry_id: str) -> AgencyTeamMember | None:
    result = await session.execute(select(AgencyTeamMember).where(AgencyTeamMember.id == entry_id))
    return result.scalar_one_or_none()


async def find_roster_entry_by_email(
    session: AsyncSession,
    *,
    agency_owner_id: str,
    email: str,
) -> AgencyTeamMember | None:
    result = await session.execute(
        select(AgencyTeamMember).where(
            AgencyTeamMember.agency_owner_id == agency_owner_id,
            func.lower(AgencyTeamMember.email) == email.strip().lower(),
        )
    )
    return result.scalars().first()


async def insert_roster_entry(session: AsyncSession, *, values: dict[str, Any]) -> AgencyTeamMember:
    row = AgencyTeamMember(**values)
    session.add(row)
    await session.flush()
    return row


async def delete_roster_entry(session: AsyncSession, *, entry_id: str) -> None:
    await session.execute(
        delete(AgencyWorkspaceProvision).where(AgencyWorkspaceProvision.agency_team_member_id == entry_id)
    )
    await session.execute(delete(AgencyTeamMember).where(AgencyTeamMember.id == entry_id))


async def insert_provision(session: AsyncSession, *, values: dict[str, Any]) -> AgencyWorkspaceProvision:
    row = AgencyWorkspaceProvision(**values)
    session.add(row)
    await session.flush()
    return row
