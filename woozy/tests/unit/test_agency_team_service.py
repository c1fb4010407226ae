from __future__ import annotations

import pytest
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from woozy.domain.models import AgencyTeamMember, AgencyWorkspaceProvision, WorkspaceInvitation, WorkspaceMember
from woozy.persistence.db import SessionLocal
from woozy.persistence.repos import members as members_repo
from woozy.services.agency_team import (
    add_roster_member,
    bulk_provision,
    list_roster,
    remove_roster_member,
    update_roster_member,
)
from woozy.tests.utils.factories import (
    add_member,
    add_roster_entry,
    create_invitation,
    create_profile,
    create_workspace,
)


pytestmark = pytest.mark.usefixtures("db_schema")


async def _agency_with_delegate() -> tuple[str, str]:
    principal_id = await create_profile(tier="agency", email="boss@agency.example")
    manager_id = await create_profile(tier="free", email="manager@agency.example")
    await add_roster_entry(
        agency_owner_id=principal_id,
        email="manager@agency.example",
        member_user_id=manager_id,
        can_manage_agency=True,
    )
    return principal_id, manager_id


@pytest.mark.asyncio
async def test_delegate_writes_are_attributed_to_principal() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    registered_id = await create_profile(email="designer@example.com", full_name="Dee Signer")
    async with SessionLocal() as session:
        entry, registered = await add_roster_member(
            session,
            manager_id,
            email=" Designer@Example.com ",
            default_role="owner",
        )
    assert registered is True
    assert entry.agency_owner_id == principal_id
    assert entry.email == "designer@example.com"
    assert entry.member_user_id == registered_id
    assert entry.full_name == "Dee Signer"
    assert entry.status == "active"
    assert entry.default_role == "member"

    async with SessionLocal() as session:
        pending, registered = await add_roster_member(session, principal_id, email="new@example.com")
    assert registered is False
    assert pending.status == "pending"
    assert pending.member_user_id is None


@pytest.mark.asyncio
async def test_duplicate_roster_email_is_rejected() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    await add_roster_entry(agency_owner_id=principal_id, email="dup@example.com")
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await add_roster_member(session, manager_id, email="DUP@example.com")
    assert exc_info.value.detail["message"] == "Team member already exists in roster"


@pytest.mark.asyncio
async def test_non_agency_user_cannot_manage_roster() -> None:
    user_id = await create_profile(tier="pro")
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await list_roster(session, user_id)
    assert exc_info.value.status_code == 402


@pytest.mark.asyncio
async def test_list_roster_returns_principal_entries() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    await add_roster_entry(agency_owner_id=principal_id, email="one@example.com")
    other_agency = await create_profile(tier="agency")
    await add_roster_entry(agency_owner_id=other_agency, email="elsewhere@example.com")
    async with SessionLocal() as session:
        roster = await list_roster(session, manager_id)
    assert roster["access"].is_manager is True
    assert {entry.email for entry in roster["entries"]} == {"manager@agency.example", "one@example.com"}
    # Only registered entries are joined to a profile.
    assert set(roster["profiles"]) == {manager_id}
    assert roster["profiles"][manager_id].email == "manager@agency.example"


@pytest.mark.asyncio
async def test_only_principal_toggles_agency_management() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    entry_id = await add_roster_entry(agency_owner_id=principal_id, email="helper@example.com")
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await update_roster_member(session, manager_id, entry_id, {"can_manage_agency": True})
    assert exc_info.value.status_code == 403

    async with SessionLocal() as session:
        entry = await update_roster_member(
            session,
            manager_id,
            entry_id,
            {"department": " Design ", "status": "inactive"},
        )
    assert entry.department == "Design"
    assert entry.status == "inactive"

    async with SessionLocal() as session:
        entry = await update_roster_member(session, principal_id, entry_id, {"can_manage_agency": True})
    assert entry.can_manage_agency is True


@pytest.mark.asyncio
async def test_update_roster_member_validation() -> None:
    principal_id, _ = await _agency_with_delegate()
    other_agency = await create_profile(tier="agency")
    foreign_id = await add_roster_entry(agency_owner_id=other_agency)
    entry_id = await add_roster_entry(agency_owner_id=principal_id)
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as foreign:
            await update_roster_member(session, principal_id, foreign_id, {"notes": "hi"})
        with pytest.raises(HTTPException) as empty:
            await update_roster_member(session, principal_id, entry_id, {"status": "pending"})
        with pytest.raises(HTTPException) as missing:
            await update_roster_member(session, principal_id, "nope", {"notes": "hi"})
    assert foreign.value.detail["message"] == "Not authorized to update this team member"
    assert empty.value.detail["message"] == "No valid fields to update"
    assert missing.value.status_code == 404


@pytest.mark.asyncio
async def test_delegate_cannot_remove_own_entry() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    async with SessionLocal() as session:
        own_entry = (
            await session.execute(
                select(AgencyTeamMember.id).where(AgencyTeamMember.member_user_id == manager_id)
            )
        ).scalar_one()
        with pytest.raises(HTTPException) as exc_info:
            await remove_roster_member(session, manager_id, own_entry)
    assert exc_info.value.detail["message"] == "You cannot remove yourself from the roster"

    async with SessionLocal() as session:
        removed = await remove_roster_member(session, principal_id, own_entry)
    assert removed == "manager@agency.example"
    async with SessionLocal() as session:
        assert await session.get(AgencyTeamMember, own_entry) is None


@pytest.mark.asyncio
async def test_bulk_provision_mixes_direct_invite_skip_and_error(monkeypatch) -> None:
    principal_id, manager_id = await _agency_with_delegate()
    workspace_id = await create_workspace(owner_id=principal_id, name="Client Shop")

    direct_user = await create_profile(email="direct@example.com")
    existing_user = await create_profile(email="existing@example.com")
    broken_user = await create_profile(email="broken@example.com")
    await add_member(workspace_id=workspace_id, user_id=existing_user, role="viewer")
    await create_invitation(workspace_id=workspace_id, email="waiting@example.com", invited_by=principal_id)

    direct_entry = await add_roster_entry(
        agency_owner_id=principal_id, email="direct@example.com", member_user_id=direct_user
    )
    invite_entry = await add_roster_entry(agency_owner_id=principal_id, email="fresh@example.com", status="pending")
    existing_entry = await add_roster_entry(
        agency_owner_id=principal_id, email="existing@example.com", member_user_id=existing_user
    )
    waiting_entry = await add_roster_entry(agency_owner_id=principal_id, email="waiting@example.com")
    broken_entry = await add_roster_entry(
        agency_owner_id=principal_id, email="broken@example.com", member_user_id=broken_user
    )
    foreign_entry = await add_roster_entry(agency_owner_id=await create_profile(tier="agency"))

    original_insert = members_repo.insert_member

    async def _flaky_insert(session, **kwargs):
        if kwargs["user_id"] == broken_user:
            raise IntegrityError("INSERT INTO workspace_members", {}, Exception("constraint failed"))
        return await original_insert(session, **kwargs)

    monkeypatch.setattr(members_repo, "insert_member", _flaky_insert)

    async with SessionLocal() as session:
        summary = await bulk_provision(
            session,
            manager_id,
            workspace_id,
            [direct_entry, invite_entry, existing_entry, waiting_entry, broken_entry, foreign_entry],
            role_overrides={direct_entry: "editor", invite_entry: "viewer"},
        )

    body = summary.to_json()
    assert body["summary"] == {"directAdded": 1, "invitationsSent": 1, "skipped": 2, "errors": 1}
    assert body["directAdded"] == [{"email": "direct@example.com", "name": None, "role": "member"}]
    assert body["invitationsSent"] == [{"email": "fresh@example.com", "role": "viewer"}]
    assert {item["reason"] for item in body["skipped"]} == {
        "Already a workspace member",
        "Pending invitation exists",
    }
    assert body["errors"] == [{"email": "broken@example.com", "error": "Failed to provision team member"}]

    async with SessionLocal() as session:
        provisions = (
            await session.execute(
                select(AgencyWorkspaceProvision).where(AgencyWorkspaceProvision.workspace_id == workspace_id)
            )
        ).scalars().all()
        member_ids = set(
            (
                await session.execute(
                    select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id)
                )
            ).scalars().all()
        )
        invite = (
            await session.execute(
                select(WorkspaceInvitation).where(WorkspaceInvitation.email == "fresh@example.com")
            )
        ).scalar_one()
    assert {(p.provision_type, p.status) for p in provisions} == {
        ("direct", "completed"),
        ("invitation", "pending"),
    }
    assert all(p.agency_owner_id == principal_id for p in provisions)
    assert direct_user in member_ids
    assert broken_user not in member_ids
    assert invite.invited_by == manager_id
    assert invite.role == "viewer"


@pytest.mark.asyncio
async def test_bulk_provision_guards() -> None:
    principal_id, manager_id = await _agency_with_delegate()
    foreign_owner = await create_profile(tier="agency")
    own_workspace = await create_workspace(owner_id=principal_id)
    foreign_workspace = await create_workspace(owner_id=foreign_owner)
    entry_id = await add_roster_entry(agency_owner_id=principal_id)

    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as empty:
            await bulk_provision(session, manager_id, own_workspace, [])
        with pytest.raises(HTTPException) as foreign:
            await bulk_provision(session, manager_id, foreign_workspace, [entry_id])
        with pytest.raises(HTTPException) as missing_ws:
            await bulk_provision(session, manager_id, "no-such-workspace", [entry_id])
        with pytest.raises(HTTPException) as none_valid:
            await bulk_provision(session, manager_id, own_workspace, ["not-an-entry"])
    assert empty.value.detail["code"] == "VALIDATION_ERROR"
    assert foreign.value.status_code == 403
    assert missing_ws.value.status_code == 404
    assert none_valid.value.detail["message"] == "No valid team members found"
