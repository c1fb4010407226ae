from __future__ import annotations

import pytest
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from woozy.domain.models import UserProfile, Workspace, WorkspaceMember
from woozy.persistence.db import SessionLocal
from woozy.persistence.repos import members as members_repo
from woozy.services.invitations import list_invitations
from woozy.services.workspaces import (
    create_workspace,
    generate_slug,
    get_access_summary,
    leave_workspace,
    list_members,
    remove_member,
    update_member,
)
from woozy.tests.utils.factories import (
    add_member,
    add_roster_entry,
    create_invitation,
    create_profile,
    create_workspace as seed_workspace,
)


pytestmark = pytest.mark.usefixtures("db_schema")


@pytest.mark.asyncio
async def test_slug_is_url_safe_with_base36_suffix() -> None:
    assert generate_slug("Acme Bakery & Co.", now_ms=36) == "acme-bakery-co-10"
    assert generate_slug("  Café 42 ", now_ms=0) == "caf-42-0"


@pytest.mark.asyncio
async def test_create_workspace_adds_single_owner_membership() -> None:
    user_id = await create_profile(tier="solo")
    async with SessionLocal() as session:
        workspace = await create_workspace(session, user_id, "  Acme Bakery ")
    assert workspace.name == "Acme Bakery"
    assert workspace.slug.startswith("acme-bakery-")

    async with SessionLocal() as session:
        members = (
            await session.execute(select(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace.id))
        ).scalars().all()
        profile = await session.get(UserProfile, user_id)
    assert len(members) == 1
    owner = members[0]
    assert owner.user_id == user_id
    assert owner.role == "owner"
    assert owner.can_manage_team and owner.can_final_approval
    assert profile.last_workspace_id == workspace.id


@pytest.mark.asyncio
async def test_create_workspace_enforces_tier_ceiling() -> None:
    solo_id = await create_profile(tier="solo")
    free_id = await create_profile(tier="free")
    await seed_workspace(owner_id=solo_id)
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as solo_exc:
            await create_workspace(session, solo_id, "Second Shop")
        with pytest.raises(HTTPException) as free_exc:
            await create_workspace(session, free_id, "First Shop")
    assert solo_exc.value.status_code == 402
    assert solo_exc.value.detail["code"] == "PAYMENT_REQUIRED"
    assert solo_exc.value.detail["current_count"] == 1
    assert solo_exc.value.detail["tier"] == "solo"
    assert free_exc.value.status_code == 402


@pytest.mark.asyncio
async def test_create_workspace_counts_add_ons() -> None:
    user_id = await create_profile(tier="pro", add_ons=1)
    await seed_workspace(owner_id=user_id)
    async with SessionLocal() as session:
        workspace = await create_workspace(session, user_id, "Second Shop")
    assert workspace.owner_id == user_id


@pytest.mark.asyncio
async def test_create_workspace_rejects_bad_names_and_missing_profile() -> None:
    user_id = await create_profile(tier="agency")
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as short:
            await create_workspace(session, user_id, " A ")
        with pytest.raises(HTTPException) as missing:
            await create_workspace(session, "no-such-user", "Valid Name")
    assert short.value.detail["code"] == "VALIDATION_ERROR"
    assert short.value.detail["message"] == "Business name must be between 2 and 100 characters"
    assert missing.value.status_code == 404


@pytest.mark.asyncio
async def test_delegate_creates_workspace_for_agency_principal() -> None:
    principal_id = await create_profile(tier="agency")
    manager_id = await create_profile(tier="free")
    await add_roster_entry(agency_owner_id=principal_id, member_user_id=manager_id, can_manage_agency=True)
    async with SessionLocal() as session:
        workspace = await create_workspace(session, manager_id, "Client Co", on_behalf_of_agency=True)
    assert workspace.owner_id == principal_id

    async with SessionLocal() as session:
        owners = (
            await session.execute(
                select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace.id)
            )
        ).scalars().all()
    assert owners == [principal_id]


@pytest.mark.asyncio
async def test_on_behalf_of_agency_requires_agency_access() -> None:
    user_id = await create_profile(tier="pro")
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await create_workspace(session, user_id, "Client Co", on_behalf_of_agency=True)
        count = len((await session.execute(select(Workspace))).scalars().all())
    assert exc_info.value.status_code == 402
    assert count == 0


@pytest.mark.asyncio
async def test_update_member_role_reseeds_flags_with_overrides() -> None:
    owner_id = await create_profile()
    target_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=target_id, role="viewer")
    async with SessionLocal() as session:
        member = await update_member(
            session,
            owner_id,
            workspace_id,
            target_id,
            role="editor",
            permissions={"canApprovePosts": True},
        )
    assert member.role == "member"
    assert member.can_approve_posts is True
    assert member.can_manage_team is False


@pytest.mark.asyncio
async def test_update_member_flags_only() -> None:
    owner_id = await create_profile()
    target_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=target_id, role="member")
    async with SessionLocal() as session:
        await update_member(session, owner_id, workspace_id, target_id, permissions={"canManageTeam": True})
    async with SessionLocal() as session:
        stored = (
            await session.execute(
                select(WorkspaceMember).where(
                    WorkspaceMember.workspace_id == workspace_id,
                    WorkspaceMember.user_id == target_id,
                )
            )
        ).scalar_one()
    assert stored.role == "member"
    assert stored.can_manage_team is True


@pytest.mark.asyncio
async def test_update_member_guards() -> None:
    owner_id = await create_profile()
    manager_id = await create_profile()
    viewer_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=manager_id, role="member", can_manage_team=True)
    await add_member(workspace_id=workspace_id, user_id=viewer_id, role="viewer")

    async def _attempt(actor: str, target: str, **kwargs) -> HTTPException:
        async with SessionLocal() as session:
            with pytest.raises(HTTPException) as exc_info:
                await update_member(session, actor, workspace_id, target, **kwargs)
        return exc_info.value

    assert (await _attempt(viewer_id, manager_id, role="viewer")).detail["code"] == "INSUFFICIENT_PERMISSIONS"
    assert (await _attempt(manager_id, manager_id, role="viewer")).detail["message"] == (
        "You cannot change your own role"
    )
    assert (await _attempt(manager_id, owner_id, role="viewer")).detail["message"] == (
        "Cannot modify the workspace owner's role"
    )
    assert (await _attempt(manager_id, viewer_id, role="owner")).detail["message"] == (
        "The owner role cannot be assigned"
    )
    assert (await _attempt(manager_id, "ghost", role="viewer")).status_code == 404
    assert (await _attempt(manager_id, viewer_id)).detail["message"] == "No updates provided"


@pytest.mark.asyncio
async def test_access_summary_reflects_overrides_and_owner_plan() -> None:
    owner_id = await create_profile(tier="pro_plus")
    member_id = await create_profile(tier="free")
    workspace_id = await seed_workspace(owner_id=owner_id, name="Summary Shop")
    await add_member(workspace_id=workspace_id, user_id=member_id, role="member", can_approve_posts=True)
    async with SessionLocal() as session:
        summary = await get_access_summary(session, member_id, workspace_id)
    assert summary["workspaceName"] == "Summary Shop"
    assert summary["role"] == "member"
    assert summary["permissions"]["canApprovePosts"] is True
    assert summary["permissions"]["canCreatePosts"] is True
    assert summary["permissions"]["canManageTeam"] is False
    assert summary["canFinalApproval"] is False
    assert summary["plan"]["tier"] == "pro_plus"
    assert summary["plan"]["max_team_members"] is None


@pytest.mark.asyncio
async def test_owner_membership_failure_leaves_no_workspace(monkeypatch) -> None:
    user_id = await create_profile(tier="agency")

    async def _failing_insert(session, **kwargs):
        raise IntegrityError("INSERT INTO workspace_members", {}, Exception("constraint failed"))

    monkeypatch.setattr(members_repo, "insert_member", _failing_insert)
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await create_workspace(session, user_id, "Orphan Shop")
    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == {"code": "DATABASE_ERROR", "message": "Failed to add user to workspace"}

    async with SessionLocal() as session:
        workspaces = (await session.execute(select(Workspace))).scalars().all()
    assert workspaces == []


@pytest.mark.asyncio
async def test_manager_removes_member() -> None:
    owner_id = await create_profile()
    manager_id = await create_profile()
    member_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=manager_id, role="member", can_manage_team=True)
    await add_member(workspace_id=workspace_id, user_id=member_id, role="member")

    async with SessionLocal() as session:
        await remove_member(session, manager_id, workspace_id, member_id)

    async with SessionLocal() as session:
        removed = await members_repo.find_member(session, workspace_id=workspace_id, user_id=member_id)
        remaining = await members_repo.list_member_user_ids(session, workspace_id=workspace_id)
    assert removed is None
    assert remaining == {owner_id, manager_id}


@pytest.mark.asyncio
async def test_remove_member_guards() -> None:
    owner_id = await create_profile()
    manager_id = await create_profile()
    viewer_id = await create_profile()
    outsider_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=manager_id, role="member", can_manage_team=True)
    await add_member(workspace_id=workspace_id, user_id=viewer_id, role="viewer")

    async def _attempt(actor: str, target: str) -> HTTPException:
        async with SessionLocal() as session:
            with pytest.raises(HTTPException) as exc_info:
                await remove_member(session, actor, workspace_id, target)
        return exc_info.value

    denied = await _attempt(viewer_id, manager_id)
    assert denied.status_code == 403
    assert denied.detail["code"] == "INSUFFICIENT_PERMISSIONS"
    assert (await _attempt(outsider_id, viewer_id)).detail["code"] == "NOT_MEMBER"

    owner_target = await _attempt(manager_id, owner_id)
    assert owner_target.status_code == 400
    assert owner_target.detail == {"code": "VALIDATION_ERROR", "message": "Cannot remove the workspace owner"}
    assert (await _attempt(owner_id, owner_id)).detail["message"] == (
        "You cannot remove yourself from the workspace"
    )
    assert (await _attempt(manager_id, "ghost")).status_code == 404

    async with SessionLocal() as session:
        remaining = await members_repo.list_member_user_ids(session, workspace_id=workspace_id)
    assert remaining == {owner_id, manager_id, viewer_id}


@pytest.mark.asyncio
async def test_member_leaves_workspace() -> None:
    owner_id = await create_profile()
    member_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=member_id, role="viewer")

    async with SessionLocal() as session:
        await leave_workspace(session, member_id, workspace_id)
    async with SessionLocal() as session:
        assert await members_repo.find_member(session, workspace_id=workspace_id, user_id=member_id) is None

    # A second attempt finds no membership left.
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await leave_workspace(session, member_id, workspace_id)
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == {"code": "NOT_FOUND", "message": "You are not a member of this workspace"}


@pytest.mark.asyncio
async def test_owner_cannot_leave_workspace() -> None:
    owner_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await leave_workspace(session, owner_id, workspace_id)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["code"] == "FORBIDDEN"

    async with SessionLocal() as session:
        owner = await members_repo.find_member(session, workspace_id=workspace_id, user_id=owner_id)
    assert owner is not None
    assert owner.role == "owner"


@pytest.mark.asyncio
async def test_list_members_pairs_profiles_and_requires_membership() -> None:
    owner_id = await create_profile(email="olive@example.com", full_name="Olive Owner")
    viewer_id = await create_profile(full_name="Vic Viewer")
    outsider_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=viewer_id, role="viewer")

    async with SessionLocal() as session:
        rows = await list_members(session, viewer_id, workspace_id)
    by_user = {member.user_id: (member, profile) for member, profile in rows}
    assert set(by_user) == {owner_id, viewer_id}
    owner_member, owner_profile = by_user[owner_id]
    assert owner_member.role == "owner"
    assert owner_profile.email == "olive@example.com"
    assert owner_profile.full_name == "Olive Owner"
    assert by_user[viewer_id][1].full_name == "Vic Viewer"

    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await list_members(session, outsider_id, workspace_id)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["code"] == "NOT_MEMBER"


@pytest.mark.asyncio
async def test_list_invitations_returns_pending_with_inviter_name() -> None:
    owner_id = await create_profile(full_name="Olive Owner")
    viewer_id = await create_profile()
    outsider_id = await create_profile()
    workspace_id = await seed_workspace(owner_id=owner_id)
    await add_member(workspace_id=workspace_id, user_id=viewer_id, role="viewer")
    pending_id, _ = await create_invitation(
        workspace_id=workspace_id, email="New@Example.com", invited_by=owner_id
    )
    await create_invitation(
        workspace_id=workspace_id, email="done@example.com", invited_by=owner_id, status="accepted"
    )

    async with SessionLocal() as session:
        rows = await list_invitations(session, viewer_id, workspace_id)
    assert [(invitation.id, name) for invitation, name in rows] == [(pending_id, "Olive Owner")]
    assert rows[0][0].email == "new@example.com"

    async with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc_info:
            await list_invitations(session, outsider_id, workspace_id)
    assert exc_info.value.detail["code"] == "NOT_MEMBER"
