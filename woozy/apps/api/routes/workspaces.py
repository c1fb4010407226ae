from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.apps.api.deps import get_current_user_id, get_db
from woozy.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from woozy.apps.api.response import SuccessEnvelope, success_response
from woozy.domain.models import Workspace, WorkspaceMember
from woozy.services import workspaces as workspaces_service
from woozy.services.access.roles import Role, coerce_role


router = APIRouter(prefix="/workspaces", tags=["workspaces"], responses=DEFAULT_ERROR_RESPONSES)


class CreateWorkspaceRequest(BaseModel):
    business_name: str = Field(alias="businessName")
    on_behalf_of_agency: bool = Field(default=False, alias="onBehalfOfAgency")

    model_config = {"extra": "forbid", "populate_by_name": True}


class UpdateMemberRequest(BaseModel):
    role: Role | None = None
    # Keyed by permission name (canManageTeam, canDeletePosts, ...).
    permissions: dict[str, bool] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role_field(cls, value: Any) -> Any:
        # Legacy and unknown roles are mapped before validation so none is ever stored.
        if value is None or not isinstance(value, str):
            return value
        return coerce_role(value)


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    slug: str
    owner_id: str


class MemberResponse(BaseModel):
    id: str
    workspace_id: str
    user_id: str
    role: str
    can_manage_team: bool
    can_manage_settings: bool
    can_delete_posts: bool
    can_approve_posts: bool
    can_final_approval: bool
    joined_at: str | None = None


def _workspace_response(workspace: Workspace) -> WorkspaceResponse:
    return WorkspaceResponse(
        id=workspace.id,
        name=workspace.name,
        slug=workspace.slug,
        owner_id=workspace.owner_id,
    )


def member_response(member: WorkspaceMember) -> MemberResponse:
    # Serialize datetimes for JSON output while keeping response fields explicit.
    joined_at: datetime | None = member.joined_at
    return MemberResponse(
        id=member.id,
        workspace_id=member.workspace_id,
        user_id=member.user_id,
        role=member.role,
        can_manage_team=member.can_manage_team,
        can_manage_settings=member.can_manage_settings,
        can_delete_posts=member.can_delete_posts,
        can_approve_posts=member.can_approve_posts,
        can_final_approval=member.can_final_approval,
        joined_at=joined_at.isoformat() if joined_at is not None else None,
    )


@router.post("", response_model=SuccessEnvelope[dict[str, WorkspaceResponse]])
async def create_workspace(
    payload: CreateWorkspaceRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    workspace = await workspaces_service.create_workspace(
        db,
        user_id,
        payload.business_name,
        on_behalf_of_agency=payload.on_behalf_of_agency,
    )
    return success_response({"workspace": _workspace_response(workspace)}, "Workspace created")


@router.get("/{workspace_id}/access", response_model=SuccessEnvelope[dict[str, Any]])
async def get_workspace_access(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    summary = await workspaces_service.get_access_summary(db, user_id, workspace_id)
    return success_response(summary)


@router.patch(
    "/{workspace_id}/members/{member_user_id}",
    response_model=SuccessEnvelope[dict[str, MemberResponse]],
)
async def update_workspace_member(
    workspace_id: str,
    member_user_id: str,
    payload: UpdateMemberRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    member = await workspaces_service.update_member(
        db,
        user_id,
        workspace_id,
        member_user_id,
        role=payload.role.value if payload.role is not None else None,
        permissions=payload.permissions,
    )
    return success_response({"member": member_response(member)}, "Member updated successfully")


@router.get("/{workspace_id}/members", response_model=SuccessEnvelope[dict[str, Any]])
async def list_workspace_members(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await workspaces_service.list_members(db, user_id, workspace_id)
    members = []
    for member, profile in rows:
        payload = member_response(member).model_dump()
        payload["profile"] = {
            "email": profile.email if profile is not None else None,
            "full_name": profile.full_name if profile is not None else None,
        }
        members.append(payload)
    return success_response({"members": members})


@router.delete(
    "/{workspace_id}/members/{member_user_id}",
    response_model=SuccessEnvelope[dict[str, Any]],
)
async def remove_workspace_member(
    workspace_id: str,
    member_user_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await workspaces_service.remove_member(db, user_id, workspace_id, member_user_id)
    return success_response(
        {"workspace_id": workspace_id, "user_id": member_user_id},
        "Member removed successfully",
    )


@router.post("/{workspace_id}/leave", response_model=SuccessEnvelope[dict[str, Any]])
async def leave_workspace(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await workspaces_service.leave_workspace(db, user_id, workspace_id)
    return success_response({"workspace_id": workspace_id}, "Successfully left the workspace")
