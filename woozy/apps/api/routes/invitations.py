from __future__ import annotations

from datetime import datetime
import re
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.apps.api.deps import get_current_user_id, get_db
from woozy.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from woozy.apps.api.response import SuccessEnvelope, success_response
from woozy.apps.api.routes.workspaces import MemberResponse, member_response
from woozy.domain.models import WorkspaceInvitation
from woozy.services import invitations as invitations_service
from woozy.services.access.roles import Role, coerce_role


router = APIRouter(tags=["invitations"], responses=DEFAULT_ERROR_RESPONSES)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class CreateInvitationRequest(BaseModel):
    email: str
    role: Role = Role.MEMBER

    model_config = {"extra": "forbid"}

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not _EMAIL_PATTERN.match(cleaned):
            raise ValueError("invalid email format")
        return cleaned

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role_field(cls, value: Any) -> Any:
        if value is None:
            return Role.MEMBER
        if not isinstance(value, str):
            return value
        return coerce_role(value)


class InvitationResponse(BaseModel):
    id: str
    workspace_id: str
    email: str
    role: str
    status: str
    invite_token: str
    invite_link: str
    invited_at: str | None
    expires_at: str | None
    accepted_at: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _invitation_response(invitation: WorkspaceInvitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        workspace_id=invitation.workspace_id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        invite_token=invitation.invite_token,
        invite_link=invitations_service.invite_link(invitation.invite_token),
        invited_at=_iso(invitation.invited_at),
        expires_at=_iso(invitation.expires_at),
        accepted_at=_iso(invitation.accepted_at),
    )


@router.post(
    "/workspaces/{workspace_id}/invitations",
    response_model=SuccessEnvelope[dict[str, InvitationResponse]],
)
async def create_invitation(
    workspace_id: str,
    payload: CreateInvitationRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    invitation = await invitations_service.create_invitation(
        db,
        user_id,
        workspace_id,
        payload.email,
        payload.role.value,
    )
    return success_response({"invitation": _invitation_response(invitation)}, "Invitation sent")


@router.get("/invitations/{token}", response_model=SuccessEnvelope[dict[str, Any]])
async def get_invitation(token: str, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    # Token-holders may preview an invitation before signing in; the token is the credential.
    invitation = await invitations_service.get_invitation(db, token)
    return success_response(
        {
            "invitation": {
                "id": invitation.id,
                "workspace_id": invitation.workspace_id,
                "email": invitation.email,
                "role": invitation.role,
                "expires_at": _iso(invitation.expires_at),
            }
        }
    )


@router.get("/workspaces/{workspace_id}/invitations", response_model=SuccessEnvelope[dict[str, Any]])
async def list_invitations(
    workspace_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await invitations_service.list_invitations(db, user_id, workspace_id)
    invitations = []
    for invitation, inviter_name in rows:
        invitations.append(
            {
                "id": invitation.id,
                "email": invitation.email,
                "role": invitation.role,
                "status": invitation.status,
                "invited_at": _iso(invitation.invited_at),
                "expires_at": _iso(invitation.expires_at),
                "invited_by_name": inviter_name,
            }
        )
    return success_response({"invitations": invitations})

@router.post("/invitations/{token}/accept", response_model=SuccessEnvelope[dict[str, Any]])
async def accept_invitation(
    token: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    invitation, member = await invitations_service.accept_invitation(db, token, user_id)
    if member is None:
        return success_response(
            {"workspace_id": invitation.workspace_id, "member": None},
            "You are already a member of this workspace",
        )
    member_payload: MemberResponse = member_response(member)
    return success_response(
        {"workspace_id": invitation.workspace_id, "member": member_payload.model_dump()},
        "Successfully joined the workspace",
    )


@router.delete("/invitations/{invitation_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def cancel_invitation(
    invitation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    invitation = await invitations_service.cancel_invitation(db, user_id, invitation_id)
    return success_response({"id": invitation.id, "status": invitation.status}, "Invitation cancelled")
