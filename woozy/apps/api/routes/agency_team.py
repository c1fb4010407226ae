from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.apps.api.deps import get_current_user_id, get_db
from woozy.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from woozy.apps.api.response import SuccessEnvelope, success_response
from woozy.domain.models import AgencyTeamMember, UserProfile
from woozy.services import agency_team as agency_team_service
from woozy.services.access.roles import coerce_role


router = APIRouter(prefix="/agency-team", tags=["agency-team"], responses=DEFAULT_ERROR_RESPONSES)


def _role_value(value: Any) -> Any:
    # Legacy and unknown roles collapse onto the current vocabulary before validation.
    if value is None or not isinstance(value, str):
        return value
    return coerce_role(value).value


class AddRosterMemberRequest(BaseModel):
    email: str
    full_name: str | None = Field(default=None, alias="fullName")
    default_role: str | None = Field(default=None, alias="defaultRole")
    department: str | None = None
    notes: str | None = None

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        cleaned = value.strip()
        if "@" not in cleaned or cleaned.startswith("@") or cleaned.endswith("@"):
            raise ValueError("invalid email format")
        return cleaned

    @field_validator("default_role", mode="before")
    @classmethod
    def normalize_role_field(cls, value: Any) -> Any:
        return _role_value(value)


class UpdateRosterMemberRequest(BaseModel):
    full_name: str | None = Field(default=None, alias="fullName")
    default_role: str | None = Field(default=None, alias="defaultRole")
    department: str | None = None
    notes: str | None = None
    status: str | None = None
    can_manage_agency: bool | None = Field(default=None, alias="canManageAgency")

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("default_role", mode="before")
    @classmethod
    def normalize_role_field(cls, value: Any) -> Any:
        return _role_value(value)


class BulkProvisionRequest(BaseModel):
    workspace_id: str = Field(alias="workspaceId")
    team_member_ids: list[str] = Field(alias="teamMemberIds")
    role_overrides: dict[str, str] | None = Field(default=None, alias="roleOverrides")

    model_config = {"extra": "forbid", "populate_by_name": True}


class ProfileSummary(BaseModel):
    id: str
    email: str | None
    full_name: str | None


class RosterMemberResponse(BaseModel):
    id: str
    agency_owner_id: str
    email: str
    member_user_id: str | None
    full_name: str | None
    default_role: str
    department: str | None
    notes: str | None
    status: str
    can_manage_agency: bool
    is_registered: bool
    created_at: str | None
    profile: ProfileSummary | None = None


def _roster_response(entry: AgencyTeamMember, profile: UserProfile | None = None) -> RosterMemberResponse:
    created_at: datetime | None = entry.created_at
    return RosterMemberResponse(
        id=entry.id,
        agency_owner_id=entry.agency_owner_id,
        email=entry.email,
        member_user_id=entry.member_user_id,
        full_name=entry.full_name,
        default_role=entry.default_role,
        department=entry.department,
        notes=entry.notes,
        status=entry.status,
        can_manage_agency=entry.can_manage_agency,
        is_registered=entry.member_user_id is not None,
        created_at=created_at.isoformat() if created_at is not None else None,
        profile=(
            ProfileSummary(id=profile.id, email=profile.email, full_name=profile.full_name)
            if profile is not None
            else None
        ),
    )


@router.get("", response_model=SuccessEnvelope[dict[str, Any]])
async def list_roster(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await agency_team_service.list_roster(db, user_id)
    profiles = result["profiles"]
    return success_response(
        {
            "teamMembers": [
                _roster_response(entry, profiles.get(entry.member_user_id)).model_dump()
                for entry in result["entries"]
            ],
            "access": result["access"].to_json(),
        }
    )


@router.post("", response_model=SuccessEnvelope[dict[str, RosterMemberResponse]])
async def add_roster_member(
    payload: AddRosterMemberRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    entry, _registered = await agency_team_service.add_roster_member(
        db,
        user_id,
        email=payload.email,
        full_name=payload.full_name,
        default_role=payload.default_role,
        department=payload.department,
        notes=payload.notes,
    )
    return success_response({"teamMember": _roster_response(entry)}, "Team member added")


@router.patch("/{entry_id}", response_model=SuccessEnvelope[dict[str, RosterMemberResponse]])
async def update_roster_member(
    entry_id: str,
    payload: UpdateRosterMemberRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Only fields present in the body are applied; explicit nulls clear text fields.
    changes = payload.model_dump(exclude_unset=True)
    entry = await agency_team_service.update_roster_member(db, user_id, entry_id, changes)
    return success_response({"teamMember": _roster_response(entry)}, "Team member updated")


@router.delete("/{entry_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def remove_roster_member(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    removed_email = await agency_team_service.remove_roster_member(db, user_id, entry_id)
    return success_response({"removedEmail": removed_email}, "Team member removed from roster")


@router.post("/bulk-provision", response_model=SuccessEnvelope[dict[str, Any]])
async def bulk_provision(
    payload: BulkProvisionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    summary = await agency_team_service.bulk_provision(
        db,
        user_id,
        payload.workspace_id,
        payload.team_member_ids,
        payload.role_overrides,
    )
    return success_response(summary.to_json())
