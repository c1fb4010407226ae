from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Verified login email; invitation acceptance compares against it case-insensitively.
    email: Mapped[str] = mapped_column(String, index=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Raw tier string from billing; unknown values resolve to the free tier at lookup time.
    subscription_tier: Mapped[str | None] = mapped_column(String, nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String, nullable=True)
    # Whitelisted accounts bypass both the tier and the active-status requirement.
    is_whitelisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Purchased add-ons raise the workspace ceiling of limited tiers.
    workspace_add_ons: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_workspace_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, server_default=func.now())


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    slug: Mapped[str] = mapped_column(String, unique=True)
    owner_id: Mapped[str] = mapped_column(String, ForeignKey("user_profiles.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, server_default=func.now())


class WorkspaceMember(Base):
    __tablename__ = "workspace_members"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        String, ForeignKey("workspaces.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("user_profiles.id"), index=True)
    # Always stored in the current owner/member/viewer vocabulary.
    role: Mapped[str] = mapped_column(String, default="member")
    # Explicit overrides; seeded from role defaults and toggled independently afterwards.
    can_manage_team: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_settings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_delete_posts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_approve_posts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_final_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    invited_by: Mapped[str | None] = mapped_column(String, nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, server_default=func.now())


class WorkspaceInvitation(Base):
    __tablename__ = "workspace_invitations"
    __table_args__ = (
        Index("ix_workspace_invitations_workspace_email", "workspace_id", "email"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        String, ForeignKey("workspaces.id", ondelete="CASCADE"), index=True
    )
    # Stored lowercased so lookups stay case-insensitive without ilike.
    email: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(String, default="member")
    invited_by: Mapped[str] = mapped_column(String)
    invite_token: Mapped[str] = mapped_column(String, unique=True, index=True)
    # pending | accepted | expired | cancelled
    status: Mapped[str] = mapped_column(String, default="pending")
    invited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AgencyTeamMember(Base):
    __tablename__ = "agency_team_members"
    __table_args__ = (
        UniqueConstraint("agency_owner_id", "email", name="uq_agency_team_members_owner_email"),
        Index("ix_agency_team_members_delegate", "member_user_id", "can_manage_agency", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Always the resolved agency principal, never a delegated manager's own id.
    agency_owner_id: Mapped[str] = mapped_column(String, ForeignKey("user_profiles.id"), index=True)
    email: Mapped[str] = mapped_column(String)
    # Null until the invited person registers.
    member_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    default_role: Mapped[str] = mapped_column(String, default="member")
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # pending | active | inactive
    status: Mapped[str] = mapped_column(String, default="pending")
    can_manage_agency: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now(), onupdate=_utc_now
    )


class AgencyWorkspaceProvision(Base):
    __tablename__ = "agency_workspace_provisions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    agency_owner_id: Mapped[str] = mapped_column(String, index=True)
    workspace_id: Mapped[str] = mapped_column(
        String, ForeignKey("workspaces.id", ondelete="CASCADE"), index=True
    )
    agency_team_member_id: Mapped[str] = mapped_column(
        String, ForeignKey("agency_team_members.id", ondelete="CASCADE"), index=True
    )
    provisioned_role: Mapped[str] = mapped_column(String)
    # direct | invitation
    provision_type: Mapped[str] = mapped_column(String)
    workspace_member_id: Mapped[str | None] = mapped_column(String, nullable=True)
    invitation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # completed | pending
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, server_default=func.now())
