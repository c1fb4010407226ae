"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-02-01 18:10:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_profiles",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("subscription_tier", sa.String(), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=True),
        sa.Column("is_whitelisted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("workspace_add_ons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_workspace_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_profiles_email", "user_profiles", ["email"])

    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False, unique=True),
        sa.Column("owner_id", sa.String(), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_workspaces_owner_id", "workspaces", ["owner_id"])

    op.create_table(
        "workspace_members",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "workspace_id",
            sa.String(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="member"),
        sa.Column("can_manage_team", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_manage_settings", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete_posts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_approve_posts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_final_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invited_by", sa.String(), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        # One membership row per (workspace, user); concurrent adds fail here instead of duplicating.
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )
    op.create_index("ix_workspace_members_workspace_id", "workspace_members", ["workspace_id"])
    op.create_index("ix_workspace_members_user_id", "workspace_members", ["user_id"])

    op.create_table(
        "workspace_invitations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "workspace_id",
            sa.String(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="member"),
        sa.Column("invited_by", sa.String(), nullable=False),
        sa.Column("invite_token", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_workspace_invitations_workspace_id", "workspace_invitations", ["workspace_id"])
    op.create_index(
        "ix_workspace_invitations_invite_token",
        "workspace_invitations",
        ["invite_token"],
        unique=True,
    )
    op.create_index(
        "ix_workspace_invitations_workspace_email",
        "workspace_invitations",
        ["workspace_id", "email"],
    )

    op.create_table(
        "agency_team_members",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("agency_owner_id", sa.String(), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("member_user_id", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("default_role", sa.String(), nullable=False, server_default="member"),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("can_manage_agency", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("agency_owner_id", "email", name="uq_agency_team_members_owner_email"),
    )
    op.create_index("ix_agency_team_members_agency_owner_id", "agency_team_members", ["agency_owner_id"])
    # Delegate lookups filter on all three columns on every agency-scoped request.
    op.create_index(
        "ix_agency_team_members_delegate",
        "agency_team_members",
        ["member_user_id", "can_manage_agency", "status"],
    )

    op.create_table(
        "agency_workspace_provisions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("agency_owner_id", sa.String(), nullable=False),
        sa.Column(
            "workspace_id",
            sa.String(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "agency_team_member_id",
            sa.String(),
            sa.ForeignKey("agency_team_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provisioned_role", sa.String(), nullable=False),
        sa.Column("provision_type", sa.String(), nullable=False),
        sa.Column("workspace_member_id", sa.String(), nullable=True),
        sa.Column("invitation_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_agency_workspace_provisions_agency_owner_id",
        "agency_workspace_provisions",
        ["agency_owner_id"],
    )
    op.create_index(
        "ix_agency_workspace_provisions_workspace_id",
        "agency_workspace_provisions",
        ["workspace_id"],
    )
    op.create_index(
        "ix_agency_workspace_provisions_agency_team_member_id",
        "agency_workspace_provisions",
        ["agency_team_member_id"],
    )


def downgrade() -> None:
    op.drop_table("agency_workspace_provisions")
    op.drop_table("agency_team_members")
    op.drop_table("workspace_invitations")
    op.drop_table("workspace_members")
    op.drop_table("workspaces")
    op.drop_table("user_profiles")
