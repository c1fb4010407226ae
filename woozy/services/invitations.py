from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.config import get_settings
from woozy.core.errors import api_error, store_error
from woozy.domain.models import WorkspaceInvitation, WorkspaceMember
from woozy.persistence.repos import invitations as invitations_repo
from woozy.persistence.repos import members as members_repo
from woozy.persistence.repos import workspaces as workspaces_repo
from woozy.services.access.membership import require_membership
from woozy.services.access.roles import PERM_MANAGE_TEAM, Role, coerce_role, member_flag_defaults
from woozy.services.access.tiers import can_invite_team_member


logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Some drivers hand back naive timestamps; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_invite_token() -> str:
    return secrets.token_urlsafe(32)


def invite_link(token: str) -> str:
    return f"{get_settings().app_url.rstrip('/')}/accept-invite?token={token}"


def is_expired(invitation: WorkspaceInvitation, *, now: datetime | None = None) -> bool:
    return _as_utc(invitation.expires_at) < (now or _utc_now())


async def create_invitation(
    session: AsyncSession,
    inviter_id: str,
    workspace_id: str,
    email: str,
    role: str | None = None,
) -> WorkspaceInvitation:
    """Invite an email address to a workspace, or refresh a pending invite.

    The team ceiling is checked on the workspace owner's tier with the member
    count plus the invitee. A pending invitation for the same address is
    refreshed in place; an accepted, expired or cancelled one is replaced.
    """
    await require_membership(session, inviter_id, workspace_id, PERM_MANAGE_TEAM)
    invite_role = coerce_role(role or Role.MEMBER.value)
    if invite_role is Role.OWNER:
        raise api_error("The owner role cannot be assigned", "VALIDATION_ERROR")
    normalized_email = email.strip().lower()

    try:
        workspace = await workspaces_repo.get_workspace(session, workspace_id=workspace_id)
        owner = (
            await workspaces_repo.get_profile(session, user_id=workspace.owner_id)
            if workspace is not None
            else None
        )
        member_count = await members_repo.count_members(session, workspace_id=workspace_id)
        invitee = await workspaces_repo.find_profile_by_email(session, email=normalized_email)
        existing_member = (
            await members_repo.find_member(session, workspace_id=workspace_id, user_id=invitee.id)
            if invitee is not None
            else None
        )
        existing_invite = await invitations_repo.find_for_email(
            session, workspace_id=workspace_id, email=normalized_email
        )
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "invitation_create_lookup",
            exc,
            "Failed to create invitation",
            workspace_id=workspace_id,
        ) from exc

    if workspace is None:
        raise api_error("Workspace not found", "NOT_FOUND", 404)
    tier = owner.subscription_tier if owner is not None else None
    if not can_invite_team_member(tier, member_count + 1):
        raise api_error(
            "Team member limit reached for current subscription tier",
            "PAYMENT_REQUIRED",
            402,
            member_count=member_count,
        )
    if existing_member is not None:
        raise api_error("This user is already a member of the workspace", "VALIDATION_ERROR")

    now = _utc_now()
    expires_at = now + timedelta(days=get_settings().invitation_ttl_days)
    try:
        if existing_invite is not None and existing_invite.status == STATUS_PENDING:
            existing_invite.role = invite_role.value
            existing_invite.invited_by = inviter_id
            existing_invite.invited_at = now
            existing_invite.expires_at = expires_at
            invitation = existing_invite
        else:
            if existing_invite is not None:
                await invitations_repo.delete_invitation(session, invitation_id=existing_invite.id)
            invitation = await invitations_repo.insert_invitation(
                session,
                workspace_id=workspace_id,
                email=normalized_email,
                role=invite_role.value,
                invited_by=inviter_id,
                token=new_invite_token(),
                invited_at=now,
                expires_at=expires_at,
            )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "invitation_write",
            exc,
            "Failed to create invitation",
            workspace_id=workspace_id,
        ) from exc
    logger.info(
        "invitation_created invitation_id=%s workspace_id=%s inviter_id=%s",
        invitation.id,
        workspace_id,
        inviter_id,
    )
    return invitation


async def _load_pending(session: AsyncSession, token: str) -> WorkspaceInvitation:
    # Lazy expiry: a pending invitation past its deadline is marked expired on first read.
    try:
        invitation = await invitations_repo.get_by_token(session, token=token)
    except SQLAlchemyError as exc:
        raise store_error(logger, "invitation_lookup", exc, "Failed to load invitation") from exc
    if invitation is None:
        raise api_error("Invitation not found", "NOT_FOUND", 404)
    if invitation.status != STATUS_PENDING:
        raise api_error(f"Invitation has already been {invitation.status}", "VALIDATION_ERROR")
    if is_expired(invitation):
        invitation_id = invitation.id
        invitation.status = STATUS_EXPIRED
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise store_error(
                logger,
                "invitation_expire",
                exc,
                "Failed to load invitation",
                invitation_id=invitation_id,
            ) from exc
        raise api_error("Invitation has expired", "VALIDATION_ERROR")
    return invitation


async def get_invitation(session: AsyncSession, token: str) -> WorkspaceInvitation:
    return await _load_pending(session, token)


async def accept_invitation(
    session: AsyncSession,
    token: str,
    user_id: str,
) -> tuple[WorkspaceInvitation, WorkspaceMember | None]:
    """Join the invitation's workspace as ``user_id``.

    Returns the invitation and the new membership row, or ``None`` for the
    row when the user already belonged to the workspace.
    """
    invitation = await _load_pending(session, token)
    workspace_id = invitation.workspace_id
    try:
        profile = await workspaces_repo.get_profile(session, user_id=user_id)
        existing = await members_repo.find_member(session, workspace_id=workspace_id, user_id=user_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "invitation_accept_lookup",
            exc,
            "Failed to accept invitation",
            user_id=user_id,
        ) from exc
    if profile is None:
        raise api_error("User not found", "NOT_FOUND", 404)
    if (profile.email or "").strip().lower() != invitation.email.lower():
        raise api_error("This invitation was sent to a different email address", "FORBIDDEN", 403)

    member: WorkspaceMember | None = None
    try:
        if existing is None:
            role = coerce_role(invitation.role)
            member = await members_repo.insert_member(
                session,
                workspace_id=workspace_id,
                user_id=user_id,
                role=role.value,
                flags=member_flag_defaults(role.value),
                invited_by=invitation.invited_by,
            )
            await workspaces_repo.set_last_workspace(session, user_id=user_id, workspace_id=workspace_id)
        invitation.status = STATUS_ACCEPTED
        invitation.accepted_at = _utc_now()
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "invitation_accept",
            exc,
            "Failed to join workspace",
            user_id=user_id,
            workspace_id=workspace_id,
        ) from exc
    logger.info(
        "invitation_accepted invitation_id=%s workspace_id=%s user_id=%s already_member=%s",
        invitation.id,
        workspace_id,
        user_id,
        existing is not None,
    )
    return invitation, member


async def list_invitations(
    session: AsyncSession,
    user_id: str,
    workspace_id: str,
) -> list[tuple[WorkspaceInvitation, str | None]]:
    # Pending invitations, newest first, each with a display name for the inviter.
    await require_membership(session, user_id, workspace_id)
    try:
        invitations = await invitations_repo.list_pending(session, workspace_id=workspace_id)
        inviters = await workspaces_repo.get_profiles(
            session, user_ids=[invitation.invited_by for invitation in invitations]
        )
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "invitation_list",
            exc,
            "Failed to fetch invitations",
            workspace_id=workspace_id,
        ) from exc
    listed: list[tuple[WorkspaceInvitation, str | None]] = []
    for invitation in invitations:
        inviter = inviters.get(invitation.invited_by)
        name = (inviter.full_name or inviter.email) if inviter is not None else None
        listed.append((invitation, name))
    return listed

async def cancel_invitation(session: AsyncSession, actor_id: str, invitation_id: str) -> WorkspaceInvitation:
    try:
        invitation = await invitations_repo.get_by_id(session, invitation_id=invitation_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "invitation_cancel_lookup",
            exc,
            "Failed to cancel invitation",
            invitation_id=invitation_id,
        ) from exc
    if invitation is None:
        raise api_error("Invitation not found", "NOT_FOUND", 404)
    await require_membership(session, actor_id, invitation.workspace_id, PERM_MANAGE_TEAM)
    if invitation.status != STATUS_PENDING:
        raise api_error(f"Invitation has already been {invitation.status}", "VALIDATION_ERROR")
    invitation.status = STATUS_CANCELLED
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "invitation_cancel",
            exc,
            "Failed to cancel invitation",
            invitation_id=invitation_id,
        ) from exc
    logger.info("invitation_cancelled invitation_id=%s actor_id=%s", invitation_id, actor_id)
    return invitation
