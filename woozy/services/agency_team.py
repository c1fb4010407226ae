from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.config import get_settings
from woozy.core.errors import api_error, store_error
from woozy.domain.models import AgencyTeamMember
from woozy.persistence.repos import agency as agency_repo
from woozy.persistence.repos import invitations as invitations_repo
from woozy.persistence.repos import members as members_repo
from woozy.persistence.repos import workspaces as workspaces_repo
from woozy.services.access.agency import require_agency_access
from woozy.services.access.roles import Role, coerce_role, member_flag_defaults
from woozy.services.invitations import new_invite_token


logger = logging.getLogger(__name__)

ROSTER_STATUS_PENDING = "pending"
ROSTER_STATUS_ACTIVE = "active"
ROSTER_STATUS_INACTIVE = "inactive"
# Statuses a caller may set; pending is only ever assigned on creation.
UPDATABLE_STATUSES = frozenset({ROSTER_STATUS_ACTIVE, ROSTER_STATUS_INACTIVE})


@dataclass
class ProvisionSummary:
    direct_added: list[dict[str, Any]] = field(default_factory=list)
    invitations_sent: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "directAdded": self.direct_added,
            "invitationsSent": self.invitations_sent,
            "skipped": self.skipped,
            "errors": self.errors,
            "summary": {
                "directAdded": len(self.direct_added),
                "invitationsSent": len(self.invitations_sent),
                "skipped": len(self.skipped),
                "errors": len(self.errors),
            },
        }


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _roster_role(role: str | None) -> str:
    # Roster defaults feed workspace memberships, so owner is never a valid default.
    resolved = coerce_role(role or get_settings().roster_default_role)
    if resolved is Role.OWNER:
        return Role.MEMBER.value
    return resolved.value


async def _load_owned_entry(
    session: AsyncSession,
    agency_owner_id: str,
    entry_id: str,
    *,
    verb: str,
) -> AgencyTeamMember:
    try:
        entry = await agency_repo.get_roster_entry(session, entry_id=entry_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "roster_entry_lookup",
            exc,
            f"Failed to {verb} team member",
            entry_id=entry_id,
        ) from exc
    if entry is None:
        raise api_error("Team member not found", "NOT_FOUND", 404)
    if entry.agency_owner_id != agency_owner_id:
        raise api_error(f"Not authorized to {verb} this team member", "FORBIDDEN", 403)
    return entry


async def list_roster(session: AsyncSession, user_id: str) -> dict[str, Any]:
    access = await require_agency_access(session, user_id)
    try:
        entries = await agency_repo.list_roster(session, agency_owner_id=access.agency_owner_id)
        # Registered entries carry the linked user's profile alongside the roster row.
        profiles = await workspaces_repo.get_profiles(
            session, user_ids=[entry.member_user_id for entry in entries]
        )
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "roster_list",
            exc,
            "Failed to fetch team members",
            user_id=user_id,
        ) from exc
    return {"access": access, "entries": entries, "profiles": profiles}


async def add_roster_member(
    session: AsyncSession,
    user_id: str,
    *,
    email: str,
    full_name: str | None = None,
    default_role: str | None = None,
    department: str | None = None,
    notes: str | None = None,
) -> tuple[AgencyTeamMember, bool]:
    """Add an email to the agency roster.

    Returns the new entry and whether the email belongs to a registered user,
    in which case the entry starts ``active`` and linked to that user.
    """
    access = await require_agency_access(session, user_id)
    agency_owner_id = access.agency_owner_id
    normalized_email = email.strip().lower()
    try:
        existing = await agency_repo.find_roster_entry_by_email(
            session, agency_owner_id=agency_owner_id, email=normalized_email
        )
        registered = await workspaces_repo.find_profile_by_email(session, email=normalized_email)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "roster_add_lookup",
            exc,
            "Failed to add team member",
            agency_owner_id=agency_owner_id,
        ) from exc
    if existing is not None:
        raise api_error("Team member already exists in roster", "VALIDATION_ERROR")

    values = {
        "agency_owner_id": agency_owner_id,
        "email": normalized_email,
        "member_user_id": registered.id if registered is not None else None,
        "full_name": _clean(full_name) or (registered.full_name if registered is not None else None),
        "default_role": _roster_role(default_role),
        "department": _clean(department),
        "notes": _clean(notes),
        "status": ROSTER_STATUS_ACTIVE if registered is not None else ROSTER_STATUS_PENDING,
    }
    try:
        entry = await agency_repo.insert_roster_entry(session, values=values)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "roster_add",
            exc,
            "Failed to add team member",
            agency_owner_id=agency_owner_id,
        ) from exc
    logger.info(
        "roster_member_added entry_id=%s agency_owner_id=%s actor_id=%s registered=%s",
        entry.id,
        agency_owner_id,
        user_id,
        registered is not None,
    )
    return entry, registered is not None


async def update_roster_member(
    session: AsyncSession,
    user_id: str,
    entry_id: str,
    changes: Mapping[str, Any],
) -> AgencyTeamMember:
    access = await require_agency_access(session, user_id)
    entry = await _load_owned_entry(session, access.agency_owner_id, entry_id, verb="update")

    updates: dict[str, Any] = {}
    if "full_name" in changes:
        updates["full_name"] = _clean(changes["full_name"])
    if changes.get("default_role"):
        updates["default_role"] = _roster_role(changes["default_role"])
    if "department" in changes:
        updates["department"] = _clean(changes["department"])
    if "notes" in changes:
        updates["notes"] = _clean(changes["notes"])
    if changes.get("status") in UPDATABLE_STATUSES:
        updates["status"] = changes["status"]
    if isinstance(changes.get("can_manage_agency"), bool):
        # Delegation is granted by the principal only; delegates cannot widen it.
        if not access.is_owner:
            raise api_error(
                "Only the agency owner can grant or revoke agency management permission",
                "FORBIDDEN",
                403,
            )
        updates["can_manage_agency"] = changes["can_manage_agency"]
    if not updates:
        raise api_error("No valid fields to update", "VALIDATION_ERROR")

    for column, value in updates.items():
        setattr(entry, column, value)
    try:
        await session.commit()
        await session.refresh(entry)
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "roster_update",
            exc,
            "Failed to update team member",
            entry_id=entry_id,
        ) from exc
    logger.info(
        "roster_member_updated entry_id=%s actor_id=%s fields=%s",
        entry_id,
        user_id,
        ",".join(sorted(updates)),
    )
    return entry


async def remove_roster_member(session: AsyncSession, user_id: str, entry_id: str) -> str:
    access = await require_agency_access(session, user_id)
    entry = await _load_owned_entry(session, access.agency_owner_id, entry_id, verb="remove")
    # A delegate removing their own entry would revoke their own access mid-request.
    if access.is_manager and entry.member_user_id == user_id:
        raise api_error("You cannot remove yourself from the roster", "FORBIDDEN", 403)
    removed_email = entry.email
    try:
        await agency_repo.delete_roster_entry(session, entry_id=entry_id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "roster_remove",
            exc,
            "Failed to remove team member",
            entry_id=entry_id,
        ) from exc
    logger.info("roster_member_removed entry_id=%s actor_id=%s", entry_id, user_id)
    return removed_email


async def bulk_provision(
    session: AsyncSession,
    user_id: str,
    workspace_id: str,
    entry_ids: list[str],
    role_overrides: Mapping[str, str] | None = None,
) -> ProvisionSummary:
    """Provision roster entries into one of the agency owner's workspaces.

    Registered entries become members directly; unregistered ones get a pending
    invitation. Existing members and pending invitees are skipped. A failure on
    one entry is recorded and the batch continues.
    """
    if not entry_ids:
        raise api_error("teamMemberIds must be a non-empty array", "VALIDATION_ERROR")
    access = await require_agency_access(session, user_id)
    agency_owner_id = access.agency_owner_id

    try:
        workspace = await workspaces_repo.get_workspace(session, workspace_id=workspace_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "provision_workspace_lookup",
            exc,
            "Failed to provision team members",
            workspace_id=workspace_id,
        ) from exc
    if workspace is None:
        raise api_error("Workspace not found", "NOT_FOUND", 404)
    if workspace.owner_id != agency_owner_id:
        raise api_error(
            "Workspace must be owned by the agency owner to provision team members",
            "FORBIDDEN",
            403,
        )

    try:
        entries = await agency_repo.list_roster_entries(
            session, agency_owner_id=agency_owner_id, entry_ids=entry_ids
        )
        member_ids = await members_repo.list_member_user_ids(session, workspace_id=workspace_id)
        pending_emails = await invitations_repo.list_pending_emails(session, workspace_id=workspace_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "provision_lookup",
            exc,
            "Failed to fetch team members",
            workspace_id=workspace_id,
        ) from exc
    if not entries:
        raise api_error("No valid team members found", "NOT_FOUND", 404)

    overrides = role_overrides or {}
    summary = ProvisionSummary()
    ttl = timedelta(days=get_settings().invitation_ttl_days)
    for entry in entries:
        # Plain copies; a rolled-back savepoint may expire the loaded rows.
        entry_id = entry.id
        email = entry.email.lower()
        linked_user_id = entry.member_user_id
        full_name = entry.full_name
        role = _roster_role(overrides.get(entry_id) or entry.default_role)
        if linked_user_id and linked_user_id in member_ids:
            summary.skipped.append({"email": email, "reason": "Already a workspace member"})
            continue
        if email in pending_emails:
            summary.skipped.append({"email": email, "reason": "Pending invitation exists"})
            continue
        provision = {
            "agency_owner_id": agency_owner_id,
            "workspace_id": workspace_id,
            "agency_team_member_id": entry_id,
            "provisioned_role": role,
        }
        try:
            # Savepoint per entry so one failed insert does not poison the batch.
            async with session.begin_nested():
                if linked_user_id:
                    member = await members_repo.insert_member(
                        session,
                        workspace_id=workspace_id,
                        user_id=linked_user_id,
                        role=role,
                        flags=member_flag_defaults(role),
                        invited_by=user_id,
                    )
                    provision.update(
                        provision_type="direct",
                        workspace_member_id=member.id,
                        status="completed",
                    )
                else:
                    now = datetime.now(timezone.utc)
                    invitation = await invitations_repo.insert_invitation(
                        session,
                        workspace_id=workspace_id,
                        email=email,
                        role=role,
                        invited_by=user_id,
                        token=new_invite_token(),
                        invited_at=now,
                        expires_at=now + ttl,
                    )
                    provision.update(
                        provision_type="invitation",
                        invitation_id=invitation.id,
                        status="pending",
                    )
                await agency_repo.insert_provision(session, values=provision)
        except SQLAlchemyError as exc:
            logger.warning(
                "provision_entry_failed entry_id=%s workspace_id=%s error=%s",
                entry_id,
                workspace_id,
                type(exc).__name__,
            )
            summary.errors.append({"email": email, "error": "Failed to provision team member"})
            continue
        if linked_user_id:
            member_ids.add(linked_user_id)
            summary.direct_added.append({"email": email, "name": full_name, "role": role})
        else:
            pending_emails.add(email)
            summary.invitations_sent.append({"email": email, "role": role})

    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "provision_commit",
            exc,
            "Failed to provision team members",
            workspace_id=workspace_id,
        ) from exc
    logger.info(
        "roster_provisioned workspace_id=%s agency_owner_id=%s actor_id=%s "
        "added=%s invited=%s skipped=%s errors=%s",
        workspace_id,
        agency_owner_id,
        user_id,
        len(summary.direct_added),
        len(summary.invitations_sent),
        len(summary.skipped),
        len(summary.errors),
    )
    return summary
