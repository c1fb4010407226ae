from __future__ import annotations

import logging
import re
import string
import time
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.config import get_settings
from woozy.core.errors import api_error, store_error
from woozy.domain.models import UserProfile, Workspace, WorkspaceMember
from woozy.persistence.repos import members as members_repo
from woozy.persistence.repos import workspaces as workspaces_repo
from woozy.services.access.agency import require_agency_access
from woozy.services.access.membership import (
    check_permission,
    has_final_approval,
    require_membership,
)
from woozy.services.access.roles import (
    PERM_MANAGE_TEAM,
    PERMISSION_NAMES,
    Role,
    apply_permission_overrides,
    coerce_role,
    member_flag_defaults,
    normalize_role,
)
from woozy.services.access.tiers import can_create_workspace, tier_summary


logger = logging.getLogger(__name__)

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_slug(name: str, *, now_ms: int | None = None) -> str:
    # URL-safe name plus a base36 millisecond suffix so equal names never collide.
    base = _SLUG_INVALID.sub("-", name.lower()).strip("-")
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{base}-{_to_base36(stamp)}"


def _validate_name(name: str | None) -> str:
    settings = get_settings()
    cleaned = (name or "").strip()
    if not settings.workspace_name_min_length <= len(cleaned) <= settings.workspace_name_max_length:
        raise api_error(
            f"Business name must be between {settings.workspace_name_min_length} and "
            f"{settings.workspace_name_max_length} characters",
            "VALIDATION_ERROR",
        )
    return cleaned


async def create_workspace(
    session: AsyncSession,
    user_id: str,
    name: str,
    *,
    on_behalf_of_agency: bool = False,
) -> Workspace:
    """Create a workspace with exactly one owner membership.

    When ``on_behalf_of_agency`` is set the workspace belongs to the resolved
    agency principal, so a delegated manager never ends up owning client
    workspaces. The entitlement check runs against the owning profile.
    """
    cleaned = _validate_name(name)
    owner_id = user_id
    if on_behalf_of_agency:
        access = await require_agency_access(session, user_id)
        owner_id = access.agency_owner_id

    try:
        profile = await workspaces_repo.get_profile(session, user_id=owner_id)
        owned = await workspaces_repo.count_owned_workspaces(session, owner_id=owner_id) if profile else 0
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "workspace_create_lookup",
            exc,
            "Failed to create workspace",
            user_id=user_id,
            owner_id=owner_id,
        ) from exc
    if profile is None:
        raise api_error("User profile not found", "NOT_FOUND", 404)
    if not can_create_workspace(profile.subscription_tier, owned, profile.workspace_add_ons or 0):
        raise api_error(
            "Workspace limit reached for your plan",
            "PAYMENT_REQUIRED",
            402,
            current_count=owned,
            tier=profile.subscription_tier,
        )

    try:
        workspace = await workspaces_repo.insert_workspace(
            session,
            name=cleaned,
            slug=generate_slug(cleaned),
            owner_id=owner_id,
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "workspace_insert",
            exc,
            "Failed to create workspace",
            owner_id=owner_id,
        ) from exc
    workspace_id = workspace.id

    try:
        await members_repo.insert_member(
            session,
            workspace_id=workspace_id,
            user_id=owner_id,
            role=Role.OWNER.value,
            flags=member_flag_defaults(Role.OWNER.value),
        )
    except SQLAlchemyError as exc:
        # Rolling back discards the uncommitted workspace row as well.
        await session.rollback()
        raise store_error(
            logger,
            "workspace_owner_insert",
            exc,
            "Failed to add user to workspace",
            workspace_id=workspace_id,
            owner_id=owner_id,
        ) from exc

    try:
        await workspaces_repo.set_last_workspace(session, user_id=owner_id, workspace_id=workspace_id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "workspace_create_commit",
            exc,
            "Failed to create workspace",
            owner_id=owner_id,
        ) from exc
    logger.info(
        "workspace_created workspace_id=%s owner_id=%s actor_id=%s",
        workspace_id,
        owner_id,
        user_id,
    )
    return workspace


async def update_member(
    session: AsyncSession,
    actor_id: str,
    workspace_id: str,
    target_user_id: str,
    *,
    role: str | None = None,
    permissions: Mapping[str, Any] | None = None,
) -> WorkspaceMember:
    await require_membership(session, actor_id, workspace_id, PERM_MANAGE_TEAM)
    if target_user_id == actor_id:
        raise api_error("You cannot change your own role", "VALIDATION_ERROR")

    try:
        target = await members_repo.find_member(session, workspace_id=workspace_id, user_id=target_user_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "member_update_lookup",
            exc,
            "Failed to update member",
            workspace_id=workspace_id,
            target_user_id=target_user_id,
        ) from exc
    if target is None:
        raise api_error("Member not found in this workspace", "NOT_FOUND", 404)
    if normalize_role(target.role) == Role.OWNER.value:
        raise api_error("Cannot modify the workspace owner's role", "VALIDATION_ERROR")

    values: dict[str, Any] = {}
    if role is not None:
        resolved = coerce_role(role)
        if resolved is Role.OWNER:
            raise api_error("The owner role cannot be assigned", "VALIDATION_ERROR")
        # A role change reseeds the flags; overrides in the same request still win.
        values.update(apply_permission_overrides(resolved.value, permissions))
        values["role"] = resolved.value
    elif permissions:
        values.update(apply_permission_overrides(None, permissions))
    if not values:
        raise api_error("No updates provided", "VALIDATION_ERROR")

    for column, value in values.items():
        setattr(target, column, value)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "member_update",
            exc,
            "Failed to update member",
            workspace_id=workspace_id,
            target_user_id=target_user_id,
        ) from exc
    logger.info(
        "member_updated workspace_id=%s target_user_id=%s actor_id=%s fields=%s",
        workspace_id,
        target_user_id,
        actor_id,
        ",".join(sorted(values)),
    )
    return target


async def remove_member(
    session: AsyncSession,
    actor_id: str,
    workspace_id: str,
    target_user_id: str,
) -> None:
    await require_membership(session, actor_id, workspace_id, PERM_MANAGE_TEAM)
    if target_user_id == actor_id:
        raise api_error("You cannot remove yourself from the workspace", "VALIDATION_ERROR")

    try:
        target = await members_repo.find_member(session, workspace_id=workspace_id, user_id=target_user_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "member_remove_lookup",
            exc,
            "Failed to remove member",
            workspace_id=workspace_id,
            target_user_id=target_user_id,
        ) from exc
    if target is None:
        raise api_error("Member not found in this workspace", "NOT_FOUND", 404)
    if normalize_role(target.role) == Role.OWNER.value:
        raise api_error("Cannot remove the workspace owner", "VALIDATION_ERROR")

    try:
        await members_repo.delete_member(session, workspace_id=workspace_id, user_id=target_user_id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "member_remove",
            exc,
            "Failed to remove member",
            workspace_id=workspace_id,
            target_user_id=target_user_id,
        ) from exc
    logger.info(
        "member_removed workspace_id=%s target_user_id=%s actor_id=%s",
        workspace_id,
        target_user_id,
        actor_id,
    )


async def leave_workspace(session: AsyncSession, user_id: str, workspace_id: str) -> None:
    # Self-service exit; the owner has to transfer or delete the workspace instead.
    try:
        member = await members_repo.find_member(session, workspace_id=workspace_id, user_id=user_id)
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "workspace_leave_lookup",
            exc,
            "Failed to leave workspace",
            user_id=user_id,
            workspace_id=workspace_id,
        ) from exc
    if member is None:
        raise api_error("You are not a member of this workspace", "NOT_FOUND", 404)
    role = normalize_role(member.role)
    if role == Role.OWNER.value:
        raise api_error(
            "Workspace owners cannot leave. Please transfer ownership first or delete the workspace.",
            "FORBIDDEN",
            403,
        )

    try:
        await members_repo.delete_member(session, workspace_id=workspace_id, user_id=user_id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise store_error(
            logger,
            "workspace_leave",
            exc,
            "Failed to leave workspace",
            user_id=user_id,
            workspace_id=workspace_id,
        ) from exc
    logger.info("workspace_left workspace_id=%s user_id=%s role=%s", workspace_id, user_id, role)


async def list_members(
    session: AsyncSession,
    user_id: str,
    workspace_id: str,
) -> list[tuple[WorkspaceMember, UserProfile | None]]:
    """Return every membership row of the workspace, oldest first.

    Any member may read the roster. Each row is paired with the member's
    profile, or ``None`` when the profile row is missing.
    """
    await require_membership(session, user_id, workspace_id)
    try:
        members = await members_repo.list_members(session, workspace_id=workspace_id)
        profiles = await workspaces_repo.get_profiles(
            session, user_ids=[member.user_id for member in members]
        )
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "member_list",
            exc,
            "Failed to fetch members",
            workspace_id=workspace_id,
        ) from exc
    return [(member, profiles.get(member.user_id)) for member in members]

async def get_access_summary(session: AsyncSession, user_id: str, workspace_id: str) -> dict[str, Any]:
    # Effective view for the UI: override-aware permissions plus the owner's plan.
    member = await require_membership(session, user_id, workspace_id)
    try:
        workspace = await workspaces_repo.get_workspace(session, workspace_id=workspace_id)
        owner = (
            await workspaces_repo.get_profile(session, user_id=workspace.owner_id)
            if workspace is not None
            else None
        )
    except SQLAlchemyError as exc:
        raise store_error(
            logger,
            "access_summary",
            exc,
            "Failed to load workspace access",
            user_id=user_id,
            workspace_id=workspace_id,
        ) from exc
    if workspace is None:
        raise api_error("Workspace not found", "NOT_FOUND", 404)
    return {
        "workspaceId": workspace.id,
        "workspaceName": workspace.name,
        "role": normalize_role(member.role),
        "permissions": {name: check_permission(member, name).success for name in PERMISSION_NAMES},
        "canFinalApproval": has_final_approval(member),
        "plan": tier_summary(owner.subscription_tier if owner is not None else None),
    }
