from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.errors import api_error, error_status
from woozy.domain.models import WorkspaceMember
from woozy.persistence.repos import members as members_repo
from woozy.services.access.roles import (
    PERM_APPROVE_POSTS,
    PERM_MANAGE_TEAM,
    Role,
    has_permission,
    normalize_role,
)


logger = logging.getLogger(__name__)

# Permissions a member row can grant through its own flag, independently of the role matrix.
_FLAG_BACKED_PERMISSIONS: dict[str, str] = {
    PERM_APPROVE_POSTS: "can_approve_posts",
    PERM_MANAGE_TEAM: "can_manage_team",
}


@dataclass(frozen=True)
class AccessResult:
    success: bool
    code: str | None = None
    error: str | None = None
    member: WorkspaceMember | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        if self.success or self.code is None:
            return 200
        return error_status(self.code, 400)

    @classmethod
    def ok(cls, member: WorkspaceMember | None = None) -> AccessResult:
        return cls(success=True, member=member)

    @classmethod
    def denied(cls, code: str, error: str, **details: Any) -> AccessResult:
        return cls(success=False, code=code, error=error, details=details)


async def verify_workspace_membership(
    session: AsyncSession,
    user_id: str,
    workspace_id: str,
) -> AccessResult:
    """Look up the caller's membership row for a workspace.

    Only the store's zero-rows condition means "not a member". Any other store
    failure is reported as ``DB_ERROR`` so an outage is never mistaken for a
    denial. Never raises.
    """
    try:
        member = await members_repo.get_member(session, workspace_id=workspace_id, user_id=user_id)
    except NoResultFound:
        return AccessResult.denied("NOT_MEMBER", "Not a workspace member")
    except SQLAlchemyError as exc:
        logger.error(
            "membership_lookup_failed user_id=%s workspace_id=%s error=%s",
            user_id,
            workspace_id,
            type(exc).__name__,
        )
        return AccessResult.denied(
            "DB_ERROR",
            "Database error: failed to verify membership",
            error_type=type(exc).__name__,
            error_message=str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc),
        )
    except Exception:
        logger.exception(
            "membership_verification_failed user_id=%s workspace_id=%s",
            user_id,
            workspace_id,
        )
        return AccessResult.denied("VERIFICATION_ERROR", "Failed to verify membership")
    return AccessResult.ok(member)


def check_permission(member: WorkspaceMember | None, permission: str) -> AccessResult:
    # Team management and approval honor per-member flags; everything else follows the role matrix.
    if member is None or not member.role:
        return AccessResult.denied("INVALID_MEMBER", "Invalid member data")
    column = _FLAG_BACKED_PERMISSIONS.get(permission)
    if column is not None:
        allowed = normalize_role(member.role) == Role.OWNER.value or getattr(member, column, None) is True
    else:
        allowed = has_permission(member.role, permission)
    if not allowed:
        return AccessResult.denied(
            "INSUFFICIENT_PERMISSIONS",
            f"Insufficient permissions. {permission} required.",
        )
    return AccessResult.ok(member)


def has_final_approval(member: WorkspaceMember | None) -> bool:
    if member is None or not member.role:
        return False
    return normalize_role(member.role) == Role.OWNER.value or member.can_final_approval is True


async def require_membership(
    session: AsyncSession,
    user_id: str,
    workspace_id: str,
    permission: str | None = None,
) -> WorkspaceMember:
    # Raising wrapper for services: turns a failed AccessResult into the matching HTTP error.
    result = await verify_workspace_membership(session, user_id, workspace_id)
    if result.success and permission is not None:
        result = check_permission(result.member, permission)
    if not result.success or result.member is None:
        raise api_error(result.error or "Access denied", result.code or "FORBIDDEN", result.status_code)
    return result.member
