from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class Role(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
    VIEWER = "viewer"


# Historical five-role scheme collapsed into the current three roles.
LEGACY_ROLE_MAP: Mapping[str, Role] = MappingProxyType(
    {
        "admin": Role.MEMBER,
        "editor": Role.MEMBER,
        "client": Role.VIEWER,
        "view_only": Role.VIEWER,
    }
)

PERM_MANAGE_TEAM = "canManageTeam"
PERM_MANAGE_SETTINGS = "canManageSettings"
PERM_DELETE_POSTS = "canDeletePosts"
PERM_APPROVE_POSTS = "canApprovePosts"
PERM_CREATE_POSTS = "canCreatePosts"
PERM_EDIT_ALL_POSTS = "canEditAllPosts"
PERM_DELETE_ALL_POSTS = "canDeleteAllPosts"
PERM_DELETE_WORKSPACE = "canDeleteWorkspace"

PERMISSION_NAMES: tuple[str, ...] = (
    PERM_MANAGE_TEAM,
    PERM_MANAGE_SETTINGS,
    PERM_DELETE_POSTS,
    PERM_APPROVE_POSTS,
    PERM_CREATE_POSTS,
    PERM_EDIT_ALL_POSTS,
    PERM_DELETE_ALL_POSTS,
    PERM_DELETE_WORKSPACE,
)


def _matrix(*granted: str) -> Mapping[str, bool]:
    return MappingProxyType({name: name in granted for name in PERMISSION_NAMES})


ROLE_PERMISSIONS: Mapping[str, Mapping[str, bool]] = MappingProxyType(
    {
        Role.OWNER.value: _matrix(*PERMISSION_NAMES),
        Role.MEMBER.value: _matrix(PERM_CREATE_POSTS),
        Role.VIEWER.value: _matrix(),
    }
)

# Persisted override columns on workspace_members and the permission each one mirrors.
MEMBER_FLAG_COLUMNS: Mapping[str, str] = MappingProxyType(
    {
        PERM_MANAGE_TEAM: "can_manage_team",
        PERM_MANAGE_SETTINGS: "can_manage_settings",
        PERM_DELETE_POSTS: "can_delete_posts",
        PERM_APPROVE_POSTS: "can_approve_posts",
        "canFinalApproval": "can_final_approval",
    }
)


class PostAction(str, Enum):
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    CREATE = "create"


def normalize_role(role: str | None) -> str:
    """Map a raw role string onto the current owner/member/viewer vocabulary.

    Missing roles become ``viewer``. Legacy identifiers go through
    ``LEGACY_ROLE_MAP``. Anything else is returned untouched so that the
    permission lookup misses and falls back to the viewer matrix.
    """
    if not role:
        return Role.VIEWER.value
    legacy = LEGACY_ROLE_MAP.get(role)
    if legacy is not None:
        return legacy.value
    return role


def coerce_role(role: str | None) -> Role:
    # Deserialization boundary: unrecognized values are stored as viewer, never passed through.
    normalized = normalize_role(role)
    try:
        return Role(normalized)
    except ValueError:
        return Role.VIEWER


def _permissions_for(role: str | None) -> Mapping[str, bool]:
    return ROLE_PERMISSIONS.get(normalize_role(role), ROLE_PERMISSIONS[Role.VIEWER.value])


def has_permission(role: str | None, permission: str) -> bool:
    if not role:
        return False
    return _permissions_for(role).get(permission) is True


def can_perform_post_action(role: str | None, action: str, is_own_post: bool = False) -> bool:
    permissions = _permissions_for(role)
    if action == PostAction.EDIT:
        return is_own_post or permissions[PERM_EDIT_ALL_POSTS] is True
    if action == PostAction.DELETE:
        return is_own_post or permissions[PERM_DELETE_ALL_POSTS] is True
    if action == PostAction.APPROVE:
        return permissions[PERM_APPROVE_POSTS] is True
    if action == PostAction.CREATE:
        return permissions[PERM_CREATE_POSTS] is True
    return False


def member_flag_defaults(role: str | None) -> dict[str, bool]:
    # Owners get every toggle, including final approval which has no matrix entry.
    resolved = coerce_role(role)
    if resolved is Role.OWNER:
        return {column: True for column in MEMBER_FLAG_COLUMNS.values()}
    permissions = ROLE_PERMISSIONS[resolved.value]
    return {
        column: permissions.get(permission) is True
        for permission, column in MEMBER_FLAG_COLUMNS.items()
    }


def apply_permission_overrides(
    role: str | None,
    overrides: Mapping[str, Any] | None,
) -> dict[str, bool]:
    # Role defaults seed the row; explicit boolean overrides from the same request win.
    flags = member_flag_defaults(role) if role is not None else {}
    for permission, value in (overrides or {}).items():
        column = MEMBER_FLAG_COLUMNS.get(permission)
        if column is not None and isinstance(value, bool):
            flags[column] = value
    return flags
