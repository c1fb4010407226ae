from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.errors import api_error
from woozy.persistence.repos import agency as agency_repo
from woozy.persistence.repos import workspaces as workspaces_repo
from woozy.services.access.tiers import SubscriptionTier


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgencyAccess:
    is_owner: bool
    is_manager: bool
    agency_owner_id: str | None
    has_access: bool
    # Set only when resolution failed; a plain "no access" result leaves it empty.
    error_code: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "isOwner": self.is_owner,
            "isManager": self.is_manager,
            "agencyOwnerId": self.agency_owner_id,
            "hasAccess": self.has_access,
        }


NO_AGENCY_ACCESS = AgencyAccess(is_owner=False, is_manager=False, agency_owner_id=None, has_access=False)

_Resolver = Callable[[AsyncSession, str], Awaitable[AgencyAccess | None]]


async def _resolve_principal(session: AsyncSession, user_id: str) -> AgencyAccess | None:
    # Whitelisting substitutes for both the agency tier and an active subscription.
    profile = await workspaces_repo.get_profile(session, user_id=user_id)
    if profile is None:
        return None
    whitelisted = profile.is_whitelisted is True
    is_agency = profile.subscription_tier == SubscriptionTier.AGENCY.value
    is_active = profile.subscription_status == "active"
    if (is_agency or whitelisted) and (is_active or whitelisted):
        return AgencyAccess(is_owner=True, is_manager=False, agency_owner_id=user_id, has_access=True)
    return None


async def _resolve_delegate(session: AsyncSession, user_id: str) -> AgencyAccess | None:
    entry = await agency_repo.find_active_delegation(session, member_user_id=user_id)
    if entry is None:
        return None
    return AgencyAccess(
        is_owner=False,
        is_manager=True,
        agency_owner_id=entry.agency_owner_id,
        has_access=True,
    )


# Evaluated in order; the first resolver that returns a result wins, so an agency
# owner who is also listed as someone else's delegate always resolves as the owner.
_AGENCY_RESOLVERS: tuple[_Resolver, ...] = (_resolve_principal, _resolve_delegate)


async def get_agency_access(session: AsyncSession, user_id: str) -> AgencyAccess:
    """Resolve whether ``user_id`` acts for an agency, and for which principal.

    Every agency-scoped write must be attributed to ``agency_owner_id`` from the
    returned value rather than to the caller. Never raises: store failures come
    back as a no-access result carrying ``error_code``.
    """
    try:
        for resolver in _AGENCY_RESOLVERS:
            access = await resolver(session, user_id)
            if access is not None:
                return access
    except SQLAlchemyError as exc:
        logger.error("agency_access_lookup_failed user_id=%s error=%s", user_id, type(exc).__name__)
        return AgencyAccess(
            is_owner=False,
            is_manager=False,
            agency_owner_id=None,
            has_access=False,
            error_code="DB_ERROR",
        )
    except Exception:
        logger.exception("agency_access_resolution_failed user_id=%s", user_id)
        return AgencyAccess(
            is_owner=False,
            is_manager=False,
            agency_owner_id=None,
            has_access=False,
            error_code="VERIFICATION_ERROR",
        )
    return NO_AGENCY_ACCESS


async def require_agency_access(session: AsyncSession, user_id: str) -> AgencyAccess:
    # Route-facing guard: an outage is a 500, a missing subscription is a 402.
    access = await get_agency_access(session, user_id)
    if access.error_code is not None:
        raise api_error("Failed to verify agency access", access.error_code, 500)
    if not access.has_access or access.agency_owner_id is None:
        raise api_error("Agency subscription required", "PAYMENT_REQUIRED", 402)
    return access
