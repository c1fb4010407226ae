from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class SubscriptionTier(str, Enum):
    FREE = "free"
    SOLO = "solo"
    PRO = "pro"
    PRO_PLUS = "pro_plus"
    AGENCY = "agency"
    DEVELOPMENT = "development"


DEFAULT_TIER = SubscriptionTier.FREE

FEATURE_CAN_POST = "canPost"
FEATURE_AI = "aiFeatures"
FEATURE_APPROVAL_WORKFLOWS = "approvalWorkflows"

FEATURE_KEYS = frozenset({FEATURE_CAN_POST, FEATURE_AI, FEATURE_APPROVAL_WORKFLOWS})


@dataclass(frozen=True)
class Ceiling:
    # None means unlimited; never use float("inf") so the value stays valid JSON.
    maximum: int | None

    @classmethod
    def limited(cls, maximum: int) -> Ceiling:
        if maximum < 0:
            raise ValueError("ceiling must be non-negative")
        return cls(maximum)

    @classmethod
    def unlimited(cls) -> Ceiling:
        return cls(None)

    @property
    def is_unlimited(self) -> bool:
        return self.maximum is None

    def allows(self, count: int, extra: int = 0) -> bool:
        # Strict less-than: a count equal to the ceiling is already full.
        if self.maximum is None:
            return True
        return count < self.maximum + extra

    def to_json(self) -> int | None:
        return self.maximum


@dataclass(frozen=True)
class TierConfig:
    tier: SubscriptionTier
    workspaces: Ceiling
    team_members: Ceiling
    features: Mapping[str, bool]


def _features(*, can_post: bool, ai: bool, approvals: bool) -> Mapping[str, bool]:
    return MappingProxyType(
        {
            FEATURE_CAN_POST: can_post,
            FEATURE_AI: ai,
            FEATURE_APPROVAL_WORKFLOWS: approvals,
        }
    )


TIER_CONFIG: Mapping[SubscriptionTier, TierConfig] = MappingProxyType(
    {
        SubscriptionTier.FREE: TierConfig(
            tier=SubscriptionTier.FREE,
            workspaces=Ceiling.limited(0),
            team_members=Ceiling.limited(0),
            features=_features(can_post=False, ai=False, approvals=False),
        ),
        SubscriptionTier.SOLO: TierConfig(
            tier=SubscriptionTier.SOLO,
            workspaces=Ceiling.limited(1),
            team_members=Ceiling.limited(1),
            features=_features(can_post=True, ai=False, approvals=False),
        ),
        SubscriptionTier.PRO: TierConfig(
            tier=SubscriptionTier.PRO,
            workspaces=Ceiling.limited(1),
            team_members=Ceiling.limited(3),
            features=_features(can_post=True, ai=True, approvals=False),
        ),
        SubscriptionTier.PRO_PLUS: TierConfig(
            tier=SubscriptionTier.PRO_PLUS,
            workspaces=Ceiling.limited(4),
            team_members=Ceiling.unlimited(),
            features=_features(can_post=True, ai=True, approvals=True),
        ),
        SubscriptionTier.AGENCY: TierConfig(
            tier=SubscriptionTier.AGENCY,
            workspaces=Ceiling.unlimited(),
            team_members=Ceiling.unlimited(),
            features=_features(can_post=True, ai=True, approvals=True),
        ),
        # Internal tier for staging and test accounts.
        SubscriptionTier.DEVELOPMENT: TierConfig(
            tier=SubscriptionTier.DEVELOPMENT,
            workspaces=Ceiling.unlimited(),
            team_members=Ceiling.unlimited(),
            features=_features(can_post=True, ai=True, approvals=True),
        ),
    }
)


def resolve_tier(tier: str | None) -> SubscriptionTier:
    # Unknown or missing tiers fail closed to the free tier.
    if not tier:
        return DEFAULT_TIER
    try:
        return SubscriptionTier(tier)
    except ValueError:
        return DEFAULT_TIER


def get_tier_config(tier: str | None) -> TierConfig:
    return TIER_CONFIG[resolve_tier(tier)]


def has_feature(tier: str | None, feature: str) -> bool:
    if not tier:
        return False
    return get_tier_config(tier).features.get(feature) is True


def can_create_workspace(tier: str | None, current_count: int, add_ons: int = 0) -> bool:
    # Compares the workspaces the owner already has against ceiling + purchased add-ons.
    return get_tier_config(tier).workspaces.allows(current_count, add_ons)


def can_invite_team_member(tier: str | None, proposed_total: int) -> bool:
    # Callers pass the member count including the person being invited; unlike
    # can_create_workspace this compares the proposed total, not the current one.
    return get_tier_config(tier).team_members.allows(proposed_total)


def tier_summary(tier: str | None) -> dict[str, Any]:
    config = get_tier_config(tier)
    return {
        "tier": config.tier.value,
        "max_workspaces": config.workspaces.to_json(),
        "max_team_members": config.team_members.to_json(),
        "features": dict(config.features),
    }
