"""Enumeration types shared by the identity, referral and subscription models.

Centralized so the string values stored in the database and returned to the
portals stay consistent.
"""
from enum import Enum


class Role(str, Enum):
    """Mutually exclusive classification of an authenticated principal."""
    doctor = "doctor"
    patient = "patient"
    superadmin = "superadmin"
    unknown = "unknown"


class ReferralStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"


class RewardStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class RewardType(str, Enum):
    subscription_extension = "subscription_extension"


class SubscriptionStatus(str, Enum):
    active = "active"
    pending = "pending"
    cancelled = "cancelled"
    expired = "expired"


class PlanTier(str, Enum):
    """Subscription plans ordered from lowest to highest entitlement."""
    free = "free"
    medium = "medium"
    plus = "plus"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


_PLAN_ORDER = [PlanTier.free, PlanTier.medium, PlanTier.plus]


class GuardState(str, Enum):
    """States a protected view moves through while access is being decided."""
    loading = "loading"
    unauthenticated = "unauthenticated"
    role_unknown = "role_unknown"
    fail_closed = "fail_closed"
    unauthorized = "unauthorized"
    restricted = "restricted"
    authorized = "authorized"


class GuardAction(str, Enum):
    wait = "wait"
    redirect = "redirect"
    restrict = "restrict"
    render = "render"
