"""Export SQLModel tables so metadata is populated for ``create_all``."""

from .doctor import Doctor, DoctorPublic, DoctorReferralSettings, Patient, ReferralRewards, ReferralStats
from .enums import GuardAction, GuardState, PlanTier, ReferralStatus, RewardStatus, RewardType, Role, SubscriptionStatus
from .identity import Principal, RoleProfile, SuperAdminProfile
from .referral import (
    DoctorReferralListing,
    PendingRewardView,
    Referral,
    ReferralEligibility,
    ReferralOverview,
    ReferredDoctorProfile,
    RewardProgress,
    RewardRequest,
)
from .settings import AppSetting, ReferralConfiguration, ReferralConfigurationUpdate
from .subscription import Subscription, SubscriptionCreate, SubscriptionPublic

__all__ = [
    "AppSetting",
    "Doctor",
    "DoctorPublic",
    "DoctorReferralListing",
    "DoctorReferralSettings",
    "GuardAction",
    "GuardState",
    "Patient",
    "PendingRewardView",
    "PlanTier",
    "Principal",
    "Referral",
    "ReferralConfiguration",
    "ReferralConfigurationUpdate",
    "ReferralEligibility",
    "ReferralOverview",
    "ReferralRewards",
    "ReferralStats",
    "ReferralStatus",
    "ReferredDoctorProfile",
    "RewardProgress",
    "RewardRequest",
    "RewardStatus",
    "RewardType",
    "Role",
    "RoleProfile",
    "Subscription",
    "SubscriptionCreate",
    "SubscriptionPublic",
    "SubscriptionStatus",
    "SuperAdminProfile",
]
