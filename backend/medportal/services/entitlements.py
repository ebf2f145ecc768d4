"""
Entitlement service for plan-based feature gating of the doctor panel.

Every check reads the doctor and the subscription fresh from the database.
Expiry is time-sensitive, so nothing here is cached.
"""
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlmodel import Session

from medportal.models.doctor import Doctor
from medportal.models.enums import PlanTier
from medportal.models.subscription import Subscription
from medportal.services.subscriptions import get_user_subscription, is_subscription_active

log = logging.getLogger(__name__)

# Minimum plan per feature; plans are cumulative (free < medium < plus)
FEATURE_MIN_PLAN: dict[str, PlanTier] = {
    "profile": PlanTier.free,
    "subscription": PlanTier.free,
    "referrals": PlanTier.free,
    "schedule": PlanTier.medium,
    "new-patient": PlanTier.medium,
    "nuevo-paciente": PlanTier.medium,
    "patients": PlanTier.medium,
    "appointments": PlanTier.medium,
    "reviews": PlanTier.medium,
    "video-consultation": PlanTier.plus,
}

# Unknown features require the lowest paid plan
DEFAULT_FEATURE_PLAN = PlanTier.medium

PLAN_ID_MAPPING: dict[str, PlanTier] = {
    "free": PlanTier.free,
    "medium": PlanTier.medium,
    "plus": PlanTier.plus,
    "plan-free": PlanTier.free,
    "plan-medium": PlanTier.medium,
    "plan-plus": PlanTier.plus,
}

PAGE_FEATURES: dict[str, str] = {
    "/admin/profile": "profile",
    "/admin/subscription": "subscription",
    "/admin/referrals": "referrals",
    "/admin/nuevo-paciente": "new-patient",
    "/admin/new-patient": "new-patient",
    "/admin/patients": "patients",
    "/admin/appointment": "appointments",
    "/admin/appointments": "appointments",
    "/admin/reviews": "reviews",
    "/admin/schedule": "schedule",
    "/admin/video-consultation": "video-consultation",
}

UPGRADE_PATH = "/admin/subscription"


def required_plan_for(feature: str) -> PlanTier:
    return FEATURE_MIN_PLAN.get((feature or "").strip().lower(), DEFAULT_FEATURE_PLAN)


def features_for_plan(plan: PlanTier) -> list[str]:
    return sorted(name for name, tier in FEATURE_MIN_PLAN.items() if tier.rank <= plan.rank and name != "nuevo-paciente")


def determine_plan_key(plan_id: Optional[str], plan_name: Optional[str], price: Optional[float] = 0) -> PlanTier:
    """Map a subscription to its plan tier.

    Zero-priced subscriptions (including referral rewards) are the free plan.
    Otherwise the plan id is tried, then keywords in the plan name.
    """
    if not price:
        return PlanTier.free
    mapped = PLAN_ID_MAPPING.get((plan_id or "").strip().lower())
    if mapped is not None:
        return mapped
    name = (plan_name or "").lower()
    if "free" in name or "gratis" in name:
        return PlanTier.free
    if "medium" in name or "medio" in name:
        return PlanTier.medium
    if "plus" in name or "premium" in name:
        return PlanTier.plus
    log.warning("[entitlements] Could not map plan id=%r name=%r; treating as free", plan_id, plan_name)
    return PlanTier.free


def _active_subscription(session: Session, doctor_id: UUID) -> tuple[Optional[Doctor], Optional[Subscription]]:
    doctor = session.get(Doctor, doctor_id)
    if doctor is None:
        return None, None
    # Always read the latest row, never an identity-map copy from earlier in the request
    session.refresh(doctor)
    subscription = get_user_subscription(session, doctor.user_id)
    if subscription is not None:
        session.refresh(subscription)
    if not is_subscription_active(subscription):
        return doctor, None
    return doctor, subscription


def get_doctor_plan(session: Session, doctor_id: UUID) -> Optional[PlanTier]:
    """The doctor's effective plan, or None without an active subscription."""
    _, subscription = _active_subscription(session, doctor_id)
    if subscription is None:
        return None
    return determine_plan_key(subscription.plan_id, subscription.plan_name, subscription.price)


def has_feature_access(session: Session, doctor_id: UUID, feature: str) -> bool:
    """Whether the doctor's active plan includes ``feature``.

    A missing doctor, a missing subscription or an inactive one all mean
    no access; this never raises for those cases.
    """
    plan = get_doctor_plan(session, doctor_id)
    if plan is None:
        log.debug("[entitlements] doctor %s has no active subscription; denying %s", doctor_id, feature)
        return False
    allowed = plan.rank >= required_plan_for(feature).rank
    if not allowed:
        log.debug("[entitlements] doctor %s on %s lacks %s", doctor_id, plan.value, feature)
    return allowed


def get_doctor_features(session: Session, doctor_id: UUID) -> list[str]:
    plan = get_doctor_plan(session, doctor_id)
    if plan is None:
        return []
    return features_for_plan(plan)


def get_doctor_plan_name(session: Session, doctor_id: UUID) -> Optional[str]:
    """Display name of the active plan; None when nothing is active, matching an empty feature list."""
    plan = get_doctor_plan(session, doctor_id)
    return plan.display_name if plan is not None else None


def feature_for_page(page_path: str) -> Optional[str]:
    path = (page_path or "").rstrip("/") or "/"
    feature = PAGE_FEATURES.get(path)
    if feature:
        return feature
    if "/patients" in path:
        return "patients"
    if "/appointment" in path:
        return "appointments"
    if "/video-consultation" in path:
        return "video-consultation"
    return None


def can_access_page(session: Session, doctor_id: UUID, page_path: str) -> bool:
    """Check an admin page; pages that map to no feature are unrestricted."""
    feature = feature_for_page(page_path)
    if feature is None:
        return True
    return has_feature_access(session, doctor_id, feature)
