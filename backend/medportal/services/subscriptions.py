"""
Subscription collaborator.

Payment processing lives elsewhere; this module only reads a doctor's current
subscription and applies the referral-reward side effects (extend the active
subscription or open a zero-cost one). Subscriptions are keyed by the
doctor's auth ``user_id``; the doctor row carries a read-only mirror of the
current subscription for listings.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlmodel import Session, col, select

from medportal.exceptions import NotFound
from medportal.models.doctor import Doctor
from medportal.models.enums import SubscriptionStatus
from medportal.models.subscription import Subscription, SubscriptionCreate

log = logging.getLogger(__name__)

REFERRAL_REWARD_PLAN_ID = "referral_reward"
REFERRAL_REWARD_PLAN_NAME = "Referral reward"


def is_subscription_active(subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    """Active iff status is ``active`` and it has no expiry or expires in the future."""
    if subscription is None:
        return False
    if subscription.status != SubscriptionStatus.active:
        return False
    if subscription.end_date is None:
        return True
    return subscription.end_date > (now or datetime.utcnow())


def days_remaining(subscription: Optional[Subscription], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days until expiry; None for subscriptions without an end date."""
    if subscription is None or subscription.end_date is None:
        return None
    delta = subscription.end_date - (now or datetime.utcnow())
    return max(0, delta.days)


def get_user_subscription(session: Session, user_id: str) -> Optional[Subscription]:
    """Newest ``active`` subscription for ``user_id``, else the newest ``pending`` one."""
    for status in (SubscriptionStatus.active, SubscriptionStatus.pending):
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status == status)
            .order_by(col(Subscription.created_at).desc())
        )
        found = session.exec(stmt).first()
        if found is not None:
            return found
    return None


def _sync_doctor_mirror(session: Session, subscription: Subscription) -> None:
    doctor = session.exec(select(Doctor).where(Doctor.user_id == subscription.user_id)).first()
    if doctor is None:
        return
    doctor.subscription_status = subscription.status.value
    doctor.subscription_plan = subscription.plan_name
    doctor.subscription_expires_at = subscription.end_date
    doctor.updated_at = datetime.utcnow()
    session.add(doctor)


def create_subscription(session: Session, data: SubscriptionCreate, *, commit: bool = True) -> Subscription:
    now = datetime.utcnow()
    subscription = Subscription(
        **data.model_dump(exclude={"start_date"}),
        start_date=data.start_date or now,
        created_at=now,
        updated_at=now,
    )
    session.add(subscription)
    _sync_doctor_mirror(session, subscription)
    if commit:
        session.commit()
        session.refresh(subscription)
    log.info(
        "[subscriptions] Created %s subscription %s for user %s (ends %s)",
        subscription.plan_id, subscription.id, subscription.user_id, subscription.end_date,
    )
    return subscription


def extend_subscription(
    session: Session,
    subscription_id: UUID,
    days: int,
    extended_by: Optional[str] = None,
    *,
    commit: bool = True,
) -> Subscription:
    """Push ``end_date`` out by ``days``.

    Extends from the current end date, or from now when it already lapsed.
    Subscriptions without an end date stay open-ended; the extension is still
    recorded in ``extended_days``.
    """
    if days < 1:
        raise ValueError("days must be >= 1")
    subscription = session.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFound("subscription", subscription_id)

    now = datetime.utcnow()
    if subscription.end_date is not None:
        base = subscription.end_date if subscription.end_date > now else now
        subscription.end_date = base + timedelta(days=days)
    subscription.extended_days = (subscription.extended_days or 0) + days
    subscription.extended_by = extended_by
    subscription.updated_at = now
    session.add(subscription)
    _sync_doctor_mirror(session, subscription)
    if commit:
        session.commit()
        session.refresh(subscription)
    log.info("[subscriptions] Extended subscription %s by %d days (ends %s)", subscription.id, days, subscription.end_date)
    return subscription


def grant_reward_days(session: Session, user_id: str, days: int, granted_by: Optional[str]) -> Subscription:
    """Extend the user's active subscription by ``days`` or open a zero-cost one."""
    current = get_user_subscription(session, user_id)
    if is_subscription_active(current):
        return extend_subscription(session, current.id, days, extended_by=granted_by)

    now = datetime.utcnow()
    return create_subscription(
        session,
        SubscriptionCreate(
            user_id=user_id,
            plan_id=REFERRAL_REWARD_PLAN_ID,
            plan_name=REFERRAL_REWARD_PLAN_NAME,
            price=0.0,
            status=SubscriptionStatus.active,
            start_date=now,
            end_date=now + timedelta(days=days),
            payment_method=REFERRAL_REWARD_PLAN_ID,
            created_by=granted_by,
        ),
    )
