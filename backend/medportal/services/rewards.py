"""
Reward workflow: ``pending -> approved | rejected`` reward requests.

Approval spans two aggregates. The ledger side (request status and the
doctor's reward counters) commits first, then the subscription is extended.
If the subscription step fails the ledger side is compensated back to
``pending`` and ``RewardFulfillmentFailed`` is raised, so the request can be
approved again later.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, col, select

from medportal.exceptions import (
    InvalidStateTransition,
    NotFound,
    ReferralDisabled,
    RewardFulfillmentFailed,
    RewardUnavailable,
    audit_conflict_log_only,
)
from medportal.models.doctor import Doctor, ReferralRewards
from medportal.models.enums import RewardStatus, RewardType
from medportal.models.referral import PendingRewardView, RewardRequest
from medportal.models.settings import ReferralConfiguration, load_referral_configuration
from medportal.services import subscriptions
from medportal.services.referrals import (
    REASON_DOCTOR_DISABLED,
    SYSTEM_ACTOR,
    eligibility_for,
    max_rewards_reason,
    toggle_doctor_referral_status,
)

log = logging.getLogger(__name__)


def available_rewards(rewards: ReferralRewards) -> int:
    """Rewards the doctor may still request: ``max(0, eligible - approved - pending)``."""
    return rewards.available_rewards


def _get_doctor(session: Session, doctor_id: UUID) -> Doctor:
    doctor = session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound("doctor", doctor_id)
    session.refresh(doctor)
    return doctor


def _get_reward(session: Session, reward_id: UUID) -> RewardRequest:
    reward = session.get(RewardRequest, reward_id)
    if reward is None:
        raise NotFound("reward_request", reward_id)
    return reward


def create_reward_request(session: Session, doctor_id: UUID) -> RewardRequest:
    """Claim one available reward for ``doctor_id``.

    The availability check and the ``pending_rewards`` increment are a single
    conditional UPDATE, so two concurrent requests cannot both claim the last
    reward.
    """
    doctor = _get_doctor(session, doctor_id)
    config = load_referral_configuration(session)
    eligibility = eligibility_for(doctor, config)
    if not eligibility.can_refer:
        raise ReferralDisabled(eligibility.reason or REASON_DOCTOR_DISABLED)

    now = datetime.utcnow()
    result = session.execute(
        update(Doctor)
        .where(col(Doctor.id) == doctor_id)
        .where(
            col(Doctor.eligible_rewards) - col(Doctor.approved_rewards) - col(Doctor.pending_rewards) > 0
        )
        .values(pending_rewards=col(Doctor.pending_rewards) + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        raise RewardUnavailable(doctor_id, available_rewards(doctor.referral_rewards))

    reward = RewardRequest(
        doctor_id=doctor_id,
        reward_type=RewardType.subscription_extension,
        status=RewardStatus.pending,
        reward_value=config.reward_days,
        created_at=now,
    )
    session.add(reward)
    session.commit()
    session.refresh(reward)
    log.info("[rewards] Doctor %s requested reward %s (%d days)", doctor_id, reward.id, reward.reward_value)
    return reward


def _transition(session: Session, reward: RewardRequest, target: RewardStatus, **values) -> None:
    """Move ``reward`` out of pending, or raise if someone else already did."""
    result = session.execute(
        update(RewardRequest)
        .where(col(RewardRequest.id) == reward.id)
        .where(col(RewardRequest.status) == RewardStatus.pending)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        session.refresh(reward)
        audit_conflict_log_only(
            "reward request is not pending",
            {"reward_id": str(reward.id), "status": reward.status.value, "attempted": target.value},
        )
        raise InvalidStateTransition("reward_request", reward.id, reward.status.value, target.value)


def _compensate_approval(session: Session, reward: RewardRequest) -> None:
    session.execute(
        update(RewardRequest)
        .where(col(RewardRequest.id) == reward.id)
        .where(col(RewardRequest.status) == RewardStatus.approved)
        .values(status=RewardStatus.pending, approved_at=None, approved_by=None)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(Doctor)
        .where(col(Doctor.id) == reward.doctor_id)
        .values(
            pending_rewards=col(Doctor.pending_rewards) + 1,
            approved_rewards=col(Doctor.approved_rewards) - 1,
            total_rewards_earned=col(Doctor.total_rewards_earned) - reward.reward_value,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()


def approve_reward_request(session: Session, reward_id: UUID, approved_by: str) -> RewardRequest:
    """Approve a pending reward and grant its subscription days."""
    reward = _get_reward(session, reward_id)
    doctor = _get_doctor(session, reward.doctor_id)

    now = datetime.utcnow()
    _transition(session, reward, RewardStatus.approved, approved_at=now, approved_by=approved_by)
    session.execute(
        update(Doctor)
        .where(col(Doctor.id) == reward.doctor_id)
        .values(
            pending_rewards=col(Doctor.pending_rewards) - 1,
            approved_rewards=col(Doctor.approved_rewards) + 1,
            total_rewards_earned=col(Doctor.total_rewards_earned) + reward.reward_value,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(reward)

    try:
        subscription = subscriptions.grant_reward_days(session, doctor.user_id, reward.reward_value, approved_by)
    except Exception as exc:
        session.rollback()
        log.error("[rewards] Fulfilment of reward %s failed, rolling back approval: %s", reward_id, exc)
        try:
            _compensate_approval(session, reward)
        except Exception as comp_exc:
            session.rollback()
            debug_id = audit_conflict_log_only(
                "reward approved but neither fulfilled nor rolled back; reconcile manually",
                {
                    "reward_id": str(reward_id),
                    "doctor_id": str(reward.doctor_id),
                    "reward_value": reward.reward_value,
                    "fulfilment_error": repr(exc),
                    "compensation_error": repr(comp_exc),
                },
            )
            raise RewardFulfillmentFailed(
                "Reward approval could not be completed and needs manual reconciliation",
                details={"reward_id": str(reward_id), "debug_id": debug_id},
            ) from exc
        raise RewardFulfillmentFailed(
            "Could not extend the doctor's subscription; the reward is still pending",
            details={"reward_id": str(reward_id)},
        ) from exc

    reward.fulfillment_subscription_id = subscription.id
    session.add(reward)
    session.commit()
    session.refresh(reward)
    log.info(
        "[rewards] Approved reward %s for doctor %s by %s (subscription %s)",
        reward_id, reward.doctor_id, approved_by, subscription.id,
    )

    check_and_disable_if_needed(session, reward.doctor_id)
    return reward


def reject_reward_request(
    session: Session,
    reward_id: UUID,
    rejected_by: str,
    reason: Optional[str] = None,
) -> RewardRequest:
    """Reject a pending reward. Only ``pending_rewards`` changes on the doctor."""
    reward = _get_reward(session, reward_id)
    now = datetime.utcnow()
    _transition(
        session,
        reward,
        RewardStatus.rejected,
        rejected_at=now,
        rejected_by=rejected_by,
        rejection_reason=reason,
    )
    session.execute(
        update(Doctor)
        .where(col(Doctor.id) == reward.doctor_id)
        .values(pending_rewards=col(Doctor.pending_rewards) - 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(reward)
    log.info("[rewards] Rejected reward %s for doctor %s by %s", reward_id, reward.doctor_id, rejected_by)
    return reward


def check_and_disable_if_needed(
    session: Session,
    doctor_id: UUID,
    config: Optional[ReferralConfiguration] = None,
) -> bool:
    """Turn off referrals for a doctor that reached the reward cap. Returns True if disabled."""
    config = config or load_referral_configuration(session)
    limit = config.max_rewards_per_doctor
    if limit is None:
        return False
    doctor = _get_doctor(session, doctor_id)
    if doctor.approved_rewards < limit or not doctor.referral_enabled:
        return False
    toggle_doctor_referral_status(session, doctor_id, False, SYSTEM_ACTOR, max_rewards_reason(limit))
    log.info("[rewards] Doctor %s reached %d approved rewards; referrals auto-disabled", doctor_id, limit)
    return True


def get_pending_reward_requests(session: Session) -> list[PendingRewardView]:
    """Pending requests with the requesting doctor's ledger, oldest first."""
    stmt = (
        select(RewardRequest, Doctor)
        .join(Doctor, col(Doctor.id) == col(RewardRequest.doctor_id))
        .where(RewardRequest.status == RewardStatus.pending)
        .order_by(col(RewardRequest.created_at))
        .execution_options(populate_existing=True)
    )
    views = []
    for reward, doctor in session.exec(stmt).all():
        views.append(
            PendingRewardView(
                id=reward.id,
                doctor_id=doctor.id,
                reward_type=reward.reward_type,
                reward_value=reward.reward_value,
                created_at=reward.created_at,
                doctor_name=doctor.display_name,
                doctor_email=doctor.email,
                doctor_specialty=doctor.specialty,
                total_referrals=doctor.total_referrals,
                confirmed_referrals=doctor.confirmed_referrals,
                eligible_rewards=doctor.eligible_rewards,
            )
        )
    return views


def get_doctor_reward_requests(session: Session, doctor_id: UUID) -> list[RewardRequest]:
    stmt = (
        select(RewardRequest)
        .where(RewardRequest.doctor_id == doctor_id)
        .order_by(col(RewardRequest.created_at).desc())
    )
    return list(session.exec(stmt).all())
