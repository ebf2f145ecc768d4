import logging
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from medportal.exceptions import (
    InvalidStateTransition,
    NotFound,
    ReferralDisabled,
    RewardFulfillmentFailed,
    RewardUnavailable,
)
from medportal.models.doctor import ReferralRewards
from medportal.models.enums import RewardStatus, SubscriptionStatus
from medportal.models.subscription import Subscription
from medportal.services import referrals as ledger
from medportal.services import rewards as workflow
from medportal.services import subscriptions
from medportal.services.entitlements import has_feature_access

ADMIN = "admin@medicos-ar.com"


def _fresh(session, obj):
    session.refresh(obj)
    return obj


@pytest.mark.parametrize(
    "eligible,approved,pending,expected",
    [(2, 1, 0, 1), (2, 1, 1, 0), (3, 0, 0, 3), (1, 2, 0, 0), (5, 0, 2, 3)],
)
def test_available_rewards(eligible, approved, pending, expected):
    rewards = ReferralRewards(eligible_rewards=eligible, approved_rewards=approved, pending_rewards=pending)
    assert workflow.available_rewards(rewards) == expected


def test_create_reward_request_claims_one_reward(session, make_doctor):
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)
    assert reward.status is RewardStatus.pending
    assert reward.reward_value == 30
    assert _fresh(session, doctor).pending_rewards == 1

    with pytest.raises(RewardUnavailable) as excinfo:
        workflow.create_reward_request(session, doctor.id)
    assert excinfo.value.details["available_rewards"] == 0
    assert _fresh(session, doctor).pending_rewards == 1


def test_reward_value_snapshots_configured_days(session, make_doctor, referral_config):
    referral_config(reward_days=45)
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)
    referral_config(reward_days=10)
    assert _fresh(session, reward).reward_value == 45


def test_create_reward_request_without_rewards(session, make_doctor):
    doctor = make_doctor()
    with pytest.raises(RewardUnavailable):
        workflow.create_reward_request(session, doctor.id)


def test_create_reward_request_blocked_by_policy(session, make_doctor, referral_config):
    doctor = make_doctor(eligible_rewards=2)
    referral_config(system_enabled=False)
    with pytest.raises(ReferralDisabled):
        workflow.create_reward_request(session, doctor.id)
    assert _fresh(session, doctor).pending_rewards == 0


def test_create_reward_request_unknown_doctor(session):
    with pytest.raises(NotFound):
        workflow.create_reward_request(session, uuid4())


def test_approve_extends_active_subscription(session, make_doctor, make_subscription):
    doctor = make_doctor(eligible_rewards=1)
    end = datetime.utcnow() + timedelta(days=10)
    subscription = make_subscription(doctor, end_date=end)
    reward = workflow.create_reward_request(session, doctor.id)

    approved = workflow.approve_reward_request(session, reward.id, ADMIN)
    assert approved.status is RewardStatus.approved
    assert approved.approved_by == ADMIN
    assert approved.approved_at is not None
    assert approved.fulfillment_subscription_id == subscription.id

    subscription = _fresh(session, subscription)
    assert subscription.end_date == end + timedelta(days=30)
    assert subscription.extended_days == 30
    assert subscription.extended_by == ADMIN

    doctor = _fresh(session, doctor)
    assert (doctor.pending_rewards, doctor.approved_rewards, doctor.total_rewards_earned) == (0, 1, 30)
    assert workflow.available_rewards(doctor.referral_rewards) == 0


def test_approve_without_subscription_creates_reward_subscription(session, make_doctor):
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)
    approved = workflow.approve_reward_request(session, reward.id, ADMIN)

    subscription = session.get(Subscription, approved.fulfillment_subscription_id)
    assert subscription.user_id == doctor.user_id
    assert subscription.plan_id == subscriptions.REFERRAL_REWARD_PLAN_ID
    assert subscription.price == 0
    assert subscription.status is SubscriptionStatus.active
    assert subscription.end_date - subscription.start_date == timedelta(days=30)
    assert subscriptions.is_subscription_active(subscription)

    # A zero-cost reward subscription carries the free plan's features
    assert has_feature_access(session, doctor.id, "referrals") is True
    assert has_feature_access(session, doctor.id, "patients") is False


def test_approve_after_lapsed_subscription_counts_from_now(session, make_doctor, make_subscription):
    doctor = make_doctor(eligible_rewards=1)
    make_subscription(doctor, end_date=datetime.utcnow() - timedelta(days=5))
    reward = workflow.create_reward_request(session, doctor.id)
    approved = workflow.approve_reward_request(session, reward.id, ADMIN)

    subscription = session.get(Subscription, approved.fulfillment_subscription_id)
    assert subscription.plan_id == subscriptions.REFERRAL_REWARD_PLAN_ID
    assert subscription.end_date > datetime.utcnow() + timedelta(days=29)


def test_reject_only_releases_pending(session, make_doctor):
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)
    rejected = workflow.reject_reward_request(session, reward.id, ADMIN, "Duplicate accounts")

    assert rejected.status is RewardStatus.rejected
    assert rejected.rejected_by == ADMIN
    assert rejected.rejection_reason == "Duplicate accounts"

    doctor = _fresh(session, doctor)
    assert (doctor.pending_rewards, doctor.approved_rewards, doctor.total_rewards_earned) == (0, 0, 0)
    # The reward can be requested again
    assert workflow.available_rewards(doctor.referral_rewards) == 1


@pytest.mark.parametrize("first", ["approve", "reject"])
@pytest.mark.parametrize("second", ["approve", "reject"])
def test_terminal_requests_cannot_transition(session, make_doctor, first, second):
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)
    actions = {
        "approve": lambda: workflow.approve_reward_request(session, reward.id, ADMIN),
        "reject": lambda: workflow.reject_reward_request(session, reward.id, ADMIN),
    }
    actions[first]()
    before = _fresh(session, doctor).referral_rewards

    with pytest.raises(InvalidStateTransition) as excinfo:
        actions[second]()
    assert excinfo.value.status_code == 409
    assert excinfo.value.current == ("approved" if first == "approve" else "rejected")
    assert _fresh(session, doctor).referral_rewards == before


def test_unknown_reward_request(session):
    with pytest.raises(NotFound):
        workflow.approve_reward_request(session, uuid4(), ADMIN)
    with pytest.raises(NotFound):
        workflow.reject_reward_request(session, uuid4(), ADMIN)


def test_failed_fulfilment_rolls_back_approval(session, make_doctor, make_subscription, monkeypatch, caplog):
    doctor = make_doctor(eligible_rewards=1)
    subscription = make_subscription(doctor)
    original_end = subscription.end_date
    reward = workflow.create_reward_request(session, doctor.id)

    def broken_grant(*args, **kwargs):
        raise RuntimeError("billing store unavailable")

    monkeypatch.setattr(subscriptions, "grant_reward_days", broken_grant)
    with caplog.at_level(logging.ERROR, logger="medportal.services.rewards"):
        with pytest.raises(RewardFulfillmentFailed) as excinfo:
            workflow.approve_reward_request(session, reward.id, ADMIN)
    assert excinfo.value.status_code == 502
    assert any("Fulfilment" in r.getMessage() for r in caplog.records)

    reward = _fresh(session, reward)
    assert reward.status is RewardStatus.pending
    assert reward.approved_by is None
    doctor = _fresh(session, doctor)
    assert (doctor.pending_rewards, doctor.approved_rewards, doctor.total_rewards_earned) == (1, 0, 0)
    assert _fresh(session, subscription).end_date == original_end

    # Once the subscription store recovers the same request can be approved
    monkeypatch.undo()
    approved = workflow.approve_reward_request(session, reward.id, ADMIN)
    assert approved.status is RewardStatus.approved


def test_failed_compensation_is_audited(session, make_doctor, monkeypatch, caplog):
    doctor = make_doctor(eligible_rewards=1)
    reward = workflow.create_reward_request(session, doctor.id)

    def broken(*args, **kwargs):
        raise RuntimeError("datastore gone")

    monkeypatch.setattr(subscriptions, "grant_reward_days", broken)
    monkeypatch.setattr(workflow, "_compensate_approval", broken)
    with caplog.at_level(logging.ERROR, logger="medportal.exceptions"):
        with pytest.raises(RewardFulfillmentFailed) as excinfo:
            workflow.approve_reward_request(session, reward.id, ADMIN)
    assert excinfo.value.details["debug_id"]
    assert any("event=conflict_audit" in r.getMessage() for r in caplog.records)


def test_auto_disable_at_reward_cap(session, make_doctor, referral_config):
    referral_config(max_rewards_per_doctor=2)
    doctor = make_doctor(eligible_rewards=3)

    first = workflow.create_reward_request(session, doctor.id)
    workflow.approve_reward_request(session, first.id, ADMIN)
    assert _fresh(session, doctor).referral_enabled is True

    second = workflow.create_reward_request(session, doctor.id)
    workflow.approve_reward_request(session, second.id, ADMIN)

    doctor = _fresh(session, doctor)
    assert doctor.referral_enabled is False
    assert doctor.referral_toggled_by == ledger.SYSTEM_ACTOR
    assert doctor.referral_reason_disabled == ledger.max_rewards_reason(2)

    with pytest.raises(ReferralDisabled):
        workflow.create_reward_request(session, doctor.id)


def test_check_and_disable_without_cap(session, make_doctor):
    doctor = make_doctor(approved_rewards=50)
    assert workflow.check_and_disable_if_needed(session, doctor.id) is False
    assert _fresh(session, doctor).referral_enabled is True


def test_pending_reward_listing(session, make_doctor):
    older = make_doctor(display_name="Older Doctor", eligible_rewards=1, confirmed_referrals=3, total_referrals=3)
    newer = make_doctor(display_name="Newer Doctor", eligible_rewards=1)
    first = workflow.create_reward_request(session, older.id)
    second = workflow.create_reward_request(session, newer.id)
    done = make_doctor(eligible_rewards=1)
    workflow.reject_reward_request(session, workflow.create_reward_request(session, done.id).id, ADMIN)

    pending = workflow.get_pending_reward_requests(session)
    assert [p.id for p in pending] == [first.id, second.id]
    assert pending[0].doctor_name == "Older Doctor"
    assert pending[0].confirmed_referrals == 3

    mine = workflow.get_doctor_reward_requests(session, older.id)
    assert [r.id for r in mine] == [first.id]


def test_three_confirmed_referrals_earn_thirty_days(session, make_doctor, make_subscription):
    referrer = make_doctor(display_name="Carla Ruiz")
    subscription = make_subscription(referrer)
    end = subscription.end_date
    ledger.create_referral_code(session, referrer.id)

    for _ in range(3):
        referred = make_doctor()
        referral = ledger.register_referral(session, referrer.id, referred.id)
        ledger.confirm_referral(session, referral.id, referrer.id)

    referrer = _fresh(session, referrer)
    assert referrer.eligible_rewards == 1

    reward = workflow.create_reward_request(session, referrer.id)
    workflow.approve_reward_request(session, reward.id, ADMIN)

    assert _fresh(session, subscription).end_date == end + timedelta(days=30)
    referrer = _fresh(session, referrer)
    assert referrer.approved_rewards == 1
    assert referrer.total_rewards_earned == 30
    assert workflow.available_rewards(referrer.referral_rewards) == 0
