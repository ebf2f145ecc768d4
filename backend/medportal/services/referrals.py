"""
Referral ledger: referral codes, referral records and the per-doctor counters.

Counters on the doctor row are only changed through ``UPDATE ... SET col =
col + n`` so concurrent requests never lose an increment, and record
transitions are conditional updates whose rowcount decides whether the
caller won. Callers that hold a ``Doctor`` instance must refresh it to see
the new counter values.
"""
from __future__ import annotations

import logging
import random
import re
from datetime import datetime
from typing import Any, Mapping, Optional, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from medportal.core.config import settings
from medportal.exceptions import InvalidConfiguration, NotFound, ReferralDisabled
from medportal.models.doctor import Doctor, DoctorReferralSettings
from medportal.models.enums import ReferralStatus
from medportal.models.referral import (
    DoctorReferralListing,
    Referral,
    ReferralEligibility,
    ReferralOverview,
    ReferredDoctorProfile,
    RewardProgress,
)
from medportal.models.settings import (
    ReferralConfiguration,
    ReferralConfigurationUpdate,
    load_referral_configuration,
    save_referral_configuration,
)

log = logging.getLogger(__name__)

REASON_GLOBALLY_DISABLED = "Referral system is disabled globally"
REASON_DOCTOR_DISABLED = "Referrals are disabled for this doctor"
SYSTEM_ACTOR = "system"


def max_rewards_reason(limit: int) -> str:
    return f"Reached the maximum of {limit} referral rewards"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def get_referral_configuration(session: Session) -> ReferralConfiguration:
    return load_referral_configuration(session)


def update_referral_configuration(
    session: Session,
    updates: Union[ReferralConfigurationUpdate, Mapping[str, Any]],
    updated_by: str,
) -> ReferralConfiguration:
    """Apply a partial update and persist it.

    Only explicitly provided fields change; passing ``max_rewards_per_doctor``
    as None removes the cap. Does not recompute eligible rewards; call
    ``recompute_all_eligible_rewards`` after changing ``referrals_per_reward``.
    """
    try:
        if not isinstance(updates, ReferralConfigurationUpdate):
            updates = ReferralConfigurationUpdate.model_validate(dict(updates))
        current = load_referral_configuration(session)
        merged = current.model_dump()
        merged.update(updates.model_dump(exclude_unset=True))
        merged["last_updated"] = datetime.utcnow()
        merged["updated_by"] = updated_by
        config = ReferralConfiguration.model_validate(merged)
    except ValidationError as exc:
        raise InvalidConfiguration(
            "Invalid referral configuration",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
    save_referral_configuration(session, config)
    log.info("[referrals] Configuration updated by %s: %s", updated_by, updates.model_dump(exclude_unset=True))
    return config


# ---------------------------------------------------------------------------
# Doctor lookups and policy
# ---------------------------------------------------------------------------

def _get_doctor(session: Session, doctor_id: UUID) -> Doctor:
    doctor = session.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound("doctor", doctor_id)
    session.refresh(doctor)
    return doctor


def eligibility_for(doctor: Doctor, config: ReferralConfiguration) -> ReferralEligibility:
    if not config.system_enabled or not config.allow_new_referrals:
        return ReferralEligibility(can_refer=False, reason=REASON_GLOBALLY_DISABLED)
    if not doctor.referral_enabled:
        return ReferralEligibility(can_refer=False, reason=doctor.referral_reason_disabled or REASON_DOCTOR_DISABLED)
    limit = config.max_rewards_per_doctor
    if limit is not None and doctor.approved_rewards >= limit:
        return ReferralEligibility(can_refer=False, reason=max_rewards_reason(limit))
    return ReferralEligibility(can_refer=True)


def can_doctor_refer(
    session: Session,
    doctor_id: UUID,
    config: Optional[ReferralConfiguration] = None,
) -> ReferralEligibility:
    """Global switches, then the doctor's own toggle, then the reward cap."""
    config = config or load_referral_configuration(session)
    return eligibility_for(_get_doctor(session, doctor_id), config)


# ---------------------------------------------------------------------------
# Referral codes
# ---------------------------------------------------------------------------

def generate_doctor_referral_code(doctor_name: str) -> str:
    prefix = re.sub(r"[^A-Z]", "", (doctor_name or "").upper())[:3] or "DOC"
    return f"{prefix}{random.randint(1000, 9999)}"


def referral_link(code: str, base_url: Optional[str] = None) -> str:
    base = (base_url if base_url is not None else settings.APP_BASE_URL or "").rstrip("/")
    return f"{base}/auth/register?ref={code}"


def _code_taken(session: Session, code: str) -> bool:
    return session.exec(select(Doctor.id).where(Doctor.referral_code == code)).first() is not None


def create_referral_code(session: Session, doctor_id: UUID, doctor_name: Optional[str] = None) -> str:
    """Return the doctor's referral code, generating and storing one if needed.

    Safe to call repeatedly: an existing code is returned unchanged.
    """
    doctor = _get_doctor(session, doctor_id)
    if doctor.referral_code:
        return doctor.referral_code

    eligibility = eligibility_for(doctor, load_referral_configuration(session))
    if not eligibility.can_refer:
        raise ReferralDisabled(eligibility.reason or REASON_DOCTOR_DISABLED)

    name = doctor_name or doctor.display_name
    max_attempts = settings.REFERRAL_CODE_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        code = generate_doctor_referral_code(name)
        if _code_taken(session, code):
            continue
        try:
            result = session.execute(
                update(Doctor)
                .where(col(Doctor.id) == doctor.id)
                .where(col(Doctor.referral_code).is_(None))
                .values(referral_code=code, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            session.commit()
        except IntegrityError:
            # Another doctor grabbed the same code between the scan and the write
            session.rollback()
            log.info("[referrals] Code %s collided on write (attempt %d)", code, attempt)
            continue
        session.refresh(doctor)
        if result.rowcount == 0:
            log.info("[referrals] Doctor %s got a code from a concurrent request", doctor.id)
        else:
            log.info("[referrals] Created referral code %s for doctor %s", doctor.referral_code, doctor.id)
        return doctor.referral_code
    raise RuntimeError(f"Could not generate a unique referral code after {max_attempts} attempts")


def validate_referral_code(session: Session, code: Optional[str]) -> Optional[Doctor]:
    """Return the doctor owning ``code`` (case-insensitive), or None."""
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    return session.exec(select(Doctor).where(Doctor.referral_code == normalized)).first()


# ---------------------------------------------------------------------------
# Referral records
# ---------------------------------------------------------------------------

def register_referral(
    session: Session,
    referrer_id: UUID,
    referred_id: UUID,
    referred_profile: Optional[ReferredDoctorProfile] = None,
) -> Optional[Referral]:
    """Record that ``referred_id`` signed up with ``referrer_id``'s code.

    Declines quietly (returns None) when the referrer can no longer refer, or
    when the referred doctor is already referred; a referral problem must
    never fail the new doctor's own registration.
    """
    if referrer_id == referred_id:
        log.info("[referrals] Doctor %s tried to refer themself; ignoring", referrer_id)
        return None

    referrer = session.get(Doctor, referrer_id)
    if referrer is None:
        log.warning("[referrals] Referrer %s not found; skipping referral of %s", referrer_id, referred_id)
        return None
    session.refresh(referrer)
    referred = session.get(Doctor, referred_id)
    if referred is None:
        raise NotFound("doctor", referred_id)

    eligibility = eligibility_for(referrer, load_referral_configuration(session))
    if not eligibility.can_refer:
        log.info("[referrals] Referrer %s cannot refer (%s); skipping referral of %s", referrer_id, eligibility.reason, referred_id)
        return None

    existing = session.exec(select(Referral.id).where(Referral.referred_doctor_id == referred_id)).first()
    if existing is not None:
        log.info("[referrals] Doctor %s already has referral %s; skipping", referred_id, existing)
        return None

    profile = referred_profile or ReferredDoctorProfile()
    now = datetime.utcnow()
    referral = Referral(
        referrer_doctor_id=referrer_id,
        referred_doctor_id=referred_id,
        referred_doctor_name=profile.full_name or referred.display_name,
        referred_doctor_email=profile.email or referred.email,
        referred_doctor_specialty=profile.specialty or referred.specialty,
        status=ReferralStatus.pending,
        created_at=now,
    )
    try:
        session.add(referral)
        session.flush()
        session.execute(
            update(Doctor)
            .where(col(Doctor.id) == referrer_id)
            .values(
                total_referrals=col(Doctor.total_referrals) + 1,
                pending_referrals=col(Doctor.pending_referrals) + 1,
                last_referral_date=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(Doctor)
            .where(col(Doctor.id) == referred_id)
            .where(col(Doctor.referred_by_doctor_id).is_(None))
            .values(referred_by_doctor_id=referrer_id)
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        log.info("[referrals] Concurrent referral for doctor %s won; skipping", referred_id)
        return None
    session.refresh(referral)
    log.info("[referrals] Registered referral %s: %s -> %s", referral.id, referrer_id, referred_id)
    return referral


def confirm_referral(session: Session, referral_id: UUID, referrer_id: UUID) -> Referral:
    """Move a referral ``pending -> confirmed`` and recompute the referrer's rewards.

    Confirming an already confirmed referral changes nothing.
    """
    referral = session.get(Referral, referral_id)
    if referral is None or referral.referrer_doctor_id != referrer_id:
        raise NotFound("referral", referral_id)

    now = datetime.utcnow()
    result = session.execute(
        update(Referral)
        .where(col(Referral.id) == referral_id)
        .where(col(Referral.status) == ReferralStatus.pending)
        .values(status=ReferralStatus.confirmed, confirmed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        session.refresh(referral)
        log.info("[referrals] Referral %s already %s; nothing to confirm", referral_id, referral.status.value)
        return referral

    session.execute(
        update(Doctor)
        .where(col(Doctor.id) == referrer_id)
        .values(
            pending_referrals=col(Doctor.pending_referrals) - 1,
            confirmed_referrals=col(Doctor.confirmed_referrals) + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(referral)
    log.info("[referrals] Confirmed referral %s for doctor %s", referral_id, referrer_id)
    update_eligible_rewards(session, referrer_id)
    return referral


def complete_doctor_profile(session: Session, doctor_id: UUID) -> Optional[Referral]:
    """Mark the doctor's profile complete and confirm the referral that brought them in.

    A completed profile is what turns a pending referral into a confirmed
    one. Returns the referral, or None when the doctor was not referred.
    Calling it again is harmless.
    """
    doctor = _get_doctor(session, doctor_id)
    if not doctor.profile_complete:
        doctor.profile_complete = True
        doctor.updated_at = datetime.utcnow()
        session.add(doctor)
        session.commit()
        log.info("[referrals] Doctor %s completed their profile", doctor_id)

    referral = session.exec(select(Referral).where(Referral.referred_doctor_id == doctor_id)).first()
    if referral is None:
        return None
    return confirm_referral(session, referral.id, referral.referrer_doctor_id)


# ---------------------------------------------------------------------------
# Eligibility and reporting
# ---------------------------------------------------------------------------

def update_eligible_rewards(
    session: Session,
    doctor_id: UUID,
    config: Optional[ReferralConfiguration] = None,
) -> int:
    """Set ``eligible_rewards = confirmed_referrals // referrals_per_reward`` and return it."""
    config = config or load_referral_configuration(session)
    result = session.execute(
        update(Doctor)
        .where(col(Doctor.id) == doctor_id)
        .values(eligible_rewards=col(Doctor.confirmed_referrals) // config.referrals_per_reward)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        raise NotFound("doctor", doctor_id)
    session.commit()
    doctor = _get_doctor(session, doctor_id)
    log.debug("[referrals] Doctor %s eligible rewards = %d", doctor_id, doctor.eligible_rewards)
    return doctor.eligible_rewards


def recompute_all_eligible_rewards(session: Session, config: Optional[ReferralConfiguration] = None) -> int:
    """Recompute every doctor's eligible rewards; returns the number of doctors updated."""
    config = config or load_referral_configuration(session)
    result = session.execute(
        update(Doctor)
        .values(eligible_rewards=col(Doctor.confirmed_referrals) // config.referrals_per_reward)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    log.info("[referrals] Recomputed eligible rewards for %d doctors (ratio %d)", result.rowcount, config.referrals_per_reward)
    return result.rowcount


def progress_to_next_reward(confirmed_referrals: int, referrals_per_reward: int) -> RewardProgress:
    current = confirmed_referrals % referrals_per_reward
    return RewardProgress(
        current=current,
        needed=referrals_per_reward,
        remaining=referrals_per_reward - current,
        percentage=int(current * 100 / referrals_per_reward),
    )


def get_referral_stats(session: Session, doctor_id: UUID) -> ReferralOverview:
    doctor = _get_doctor(session, doctor_id)
    config = load_referral_configuration(session)
    rewards = doctor.referral_rewards
    return ReferralOverview(
        doctor_id=doctor.id,
        referral_code=doctor.referral_code,
        referral_link=referral_link(doctor.referral_code) if doctor.referral_code else None,
        stats=doctor.referral_stats,
        rewards=rewards,
        available_rewards=rewards.available_rewards,
        progress=progress_to_next_reward(doctor.confirmed_referrals, config.referrals_per_reward),
        eligibility=eligibility_for(doctor, config),
        settings=doctor.referral_settings,
    )


def get_referrals_by_doctor(session: Session, doctor_id: UUID) -> list[Referral]:
    stmt = (
        select(Referral)
        .where(Referral.referrer_doctor_id == doctor_id)
        .order_by(col(Referral.created_at).desc())
    )
    return list(session.exec(stmt).all())


# ---------------------------------------------------------------------------
# Per-doctor settings (superadmin)
# ---------------------------------------------------------------------------

def get_doctor_referral_settings(session: Session, doctor_id: UUID) -> DoctorReferralSettings:
    return _get_doctor(session, doctor_id).referral_settings


def toggle_doctor_referral_status(
    session: Session,
    doctor_id: UUID,
    enabled: bool,
    toggled_by: str,
    reason: Optional[str] = None,
) -> DoctorReferralSettings:
    doctor = _get_doctor(session, doctor_id)
    now = datetime.utcnow()
    doctor.referral_enabled = enabled
    doctor.referral_last_toggled = now
    doctor.referral_toggled_by = toggled_by
    doctor.referral_reason_disabled = None if enabled else (reason or REASON_DOCTOR_DISABLED)
    doctor.updated_at = now
    session.add(doctor)
    session.commit()
    session.refresh(doctor)
    log.info(
        "[referrals] Referrals %s for doctor %s by %s",
        "enabled" if enabled else "disabled", doctor_id, toggled_by,
    )
    return doctor.referral_settings


def list_doctors_with_settings(session: Session) -> list[DoctorReferralListing]:
    """Doctors that have a referral code, most confirmed referrals first."""
    config = load_referral_configuration(session)
    stmt = (
        select(Doctor)
        .where(col(Doctor.referral_code).is_not(None))
        .order_by(col(Doctor.confirmed_referrals).desc(), col(Doctor.display_name))
    )
    return [_listing(session, doctor, config) for doctor in session.exec(stmt).all()]


def get_top_referrers(session: Session, limit: int = 10) -> list[DoctorReferralListing]:
    """Doctors with at least one confirmed referral, ranked by confirmed referrals."""
    config = load_referral_configuration(session)
    stmt = (
        select(Doctor)
        .where(col(Doctor.confirmed_referrals) > 0)
        .order_by(col(Doctor.confirmed_referrals).desc(), col(Doctor.display_name))
        .limit(max(limit, 0))
    )
    return [_listing(session, doctor, config) for doctor in session.exec(stmt).all()]


def _listing(session: Session, doctor: Doctor, config: ReferralConfiguration) -> DoctorReferralListing:
    session.refresh(doctor)
    eligibility = eligibility_for(doctor, config)
    return DoctorReferralListing(
        id=doctor.id,
        display_name=doctor.display_name or "Doctor",
        email=doctor.email,
        specialty=doctor.specialty,
        referral_code=doctor.referral_code,
        stats=doctor.referral_stats,
        rewards=doctor.referral_rewards,
        settings=doctor.referral_settings,
        can_refer=eligibility.can_refer,
        referral_block_reason=eligibility.reason,
    )
