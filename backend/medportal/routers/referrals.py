import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from medportal.core.database import get_session
from medportal.exceptions import NotFound
from medportal.models.doctor import Doctor
from medportal.models.enums import Role
from medportal.models.identity import RoleProfile
from medportal.models.referral import Referral, ReferralOverview, ReferredDoctorProfile
from medportal.routers.deps import get_current_doctor, require_role
from medportal.services import referrals as ledger

log = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


class ReferralCodeResponse(BaseModel):
    code: str
    link: str


class MyReferralsResponse(BaseModel):
    overview: ReferralOverview
    referrals: List[Referral]


class RegisterReferralRequest(BaseModel):
    referral_code: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    specialty: Optional[str] = None


@router.post("/code", response_model=ReferralCodeResponse)
def create_my_code(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
):
    code = ledger.create_referral_code(session, doctor.id, doctor.display_name)
    return ReferralCodeResponse(code=code, link=ledger.referral_link(code))


@router.get("/me", response_model=MyReferralsResponse)
def read_my_referrals(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
):
    return MyReferralsResponse(
        overview=ledger.get_referral_stats(session, doctor.id),
        referrals=ledger.get_referrals_by_doctor(session, doctor.id),
    )


@router.get("/validate/{code}")
def validate_code(code: str, session: Session = Depends(get_session)) -> Dict[str, Any]:
    """Public: used by the registration form before the doctor has an account."""
    referrer = ledger.validate_referral_code(session, code)
    if referrer is None:
        return {"valid": False, "code": code.strip().upper()}
    return {"valid": True, "code": referrer.referral_code, "doctor_name": referrer.display_name}


@router.post("/register")
def register_with_code(
    payload: RegisterReferralRequest,
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Called by a newly registered doctor that signed up with a referral code.

    Never fails the signup: an unknown code or a declined referral comes back
    as ``registered: false``.
    """
    referrer = ledger.validate_referral_code(session, payload.referral_code)
    if referrer is None:
        log.info("[referrals] Doctor %s registered with unknown code %r", doctor.id, payload.referral_code)
        return {"registered": False, "referral_id": None}
    profile = ReferredDoctorProfile(
        first_name=payload.first_name,
        last_name=payload.last_name,
        display_name=doctor.display_name,
        email=doctor.email,
        specialty=payload.specialty or doctor.specialty,
    )
    referral = ledger.register_referral(session, referrer.id, doctor.id, profile)
    return {"registered": referral is not None, "referral_id": str(referral.id) if referral else None}


@router.post("/profile-complete")
def complete_my_profile(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Called once the doctor finishes onboarding; confirms the referral that brought them in."""
    referral = ledger.complete_doctor_profile(session, doctor.id)
    return {
        "profile_complete": True,
        "referral_id": str(referral.id) if referral else None,
        "referral_status": referral.status.value if referral else None,
    }

@router.post("/{referral_id}/confirm", response_model=Referral)
def confirm(
    referral_id: UUID,
    session: Session = Depends(get_session),
    admin: RoleProfile = Depends(require_role(Role.superadmin)),
):
    referral = session.get(Referral, referral_id)
    if referral is None:
        raise NotFound("referral", referral_id)
    return ledger.confirm_referral(session, referral_id, referral.referrer_doctor_id)
