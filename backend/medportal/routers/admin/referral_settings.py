import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from medportal.core.database import get_session
from medportal.models.doctor import DoctorReferralSettings
from medportal.models.identity import SuperAdminProfile
from medportal.models.referral import DoctorReferralListing
from medportal.models.settings import ReferralConfiguration, ReferralConfigurationUpdate
from medportal.routers.admin.deps import actor_label, get_current_superadmin
from medportal.services import referrals as ledger

log = logging.getLogger(__name__)

router = APIRouter(tags=["admin:referrals"])


class DoctorReferralToggle(BaseModel):
    enabled: bool
    reason: Optional[str] = None


@router.get("/referral-config", response_model=ReferralConfiguration)
def read_referral_config(
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return ledger.get_referral_configuration(session)


@router.put("/referral-config", response_model=ReferralConfiguration)
def update_referral_config(
    updates: ReferralConfigurationUpdate,
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    """Partial update. Changing ``referrals_per_reward`` does not touch existing
    ledgers; call ``/referral-config/recompute`` afterwards."""
    return ledger.update_referral_configuration(session, updates, actor_label(admin))


@router.post("/referral-config/recompute")
def recompute_eligible_rewards(
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
) -> Dict[str, Any]:
    updated = ledger.recompute_all_eligible_rewards(session)
    log.info("[admin] %s recomputed eligible rewards for %d doctors", actor_label(admin), updated)
    return {"updated": updated}


@router.get("/referrals/doctors", response_model=List[DoctorReferralListing])
def list_referring_doctors(
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return ledger.list_doctors_with_settings(session)


@router.get("/referrals/top", response_model=List[DoctorReferralListing])
def list_top_referrers(
    limit: int = Query(default=10, ge=1, le=100),
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return ledger.get_top_referrers(session, limit)


@router.put("/referrals/doctors/{doctor_id}/settings", response_model=DoctorReferralSettings)
def set_doctor_referral_status(
    doctor_id: UUID,
    payload: DoctorReferralToggle,
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return ledger.toggle_doctor_referral_status(
        session, doctor_id, payload.enabled, actor_label(admin), payload.reason
    )
