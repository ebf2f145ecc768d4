from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from medportal.core.database import get_session
from medportal.models.identity import SuperAdminProfile
from medportal.models.referral import PendingRewardView, RewardRequest
from medportal.routers.admin.deps import actor_label, get_current_superadmin
from medportal.services import rewards as workflow

router = APIRouter(prefix="/rewards", tags=["admin:rewards"])


class RejectRewardRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/pending", response_model=List[PendingRewardView])
def list_pending_rewards(
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return workflow.get_pending_reward_requests(session)


@router.post("/{reward_id}/approve", response_model=RewardRequest)
def approve_reward(
    reward_id: UUID,
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    return workflow.approve_reward_request(session, reward_id, actor_label(admin))


@router.post("/{reward_id}/reject", response_model=RewardRequest)
def reject_reward(
    reward_id: UUID,
    payload: Optional[RejectRewardRequest] = Body(default=None),
    session: Session = Depends(get_session),
    admin: SuperAdminProfile = Depends(get_current_superadmin),
):
    reason = payload.reason if payload else None
    return workflow.reject_reward_request(session, reward_id, actor_label(admin), reason)
