from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from medportal.core.database import get_session
from medportal.models.doctor import Doctor
from medportal.models.referral import RewardRequest
from medportal.routers.deps import get_current_doctor
from medportal.services import rewards as workflow

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/requests", response_model=RewardRequest, status_code=status.HTTP_201_CREATED)
def request_reward(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
):
    return workflow.create_reward_request(session, doctor.id)


@router.get("/requests/me", response_model=List[RewardRequest])
def list_my_reward_requests(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
):
    return workflow.get_doctor_reward_requests(session, doctor.id)
