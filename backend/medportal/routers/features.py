from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from medportal.core.database import get_session
from medportal.models.doctor import Doctor
from medportal.routers.deps import get_current_doctor
from medportal.services import entitlements

router = APIRouter(prefix="/features", tags=["features"])


@router.get("")
def list_my_features(
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    return {
        "plan": entitlements.get_doctor_plan_name(session, doctor.id),
        "features": entitlements.get_doctor_features(session, doctor.id),
    }


@router.get("/page")
def check_page(
    path: str = Query(..., description="Admin page path, e.g. /admin/patients"),
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    feature = entitlements.feature_for_page(path)
    return {
        "path": path,
        "feature": feature,
        "allowed": entitlements.can_access_page(session, doctor.id, path),
    }


@router.get("/{feature}")
def check_feature(
    feature: str,
    doctor: Doctor = Depends(get_current_doctor),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    return {
        "feature": feature,
        "allowed": entitlements.has_feature_access(session, doctor.id, feature),
        "required_plan": entitlements.required_plan_for(feature).value,
    }
