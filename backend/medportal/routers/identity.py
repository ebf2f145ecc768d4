import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from medportal.core.auth import get_current_principal, get_optional_principal
from medportal.core.config import settings
from medportal.core.database import get_session
from medportal.models.doctor import Doctor
from medportal.models.enums import Role
from medportal.models.identity import Principal, RoleProfile
from medportal.routers.deps import get_role_cache, get_role_profile, resolve_for_request
from medportal.services.access_policy import login_url, redirect_target
from medportal.services.entitlements import has_feature_access
from medportal.services.identity import RoleCache
from medportal.services.route_guard import GuardContext, evaluate_route

log = logging.getLogger(__name__)

router = APIRouter(tags=["identity"])


@router.get("/me/role")
def read_my_role(
    profile: RoleProfile = Depends(get_role_profile),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    if profile.doctor_id is not None:
        doctor = session.get(Doctor, profile.doctor_id)
        if doctor is not None:
            profile = RoleProfile.for_doctor(doctor)
    return profile.public()


@router.post("/me/logout")
def logout(
    principal: Principal = Depends(get_current_principal),
    cache: RoleCache = Depends(get_role_cache),
) -> Dict[str, bool]:
    """Forget the cached role so a later sign-in resolves from scratch."""
    cache.invalidate(principal.id)
    return {"ok": True}


@router.get("/access/guard")
def evaluate_guard(
    panel: Role = Query(..., description="Panel the view belongs to"),
    feature: Optional[str] = Query(default=None, description="Feature the view requires"),
    principal: Optional[Principal] = Depends(get_optional_principal),
    session: Session = Depends(get_session),
    cache: RoleCache = Depends(get_role_cache),
) -> Dict[str, Any]:
    role: Optional[Role] = None
    seen_for = 0.0
    doctor_id = None
    if principal is not None:
        profile = resolve_for_request(session, principal, cache)
        role = profile.role
        if not profile.is_known:
            seen_for = cache.seconds_since_first_seen(principal.id)
        doctor_id = profile.doctor_id

    def _gate(name: str) -> bool:
        return doctor_id is not None and has_feature_access(session, doctor_id, name)

    decision = evaluate_route(
        GuardContext(
            required_role=panel,
            principal=principal,
            role=role,
            required_feature=feature,
            seconds_since_principal_seen=seen_for,
        ),
        _gate,
        detect_grace_seconds=settings.ROLE_DETECT_GRACE_SECONDS,
    )
    return decision.as_dict()


@router.get("/access/redirect")
def read_redirect(
    panel: Role = Query(...),
    principal: Optional[Principal] = Depends(get_optional_principal),
    session: Session = Depends(get_session),
    cache: RoleCache = Depends(get_role_cache),
) -> Dict[str, str]:
    if principal is None:
        return {"location": login_url(panel)}
    profile = resolve_for_request(session, principal, cache)
    return {"location": redirect_target(profile.role, panel)}
