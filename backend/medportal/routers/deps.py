"""Request dependencies: role resolution and the role/feature guards."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session

from medportal.core.auth import get_current_principal, get_optional_principal
from medportal.core.config import settings
from medportal.core.database import get_session
from medportal.exceptions import NotFound
from medportal.models.doctor import Doctor
from medportal.models.enums import Role
from medportal.models.identity import Principal, RoleProfile
from medportal.services.access_policy import HOME_URL, can_access, login_url, redirect_target
from medportal.services.entitlements import UPGRADE_PATH, has_feature_access, required_plan_for
from medportal.services.identity import RoleCache, resolve_role_cached

log = logging.getLogger(__name__)


def get_role_cache(request: Request) -> RoleCache:
    cache = getattr(request.app.state, "role_cache", None)
    if cache is None:
        cache = RoleCache(ttl_seconds=settings.ROLE_CACHE_TTL_SECONDS)
        request.app.state.role_cache = cache
    return cache


def resolve_for_request(session: Session, principal: Principal, cache: RoleCache) -> RoleProfile:
    return resolve_role_cached(
        session,
        principal,
        cache,
        settings.superadmin_emails,
        attempts=settings.ROLE_RESOLVE_ATTEMPTS,
        retry_delay=settings.ROLE_RESOLVE_RETRY_SECONDS,
    )


def get_role_profile(
    principal: Principal = Depends(get_current_principal),
    session: Session = Depends(get_session),
    cache: RoleCache = Depends(get_role_cache),
) -> RoleProfile:
    return resolve_for_request(session, principal, cache)


def require_role(required: Role) -> Callable[..., RoleProfile]:
    """Dependency factory: 401 without a principal, 403 for any other role.

    Both errors carry ``redirect_to`` so the UI can follow the same redirect
    rules as the route guard.
    """

    def _require_role(
        principal: Optional[Principal] = Depends(get_optional_principal),
        session: Session = Depends(get_session),
        cache: RoleCache = Depends(get_role_cache),
    ) -> RoleProfile:
        if principal is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "unauthenticated", "message": "Authentication required", "redirect_to": login_url(required)},
                headers={"WWW-Authenticate": "Bearer"},
            )
        profile = resolve_for_request(session, principal, cache)
        if not can_access(profile.role, required):
            target = redirect_target(profile.role, required) if profile.is_known else HOME_URL
            log.info("[guard] principal %s (%s) denied %s panel", principal.id, profile.role.value, required.value)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "unauthorized" if profile.is_known else "role_unknown",
                    "message": f"This resource requires the {required.value} role",
                    "role": profile.role.value,
                    "redirect_to": target,
                },
            )
        return profile

    return _require_role


def get_current_doctor(
    profile: RoleProfile = Depends(require_role(Role.doctor)),
    session: Session = Depends(get_session),
) -> Doctor:
    # Cached profiles are snapshots; counters come from the live row
    doctor = session.get(Doctor, profile.doctor_id)
    if doctor is None:
        raise NotFound("doctor", profile.doctor_id)
    return doctor


def require_feature(feature: str) -> Callable[..., Doctor]:
    """Dependency factory: the current doctor, provided their plan includes ``feature``."""

    def _require_feature(
        doctor: Doctor = Depends(get_current_doctor),
        session: Session = Depends(get_session),
    ) -> Doctor:
        if not has_feature_access(session, doctor.id, feature):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "feature_restricted",
                    "message": f"Your plan does not include '{feature}'",
                    "feature": feature,
                    "required_plan": required_plan_for(feature).value,
                    "upgrade_path": UPGRADE_PATH,
                },
            )
        return doctor

    return _require_feature
