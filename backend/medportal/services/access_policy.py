"""Panel access decisions.

Access is an exact match: every role reaches only its own panel. Superadmins
do not implicitly gain the doctor or patient panels.
"""
from __future__ import annotations

from typing import Optional

from medportal.models.enums import Role

HOME_URL = "/"

DASHBOARD_URLS: dict[Role, str] = {
    Role.doctor: "/admin",
    Role.patient: "/paciente/dashboard",
    Role.superadmin: "/superadmin",
}

LOGIN_URLS: dict[Role, str] = {
    Role.doctor: "/auth/login",
    Role.superadmin: "/auth/login",
    Role.patient: "/paciente/login",
}


def _coerce(role: Role | str | None) -> Optional[Role]:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


def can_access(role: Role | str | None, required_role: Role | str | None) -> bool:
    role, required_role = _coerce(role), _coerce(required_role)
    if role is None or required_role is None:
        return False
    if role is Role.unknown or required_role is Role.unknown:
        return False
    return role is required_role


def dashboard_url(role: Role | str | None) -> str:
    return DASHBOARD_URLS.get(_coerce(role), HOME_URL)


def login_url(required_role: Role | str | None) -> str:
    return LOGIN_URLS.get(_coerce(required_role), HOME_URL)


def redirect_target(role: Role | str | None, required_role: Role | str | None) -> str:
    """Where to send a principal that asked for ``required_role``'s panel.

    Authorized principals go to that panel's dashboard. Everyone else goes to
    the login surface of the panel they attempted, never to their own
    dashboard, so two panels can't bounce a user back and forth.
    """
    if can_access(role, required_role):
        return dashboard_url(required_role)
    return login_url(required_role)
