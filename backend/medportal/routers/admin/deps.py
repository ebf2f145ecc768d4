from __future__ import annotations

import logging

from fastapi import Depends

from medportal.models.enums import Role
from medportal.models.identity import RoleProfile, SuperAdminProfile
from medportal.routers.deps import require_role

log = logging.getLogger(__name__)

_require_superadmin = require_role(Role.superadmin)


def get_current_superadmin(profile: RoleProfile = Depends(_require_superadmin)) -> SuperAdminProfile:
    """Ensure the requesting principal is on the superadmin allow-list."""
    return profile.profile


def actor_label(admin: SuperAdminProfile) -> str:
    """How a superadmin is recorded in ``*_by`` columns."""
    return admin.email or admin.id
