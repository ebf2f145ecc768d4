"""
Route guard: decides what a protected view does for the current principal.

The checks run in a fixed order (loading, authentication, role detection,
panel access, feature entitlement) and each step only looks at inputs the
earlier steps have already settled. The feature gate is passed as a callable
so it is never consulted for a principal that fails an earlier step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from medportal.models.enums import GuardAction, GuardState, PlanTier, Role
from medportal.models.identity import Principal
from medportal.services.access_policy import HOME_URL, can_access, login_url, redirect_target
from medportal.services.entitlements import UPGRADE_PATH, required_plan_for

log = logging.getLogger(__name__)

DEFAULT_DETECT_GRACE_SECONDS = 3.0


@dataclass(frozen=True)
class GuardContext:
    required_role: Role
    principal: Optional[Principal] = None
    role: Optional[Role] = None
    required_feature: Optional[str] = None
    auth_loading: bool = False
    role_loading: bool = False
    # How long the principal has been known without a resolved role
    seconds_since_principal_seen: float = 0.0


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    action: GuardAction
    location: Optional[str] = None
    feature: Optional[str] = None
    required_plan: Optional[PlanTier] = None
    upgrade_path: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "action": self.action.value,
            "location": self.location,
            "feature": self.feature,
            "required_plan": self.required_plan.value if self.required_plan else None,
            "upgrade_path": self.upgrade_path,
        }


def evaluate_route(
    ctx: GuardContext,
    feature_gate: Optional[Callable[[str], bool]] = None,
    *,
    detect_grace_seconds: float = DEFAULT_DETECT_GRACE_SECONDS,
) -> GuardDecision:
    if ctx.auth_loading or ctx.role_loading:
        return GuardDecision(GuardState.loading, GuardAction.wait)

    if ctx.principal is None:
        return GuardDecision(GuardState.unauthenticated, GuardAction.redirect, location=login_url(ctx.required_role))

    if ctx.role is None or ctx.role is Role.unknown:
        if ctx.seconds_since_principal_seen < detect_grace_seconds:
            return GuardDecision(GuardState.role_unknown, GuardAction.wait)
        log.info(
            "[route_guard] principal %s has no role after %.1fs; failing closed",
            ctx.principal.id, ctx.seconds_since_principal_seen,
        )
        return GuardDecision(GuardState.fail_closed, GuardAction.redirect, location=HOME_URL)

    if not can_access(ctx.role, ctx.required_role):
        return GuardDecision(
            GuardState.unauthorized,
            GuardAction.redirect,
            location=redirect_target(ctx.role, ctx.required_role),
        )

    if ctx.required_feature:
        allowed = bool(feature_gate(ctx.required_feature)) if feature_gate is not None else False
        if not allowed:
            return GuardDecision(
                GuardState.restricted,
                GuardAction.restrict,
                feature=ctx.required_feature,
                required_plan=required_plan_for(ctx.required_feature),
                upgrade_path=UPGRADE_PATH,
            )

    return GuardDecision(GuardState.authorized, GuardAction.render, feature=ctx.required_feature)
