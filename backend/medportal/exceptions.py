"""Domain errors raised by the identity, referral and reward services.

Negative policy outcomes (no access, no entitlement, nothing to redeem) are
return values, not exceptions. Only datastore/auth failures and explicit
precondition violations raise.
"""
from __future__ import annotations

import logging
import traceback
import uuid
from typing import Any, Mapping, Optional

_log = logging.getLogger("medportal.exceptions")


class PortalError(Exception):
    code = "portal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else None


class ResolutionFailed(PortalError):
    """Identity lookup failed because the datastore or auth provider errored."""

    code = "resolution_failed"
    status_code = 503
    retryable = True


class ReferralDisabled(PortalError):
    """A referral or reward operation was blocked by global or per-doctor policy."""

    code = "referral_disabled"
    status_code = 403

    def __init__(self, reason: str) -> None:
        super().__init__(reason, details={"reason": reason})
        self.reason = reason


class InvalidStateTransition(PortalError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, entity: str, entity_id: Any, current: str, attempted: str) -> None:
        super().__init__(
            f"Cannot move {entity} {entity_id} from '{current}' to '{attempted}'",
            details={"entity": entity, "id": str(entity_id), "current": current, "attempted": attempted},
        )
        self.current = current
        self.attempted = attempted


class RewardUnavailable(InvalidStateTransition):
    code = "reward_unavailable"

    def __init__(self, doctor_id: Any, available: int) -> None:
        PortalError.__init__(
            self,
            "No referral rewards are available to request",
            details={"doctor_id": str(doctor_id), "available_rewards": available},
        )
        self.current = "unavailable"
        self.attempted = "pending"


class NotFound(PortalError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", details={"entity": entity, "id": str(entity_id)})


class RewardFulfillmentFailed(PortalError):
    """Subscription extension failed after approval; the approval was rolled back."""

    code = "reward_fulfillment_failed"
    status_code = 502
    retryable = True


class InvalidConfiguration(PortalError):
    code = "invalid_configuration"
    status_code = 422


def audit_conflict_log_only(detail: str, context: Optional[Mapping[str, Any]] = None) -> str:
    """Log a conflict loudly and return the generated debug id without raising.

    Used from the service layer so operators can correlate a rejected state
    transition or a failed reward fulfilment with the request that caused it.
    """
    debug_id = uuid.uuid4().hex
    stack = "\n".join(traceback.format_stack()[:-1])
    ctx_str = "" if context is None else repr(dict(context))
    _log.error(
        "event=conflict_audit debug_id=%s detail=%s context=%s",
        debug_id,
        detail,
        ctx_str,
    )
    _log.error("event=conflict_stack debug_id=%s stack=\n%s", debug_id, stack)
    return debug_id
