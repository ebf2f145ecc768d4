import traceback
import uuid

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from medportal.core.logging import get_logger
from medportal.exceptions import PortalError

_RETRYABLE_CODES = {
    "internal_error",
    "resolution_failed",
    "reward_fulfillment_failed",
    "service_unavailable",
}

USER_FRIENDLY_MESSAGES = {
    "internal_error": "We're experiencing technical difficulties. Please try again in a moment.",
    "validation_error": "Please check your input and try again.",
    "resolution_failed": "We couldn't verify your account right now. Please try again in a moment.",
    "reward_fulfillment_failed": "The reward could not be applied to the subscription. Please try again.",
}


def error_payload(code: str, message: str, details=None, request: Request | None = None, error_id: str | None = None):
    """Create error payload with user-friendly messages.

    Technical messages are preserved alongside the friendly one so the UI can
    surface either.
    """
    user_message = USER_FRIENDLY_MESSAGES.get(code, message)
    out = {
        "error": {
            "code": code,
            "message": user_message,
            "technical_message": message if user_message != message else None,
            "details": details,
            "retryable": code in _RETRYABLE_CODES,
        }
    }
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        out["error"]["request_id"] = rid
    if error_id:
        out["error"]["error_id"] = error_id
    return out


def install_exception_handlers(app):
    log = get_logger("medportal.exceptions")

    @app.exception_handler(PortalError)
    async def portal_exc_handler(request: Request, exc: PortalError):
        level = log.warning if exc.status_code >= 500 else log.info
        level("%s %s %s -> %s: %s", exc.code, request.method, request.url.path, exc.status_code, exc.message)
        payload = error_payload(exc.code, exc.message, exc.details, request)
        payload["error"]["retryable"] = exc.retryable
        return JSONResponse(payload, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        log.warning("HTTPException %s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
        detail = exc.detail
        code = "http_error"
        if isinstance(detail, dict):
            code = str(detail.get("code") or code)
            message = str(detail.get("message") or detail.get("detail") or "Request failed")
            details = {"status_code": exc.status_code, **detail}
        else:
            message = str(detail)
            details = {"status_code": exc.status_code}
        return JSONResponse(
            error_payload(code, message, details, request),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    @app.exception_handler(ValidationError)
    async def validation_exc_handler(request: Request, exc):
        log.info("ValidationError %s %s", request.method, request.url.path)
        return JSONResponse(
            error_payload("validation_error", "Validation failed", jsonable_errors(exc), request),
            status_code=422,
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        err_id = str(uuid.uuid4())
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log.error("Unhandled exception [%s] %s %s\nTraceback:\n%s", err_id, request.method, request.url.path, tb)
        return JSONResponse(
            error_payload("internal_error", "Something went wrong", None, request, error_id=err_id),
            status_code=500,
        )


def jsonable_errors(exc) -> list:
    errors = exc.errors() if hasattr(exc, "errors") else []
    out = []
    for err in errors:
        item = dict(err)
        # ctx may carry exception instances that JSON can't encode
        if "ctx" in item:
            item["ctx"] = {k: str(v) for k, v in (item["ctx"] or {}).items()}
        item.pop("url", None)
        out.append(item)
    return out
