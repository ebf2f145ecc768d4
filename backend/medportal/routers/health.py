import logging
from typing import Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from medportal.core import database as _db
from medportal.models.settings import load_referral_configuration

log = logging.getLogger(__name__)

router = APIRouter()


def _check_db() -> bool:
    try:
        # Resolve the engine at call time; tests swap it out
        with _db.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as exc:
        log.warning("[health] Database check failed: %s", exc)
        return False


def _referral_state() -> str:
    try:
        with _db.session_scope() as session:
            config = load_referral_configuration(session)
    except Exception as exc:
        log.warning("[health] Referral configuration unreadable: %s", exc)
        return "fail"
    return "enabled" if config.system_enabled else "disabled"


@router.get("/api/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/deep")
def health_deep():
    """Database reachability plus the referral system switch, for ops dashboards."""
    db_ok = _check_db()
    body: Dict[str, str] = {"db": "ok" if db_ok else "fail"}
    if db_ok:
        body["referrals"] = _referral_state()
    return JSONResponse(body, status_code=200 if db_ok else 503)
