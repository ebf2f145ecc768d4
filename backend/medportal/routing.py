from __future__ import annotations

import logging

from fastapi import FastAPI

from medportal.routers import admin, features, health, identity, referrals, rewards

log = logging.getLogger(__name__)


def _maybe(app: FastAPI, r, prefix: str = "/api"):
    if r is not None:
        app.include_router(r, prefix=prefix)


def attach_routers(app: FastAPI) -> dict:
    availability: dict = {}

    _maybe(app, health.router, prefix="")  # health router exposes /api/health itself
    availability["health"] = True
    _maybe(app, identity.router)
    availability["identity"] = True
    _maybe(app, features.router)
    availability["features"] = True
    _maybe(app, referrals.router)
    availability["referrals"] = True
    _maybe(app, rewards.router)
    availability["rewards"] = True
    _maybe(app, admin.router)
    availability["admin"] = True

    log.info("[startup] Routers attached: %s", sorted(k for k, v in availability.items() if v))
    return availability
