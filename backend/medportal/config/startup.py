"""Startup task configuration for the FastAPI application."""
from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI


def run_startup_tasks() -> None:
    """Create missing tables and seed the referral configuration.

    Environment controls:
      SKIP_STARTUP_MIGRATIONS=1 -> skip entirely
    """
    from medportal.core import database
    from medportal.core.logging import get_logger
    from medportal.models.settings import load_referral_configuration

    log = get_logger("medportal.config.startup")

    if (os.getenv("SKIP_STARTUP_MIGRATIONS") or "").lower() in {"1", "true", "yes", "on"}:
        log.warning("[startup] SKIP_STARTUP_MIGRATIONS=1 -> skipping startup tasks")
        return
    database.create_db_and_tables()
    with database.session_scope() as session:
        config = load_referral_configuration(session)
    log.info(
        "[startup] Database ready; referrals %s (%d per reward, %d days)",
        "enabled" if config.system_enabled else "disabled",
        config.referrals_per_reward,
        config.reward_days,
    )


def register_startup(app: FastAPI) -> None:
    """Register startup event handlers with the FastAPI app."""

    @app.on_event("startup")
    def _startup_tasks():  # type: ignore
        run_startup_tasks()
