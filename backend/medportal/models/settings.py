from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlmodel import Field, Session, SQLModel

logger = logging.getLogger(__name__)

REFERRAL_CONFIG_KEY = "referral_rewards_config"


class AppSetting(SQLModel, table=True):
    """Simple key/value system config store (JSON string in value_json).

    Use a small set of well-known keys, e.g. ``referral_rewards_config``.
    """

    key: str = Field(primary_key=True, index=True)
    value_json: str = Field(default='{}')
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ReferralConfiguration(BaseModel):
    """Process-wide referral reward policy, editable by superadmins.

    - referrals_per_reward: confirmed referrals needed for one reward
    - reward_days: subscription days granted per approved reward
    - system_enabled / allow_new_referrals: global kill switches
    - max_rewards_per_doctor: approved-reward cap per doctor (None = unlimited)
    """

    referrals_per_reward: int = PydanticField(default=3, ge=1)
    reward_days: int = PydanticField(default=30, ge=1)
    system_enabled: bool = True
    allow_new_referrals: bool = True
    max_rewards_per_doctor: Optional[int] = PydanticField(default=None, ge=1)
    description: str = "Referral rewards system configuration"
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None


class ReferralConfigurationUpdate(BaseModel):
    """Partial update; only fields that are explicitly set are applied."""

    referrals_per_reward: Optional[int] = PydanticField(default=None, ge=1)
    reward_days: Optional[int] = PydanticField(default=None, ge=1)
    system_enabled: Optional[bool] = None
    allow_new_referrals: Optional[bool] = None
    max_rewards_per_doctor: Optional[int] = PydanticField(default=None, ge=1)
    description: Optional[str] = None


def _is_missing_table_error(exc: Exception) -> bool:
    text = str(exc).lower()
    return (
        "no such table" in text
        or "does not exist" in text
        or "undefined table" in text
    )


def _ensure_appsetting_table(session: Session) -> None:
    bind = session.get_bind()
    if bind is None:
        return
    AppSetting.__table__.create(bind, checkfirst=True)  # type: ignore[attr-defined]


def _write_setting(session: Session, key: str, payload: str) -> AppSetting:
    rec = session.get(AppSetting, key)
    if not rec:
        rec = AppSetting(key=key, value_json=payload)
    else:
        rec.value_json = payload
    rec.updated_at = datetime.utcnow()
    session.add(rec)
    return rec


def save_referral_configuration(session: Session, config: ReferralConfiguration) -> ReferralConfiguration:
    """Persist the configuration into AppSetting row ``referral_rewards_config``."""
    payload = config.model_dump_json()
    try:
        _write_setting(session, REFERRAL_CONFIG_KEY, payload)
        session.commit()
    except (ProgrammingError, OperationalError) as exc:
        session.rollback()
        if not _is_missing_table_error(exc):
            raise
        _ensure_appsetting_table(session)
        _write_setting(session, REFERRAL_CONFIG_KEY, payload)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return config


def load_referral_configuration(session: Session) -> ReferralConfiguration:
    """Load the referral configuration, creating it with defaults on first read.

    A missing settings table is created on the fly. Malformed JSON is logged
    and replaced by defaults. Any other datastore error propagates: silently
    falling back to defaults would re-enable a system a superadmin turned off.
    """
    try:
        rec = session.get(AppSetting, REFERRAL_CONFIG_KEY)
    except (ProgrammingError, OperationalError) as exc:
        session.rollback()
        if not _is_missing_table_error(exc):
            raise
        _ensure_appsetting_table(session)
        rec = None

    if rec is None or not (rec.value_json or "").strip():
        logger.info("[referral_config] No configuration stored; creating defaults")
        return save_referral_configuration(session, ReferralConfiguration(last_updated=datetime.utcnow()))

    try:
        data = json.loads(rec.value_json)
        if not isinstance(data, dict):
            raise ValueError("configuration is not an object")
        return ReferralConfiguration(**data)
    except ValueError as exc:
        logger.warning("[referral_config] Stored configuration is malformed, using defaults: %s", exc)
        return ReferralConfiguration()
