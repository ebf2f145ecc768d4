import os
from datetime import datetime, timedelta
from importlib import import_module
from pathlib import Path
from typing import Optional

import pytest

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SKIP_STARTUP_MIGRATIONS", "1")

SUPERADMIN_EMAIL = "admin@medicos-ar.com"


@pytest.fixture(scope="function")
def db_engine(tmp_path: Path):
    """Provide a temporary SQLite engine with the schema created.

    Usage:
    - Inject into tests that touch the DB; the API transparently uses this engine
      via the `medportal.core.database.get_session` dependency.
    - A fresh file-backed SQLite DB is created per test.

    Notes:
    - We patch `medportal.core.database.engine` in-place so every code path that
      goes through the module picks up the new engine.
    """
    from sqlmodel import create_engine
    db_path = tmp_path / "test.db"
    engine_url = f"sqlite:///{db_path.as_posix()}"

    db = import_module("medportal.core.database")
    old_engine = getattr(db, "engine")
    new_engine = create_engine(engine_url, echo=False, connect_args={"check_same_thread": False})
    db.install_engine_listeners(new_engine)
    setattr(db, "engine", new_engine)

    db.create_db_and_tables()

    try:
        yield new_engine
    finally:
        setattr(db, "engine", old_engine)
        new_engine.dispose()


@pytest.fixture(scope="function")
def session(db_engine):
    """Database session bound to the temporary test engine."""
    from sqlmodel import Session as SQLSession
    with SQLSession(db_engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture(scope="function")
def app(db_engine):
    """A fresh FastAPI app (and role cache) wired to the temporary DB engine.

    Example:
        def test_health_ok(client):
            r = client.get("/api/health")
            assert r.status_code == 200
    """
    main = import_module("medportal.main")
    return main.create_app()


@pytest.fixture(scope="function")
def client(app):
    """Synchronous FastAPI TestClient."""
    from fastapi.testclient import TestClient
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a principal.

    Example:
        headers = auth_headers("uid-1", email="doc@example.com")
    """
    from medportal.core.auth import create_principal_token
    from medportal.models.identity import Principal

    def _make(user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> dict:
        token = create_principal_token(Principal(id=user_id, email=email, display_name=name))
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def superadmin_headers(auth_headers):
    return auth_headers("superadmin-uid", email=SUPERADMIN_EMAIL, name="Super Admin")


@pytest.fixture
def make_doctor(session):
    """Insert a doctor row; keyword arguments override any column."""
    from medportal.models.doctor import Doctor

    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        n = counter["n"]
        values = {
            "user_id": f"doctor-uid-{n}",
            "display_name": f"Doctor Number{n}",
            "email": f"doctor{n}@example.com",
            "specialty": "Cardiology",
        }
        values.update(fields)
        doctor = Doctor(**values)
        session.add(doctor)
        session.commit()
        session.refresh(doctor)
        return doctor

    return _make


@pytest.fixture
def make_patient(session):
    from medportal.models.doctor import Patient

    def _make(user_id: str, **fields):
        patient = Patient(user_id=user_id, display_name=fields.pop("display_name", "Patient"), **fields)
        session.add(patient)
        session.commit()
        session.refresh(patient)
        return patient

    return _make


@pytest.fixture
def make_subscription(session):
    """Insert a subscription for a doctor; defaults to an active paid Medium plan for 30 days."""
    from medportal.models.enums import SubscriptionStatus
    from medportal.models.subscription import Subscription

    def _make(doctor, **fields):
        now = datetime.utcnow()
        values = {
            "user_id": doctor.user_id,
            "plan_id": "medium",
            "plan_name": "Plan Medium",
            "price": 15000.0,
            "status": SubscriptionStatus.active,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
        }
        values.update(fields)
        subscription = Subscription(**values)
        session.add(subscription)
        session.commit()
        session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def referral_config(session):
    """Persist a referral configuration with the given overrides and return it."""
    from medportal.models.settings import ReferralConfiguration, save_referral_configuration

    def _set(**overrides):
        return save_referral_configuration(session, ReferralConfiguration(**overrides))

    return _set
