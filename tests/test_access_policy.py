import pytest

from medportal.models.enums import Role
from medportal.services.access_policy import can_access, dashboard_url, login_url, redirect_target

ROLES = [Role.doctor, Role.patient, Role.superadmin]


@pytest.mark.parametrize("role", ROLES)
@pytest.mark.parametrize("required", ROLES)
def test_can_access_is_exact_match(role, required):
    assert can_access(role, required) is (role == required)


def test_superadmin_has_no_implicit_panel_access():
    assert can_access(Role.superadmin, Role.doctor) is False
    assert can_access(Role.superadmin, Role.patient) is False


@pytest.mark.parametrize("role", [None, Role.unknown, "nurse"])
def test_unknown_or_missing_role_never_has_access(role):
    for required in ROLES:
        assert can_access(role, required) is False


def test_can_access_accepts_string_roles():
    assert can_access("doctor", "doctor") is True
    assert can_access("patient", Role.doctor) is False


def test_redirect_target_for_authorized_role_is_panel_dashboard():
    assert redirect_target(Role.doctor, Role.doctor) == "/admin"
    assert redirect_target(Role.patient, Role.patient) == "/paciente/dashboard"
    assert redirect_target(Role.superadmin, Role.superadmin) == "/superadmin"


def test_redirect_target_for_wrong_role_is_login_of_attempted_panel():
    # Never the caller's own dashboard, so two panels can't bounce a user back and forth
    assert redirect_target(Role.patient, Role.doctor) == "/auth/login"
    assert redirect_target(Role.doctor, Role.patient) == "/paciente/login"
    assert redirect_target(Role.doctor, Role.superadmin) == "/auth/login"


def test_redirect_target_for_unmapped_panel_is_home():
    assert redirect_target(Role.doctor, "nurse") == "/"
    assert login_url(None) == "/"
    assert dashboard_url(Role.unknown) == "/"
