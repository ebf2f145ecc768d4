from medportal.models.enums import GuardAction, GuardState, PlanTier, Role
from medportal.models.identity import Principal
from medportal.services.route_guard import GuardContext, evaluate_route

PRINCIPAL = Principal(id="uid-1", email="doc@example.com")


def _never_called(feature):
    raise AssertionError(f"feature gate consulted for {feature}")


def test_loading_wins_over_everything():
    ctx = GuardContext(required_role=Role.doctor, auth_loading=True, principal=None)
    decision = evaluate_route(ctx, _never_called)
    assert decision.state is GuardState.loading
    assert decision.action is GuardAction.wait
    assert decision.location is None

    ctx = GuardContext(required_role=Role.doctor, principal=PRINCIPAL, role=Role.patient, role_loading=True)
    assert evaluate_route(ctx, _never_called).state is GuardState.loading


def test_unauthenticated_doctor_route_redirects_to_doctor_login():
    decision = evaluate_route(GuardContext(required_role=Role.doctor), _never_called)
    assert decision.state is GuardState.unauthenticated
    assert decision.action is GuardAction.redirect
    assert decision.location == "/auth/login"


def test_unauthenticated_patient_route_redirects_to_patient_login():
    decision = evaluate_route(GuardContext(required_role=Role.patient))
    assert decision.location == "/paciente/login"


def test_unknown_role_is_detecting_within_grace_period():
    ctx = GuardContext(
        required_role=Role.doctor,
        principal=PRINCIPAL,
        role=Role.unknown,
        seconds_since_principal_seen=0.5,
    )
    decision = evaluate_route(ctx, _never_called, detect_grace_seconds=3.0)
    # Never conflated with unauthorized while detection is still in progress
    assert decision.state is GuardState.role_unknown
    assert decision.action is GuardAction.wait


def test_unknown_role_fails_closed_after_grace_period():
    ctx = GuardContext(
        required_role=Role.doctor,
        principal=PRINCIPAL,
        role=None,
        seconds_since_principal_seen=5.0,
    )
    decision = evaluate_route(ctx, _never_called, detect_grace_seconds=3.0)
    assert decision.state is GuardState.fail_closed
    assert decision.location == "/"


def test_wrong_role_redirects_through_attempted_panel_login():
    ctx = GuardContext(required_role=Role.doctor, principal=PRINCIPAL, role=Role.patient, required_feature="patients")
    decision = evaluate_route(ctx, _never_called)
    assert decision.state is GuardState.unauthorized
    assert decision.action is GuardAction.redirect
    assert decision.location == "/auth/login"


def test_missing_feature_renders_restriction_not_redirect():
    ctx = GuardContext(
        required_role=Role.doctor,
        principal=PRINCIPAL,
        role=Role.doctor,
        required_feature="video-consultation",
    )
    decision = evaluate_route(ctx, lambda feature: False)
    assert decision.state is GuardState.restricted
    assert decision.action is GuardAction.restrict
    assert decision.location is None
    assert decision.required_plan is PlanTier.plus
    assert decision.upgrade_path == "/admin/subscription"


def test_feature_gate_without_callable_denies():
    ctx = GuardContext(required_role=Role.doctor, principal=PRINCIPAL, role=Role.doctor, required_feature="patients")
    assert evaluate_route(ctx).state is GuardState.restricted


def test_authorized_renders():
    calls = []

    def gate(feature):
        calls.append(feature)
        return True

    ctx = GuardContext(required_role=Role.doctor, principal=PRINCIPAL, role=Role.doctor, required_feature="patients")
    decision = evaluate_route(ctx, gate)
    assert decision.state is GuardState.authorized
    assert decision.action is GuardAction.render
    assert calls == ["patients"]

    plain = evaluate_route(GuardContext(required_role=Role.patient, principal=PRINCIPAL, role=Role.patient))
    assert plain.state is GuardState.authorized
    assert plain.as_dict()["required_plan"] is None
