"""
tests/test_gate.py -- Unit tests for auth/gate.py (pure redirect policy).

The middleware that feeds the gate is covered in test_auth_redirect.py;
here only the decision table is checked.
"""

from __future__ import annotations

import pytest

from auth.gate import ALLOW, GateDecision, RouteGate


@pytest.fixture()
def gate() -> RouteGate:
    return RouteGate(["/me", "/api/auth/me", "/dashboard/"], ["/auth", "/verify"])


class TestDecisionMatrix:
    @pytest.mark.parametrize(
        "path, authenticated, expected",
        [
            ("/me", False, "/auth/login?callbackUrl=%2Fme"),
            ("/me", True, None),
            ("/auth/login", True, "/"),
            ("/auth/login", False, None),
            ("/verify", True, "/"),
            ("/about", False, None),
            ("/about", True, None),
            ("/", False, None),
            ("/", True, None),
        ],
    )
    def test_matrix(self, gate, path, authenticated, expected) -> None:
        assert gate.evaluate(path, authenticated).redirect_to == expected

    def test_allow_is_allowed(self) -> None:
        assert ALLOW.allowed is True
        assert GateDecision(redirect_to="/").allowed is False


class TestMatching:
    def test_subpaths_are_covered(self, gate) -> None:
        assert gate.is_protected("/me/settings")
        assert gate.is_auth_route("/auth/register")

    def test_shared_prefix_is_not_a_match(self, gate) -> None:
        assert not gate.is_protected("/media")
        assert not gate.is_auth_route("/authors")
        assert not gate.is_auth_route("/verifyx")

    def test_trailing_slash_in_configured_route(self, gate) -> None:
        assert gate.is_protected("/dashboard")
        assert gate.is_protected("/dashboard/reports")

    def test_root_route_matches_only_root(self) -> None:
        gate = RouteGate(["/"], [])
        assert gate.is_protected("/")
        assert not gate.is_protected("/anything")


class TestRedirects:
    def test_callback_url_is_fully_encoded(self, gate) -> None:
        decision = gate.evaluate("/api/auth/me", authenticated=False)
        assert decision.redirect_to == "/auth/login?callbackUrl=%2Fapi%2Fauth%2Fme"

    def test_nested_path_is_encoded(self, gate) -> None:
        assert gate.login_redirect("/me/a b") == "/auth/login?callbackUrl=%2Fme%2Fa%20b"

    def test_custom_login_and_home(self) -> None:
        gate = RouteGate(["/me"], ["/auth"], login_path="/signin", home_path="/dashboard")
        assert gate.evaluate("/me", False).redirect_to == "/signin?callbackUrl=%2Fme"
        assert gate.evaluate("/auth", True).redirect_to == "/dashboard"

    def test_overlap_prefers_sending_signed_in_users_home(self) -> None:
        gate = RouteGate(["/auth/me"], ["/auth"])
        assert gate.evaluate("/auth/me", True).redirect_to == "/"
        assert gate.evaluate("/auth/me", False).redirect_to == "/auth/login?callbackUrl=%2Fauth%2Fme"
