"""
auth/gate.py -- Route-class redirect policy applied to every request.

RouteGate is pure: given a path and whether the caller holds a valid
session, it returns what to do. The HTTP middleware in api/main.py runs the
session validation (which is also where the sliding refresh happens) and
then asks the gate.

Rules, first match wins:
  1. authenticated   and path is an auth route      -> redirect home_path
  2. unauthenticated and path is a protected route  -> redirect
                                                       login_path?callbackUrl=<path>
  3. otherwise                                      -> allow

Route matching is by path segment: "/me" covers "/me" and "/me/settings",
not "/media". The two route sets are expected to be disjoint; if they
overlap, rule 1 wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import quote


@dataclass(frozen=True)
class GateDecision:
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


ALLOW = GateDecision()


def _matches(path: str, route: str) -> bool:
    route = route.rstrip("/") or "/"
    if route == "/":
        return path == "/"
    return path == route or path.startswith(route + "/")


class RouteGate:
    def __init__(
        self,
        protected_routes: Iterable[str],
        auth_routes: Iterable[str],
        login_path: str = "/auth/login",
        home_path: str = "/",
    ) -> None:
        self.protected_routes = tuple(protected_routes)
        self.auth_routes = tuple(auth_routes)
        self.login_path = login_path
        self.home_path = home_path

    def is_protected(self, path: str) -> bool:
        return any(_matches(path, r) for r in self.protected_routes)

    def is_auth_route(self, path: str) -> bool:
        return any(_matches(path, r) for r in self.auth_routes)

    def login_redirect(self, path: str) -> str:
        return f"{self.login_path}?callbackUrl={quote(path, safe='')}"

    def evaluate(self, path: str, authenticated: bool) -> GateDecision:
        if authenticated and self.is_auth_route(path):
            return GateDecision(redirect_to=self.home_path)
        if not authenticated and self.is_protected(path):
            return GateDecision(redirect_to=self.login_redirect(path))
        return ALLOW
