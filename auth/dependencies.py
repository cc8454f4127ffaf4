"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session gate middleware (api/main.py) validates the session cookie once
per request, slides its expiry, and leaves the result on
request.state.session. These helpers read that result and turn the session
subject into a fresh User from the user store. Profile fields are never
taken from the session record itself.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Session, User


def current_session(request: Request) -> Session | None:
    """Return the session the middleware validated for this request, if any.

    Falls back to validating here when the middleware did not run (routers
    mounted on a bare app in tests).
    """
    if hasattr(request.state, "session"):
        return request.state.session
    session = request.app.state.session_manager.validate_session(request)
    request.state.session = session
    return session


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None.

    Never raises -- callers that need a hard 401 should use get_current_user().
    A session whose user has since been removed counts as unauthenticated.
    """
    session = current_session(request)
    if session is None:
        return None
    return request.app.state.user_store.get_by_id(session.subject.user_id)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
