"""
auth/sessions.py -- Server-side sliding-window sessions.

A session is one key in the expiring store:

    session:<session_id>  ->  {"user_id": "...", "role": "user", "remember_me": false}

and one cookie holding session_id. Both are given the same lifetime: the
store TTL and the cookie max_age come from duration_for(remember_me) and
nowhere else. Every validated request re-applies that full duration to both
(the sliding window), so a session lives as long as it keeps being used.

Lifecycle:
    create_session()   -- SET with TTL                    (Created)
    validate_session() -- GET, then EXPIRE on hit         (Active, repeatable)
    delete_session()   -- DEL; or the store's TTL lapses  (Deleted | Expired)

The key exists iff the session is valid. There is no revoked flag.

Failure policy:
  Every store call is wrapped. An exception is logged and turned into None,
  False or a no-op, so an outage reads as "not authenticated" and never as
  "authenticated". Callers never need try/except around this module.

remember_me is stored with the subject. refresh therefore reuses the
duration the session was created with; a remember-me session does not
collapse to 24h on the first navigation.

Layer rule: no imports from api/ or web/. fastapi.Request/Response are used
only for cookie access.
"""

from __future__ import annotations

import json
import logging
import secrets

from fastapi import Request, Response

from auth.models import Session, SessionSubject
from cache.store import ExpiringStore
from core.config import Settings

logger = logging.getLogger("slidingauth.sessions")

_SESSION_ID_BYTES = 32


class SessionManager:
    """Creates, reads, slides and destroys sessions in an injected store.

    Usage:
        manager = SessionManager.from_settings(store, get_settings())
        session_id = manager.create_session(SessionSubject(user_id="...", role="user"))
        session = manager.validate_session(request)   # Session or None
    """

    def __init__(
        self,
        store: ExpiringStore,
        *,
        session_duration: int = 24 * 60 * 60,
        remember_me_duration: int = 30 * 24 * 60 * 60,
        cookie_name: str = "sessionId",
        key_prefix: str = "session:",
        secure_cookies: bool = False,
    ) -> None:
        self.store = store
        self.session_duration = session_duration
        self.remember_me_duration = remember_me_duration
        self.cookie_name = cookie_name
        self.key_prefix = key_prefix
        self.secure_cookies = secure_cookies

    @classmethod
    def from_settings(cls, store: ExpiringStore, settings: Settings) -> "SessionManager":
        return cls(
            store,
            session_duration=settings.session_duration_seconds,
            remember_me_duration=settings.remember_me_duration_seconds,
            cookie_name=settings.session_cookie_name,
            key_prefix=settings.session_key_prefix,
            secure_cookies=settings.secure_cookies,
        )

    def duration_for(self, remember_me: bool) -> int:
        """Seconds of life for a session. Used for BOTH the store TTL and cookie max_age."""
        return self.remember_me_duration if remember_me else self.session_duration

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def create_session(self, subject: SessionSubject, remember_me: bool = False) -> str | None:
        """Store a new session and return its id, or None if the store write failed."""
        session_id = secrets.token_urlsafe(_SESSION_ID_BYTES)
        value = json.dumps({"user_id": subject.user_id, "role": subject.role, "remember_me": bool(remember_me)})
        try:
            self.store.set(self._key(session_id), value, self.duration_for(remember_me))
        except Exception:
            logger.exception("Failed to create session for user %s", subject.user_id)
            return None
        logger.debug("Session created for user %s (remember_me=%s)", subject.user_id, remember_me)
        return session_id

    def get_session(self, session_id: str) -> Session | None:
        """Read a session. Returns None on miss, store error or an unreadable record."""
        try:
            raw = self.store.get(self._key(session_id))
        except Exception:
            logger.exception("Session store read failed")
            return None
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            user_id, role = record["user_id"], record.get("role", "user")
            remember_me = record.get("remember_me", False)
            if not isinstance(user_id, str) or not isinstance(role, str) or not isinstance(remember_me, bool):
                raise TypeError("session record has wrong field types")
        except (ValueError, TypeError, KeyError):
            logger.warning("Discarding unreadable session record")
            return None
        return Session(session_id=session_id, subject=SessionSubject(user_id=user_id, role=role), remember_me=remember_me)

    def refresh_session(self, session_id: str, remember_me: bool = False) -> bool:
        """Slide the expiry to a full duration from now.

        A single EXPIRE: the value is untouched and a missing key is never
        recreated. Returns False when the key is absent or the store failed.
        """
        try:
            return self.store.expire(self._key(session_id), self.duration_for(remember_me))
        except Exception:
            logger.exception("Session refresh failed")
            return False

    def delete_session(self, session_id: str) -> None:
        """Remove a session. Deleting an absent id is a no-op."""
        try:
            self.store.delete(self._key(session_id))
        except Exception:
            logger.exception("Session delete failed")

    # ------------------------------------------------------------------
    # Request-facing
    # ------------------------------------------------------------------

    def get_session_id(self, request: Request) -> str | None:
        return request.cookies.get(self.cookie_name) or None

    def validate_session(self, request: Request) -> Session | None:
        """Return the caller's session and slide its expiry, or None.

        No cookie means no store call at all; a cookie that matches nothing
        behaves exactly the same from the caller's side. A failed refresh
        does not undo a successful read.
        """
        session_id = self.get_session_id(request)
        if not session_id:
            return None
        session = self.get_session(session_id)
        if session is None:
            return None
        if not self.refresh_session(session_id, session.remember_me):
            logger.debug("Session vanished between read and refresh")
        return session

    # ------------------------------------------------------------------
    # Cookies (no store access)
    # ------------------------------------------------------------------

    def set_session_cookie(self, response: Response, session_id: str, remember_me: bool = False) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=session_id,
            max_age=self.duration_for(remember_me),
            httponly=True,
            secure=self.secure_cookies,
            samesite="lax",
            path="/",
        )

    def clear_session_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            httponly=True,
            secure=self.secure_cookies,
            samesite="lax",
            path="/",
        )

    # ------------------------------------------------------------------
    # Composites: store first, then cookie
    # ------------------------------------------------------------------

    def create_session_with_cookie(
        self, response: Response, subject: SessionSubject, remember_me: bool = False
    ) -> str | None:
        """Create a session and set its cookie. No cookie is written if the store write failed."""
        session_id = self.create_session(subject, remember_me)
        if session_id is None:
            return None
        self.set_session_cookie(response, session_id, remember_me)
        return session_id

    def delete_session_with_cookie(
        self, response: Response, request: Request | None = None, session_id: str | None = None
    ) -> None:
        """Delete the session (id given, or read from request) and clear the cookie."""
        if session_id is None and request is not None:
            session_id = self.get_session_id(request)
        if session_id:
            self.delete_session(session_id)
        self.clear_session_cookie(response)
