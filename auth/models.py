"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). Stores, the session manager
and routes do the work; these only own shape.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass

USER_ROLES = ("user", "admin")


@dataclass
class User:
    """A registered account as held by the user store.

    password_hash and salt are opaque strings produced by auth.passwords. The
    salt is regenerated on every password change and never shared between users.
    id is a uuid4 hex string assigned by the store on insert.
    """

    name: str
    email: str
    password_hash: str
    salt: str
    role: str = "user"
    email_verified: bool = False
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_public(self) -> dict:
        """Return the record without credential fields, safe for responses."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "emailVerified": self.email_verified,
        }


@dataclass(frozen=True)
class SessionSubject:
    """The principal stored inside a session record.

    Deliberately minimal and immutable: the id to re-fetch the user with and
    the role for coarse authorization. Name, email and verification state are
    always read fresh from the user store so a profile edit is visible on the
    next request without touching the session.
    """

    user_id: str
    role: str = "user"


@dataclass(frozen=True)
class Session:
    """A live session as read back from the store.

    remember_me is persisted with the subject so every refresh re-applies the
    duration the session was created with (and the cookie is re-issued with
    the same max_age).
    """

    session_id: str
    subject: SessionSubject
    remember_me: bool = False


@dataclass(frozen=True)
class TokenPayload:
    """Identity carried inside a password-reset or email-verification token."""

    subject_id: str
    email: str


@dataclass(frozen=True)
class TokenResult:
    """Outcome of token verification. payload is set only when valid is True."""

    valid: bool
    payload: TokenPayload | None = None
