"""
auth/accounts.py -- Token-driven account changes shared by the API and web layers.

confirm_email() and reset_password() are the only code paths that act on a
verification or reset token. Both layers call them and translate AccountError
into their own shape (JSON envelope or rendered page), so the checks below
live in exactly one place:

  1. the token decodes and has not expired,
  2. it names a user that still exists,
  3. the email inside it is that user's current email.

A token minted before an email change therefore stops working.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from auth.models import TokenPayload, User
from auth.passwords import generate_salt, hash_password
from auth.store import UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("slidingauth.accounts")

RESET_LINK_HINT = "Please request a new password reset link."


class AccountError(Exception):
    """A token-driven change was refused. message is safe to show the user."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def confirm_email(user_store: UserStore, codec: TokenCodec, token: str) -> str:
    """Mark the token's user verified and return the outcome message.

    Idempotent: an already-verified user gets "Email already verified".
    """
    result = codec.verify_token(token)
    if not result.valid:
        raise AccountError(400, "invalid_token", "Invalid or expired verification token")

    user = user_store.get_by_id(result.payload.subject_id)
    if user is None:
        raise AccountError(404, "not_found", "User not found")
    if user.email != result.payload.email:
        raise AccountError(400, "invalid_token", "Email mismatch in verification token")
    if user.email_verified:
        return "Email already verified"

    user_store.update_user(user.id, email_verified=True)
    logger.info("Email verified for user %s", user.id)
    return "Email verified successfully"


def reset_password(user_store: UserStore, codec: TokenCodec, token: str, new_password: str) -> User:
    """Replace the token user's password, with a fresh salt. Returns the updated user."""
    result = codec.verify_token(token)
    if not result.valid:
        raise AccountError(400, "invalid_token", f"Invalid or expired reset token. {RESET_LINK_HINT}")

    user = user_store.get_by_id(result.payload.subject_id)
    if user is None:
        raise AccountError(400, "invalid_token", f"User not found. {RESET_LINK_HINT}")
    if user.email != result.payload.email:
        raise AccountError(400, "invalid_token", f"Invalid reset token. {RESET_LINK_HINT}")

    salt = generate_salt()
    updated = user_store.update_user(user.id, password_hash=hash_password(new_password, salt), salt=salt)
    if updated is None:
        raise AccountError(400, "invalid_token", f"User not found. {RESET_LINK_HINT}")
    logger.info("Password reset for user %s", user.id)
    return updated


def token_for(user: User) -> TokenPayload:
    return TokenPayload(subject_id=user.id, email=user.email)
