"""
auth/passwords.py -- Salted scrypt password hashing.

Hash format: hex(scrypt(normalize(password), salt, N=16384, r=8, p=1, dklen=64)).
The salt is stored next to the hash on the user record (not embedded in it),
so hash_password() is a pure function of (password, salt). Parameters match
the stored hashes this module must keep verifying; changing any of them
invalidates every existing credential.

Normalization:
  Passwords are NFD-decomposed, combining marks U+0300..U+036F are dropped,
  and everything outside [a-zA-Z0-9] is removed before hashing. "Héllo!" and
  "Hello" therefore hash identically. This narrows the effective password
  alphabet and is an open product question; it is kept because removing it
  would stop existing users' passwords from verifying.

Failure policy:
  verify_password() fails closed. Malformed input yields False and is never
  raised into the caller's control flow.

Layer rule: no imports from api/, web/, core/, or cache/. auth.store is
referenced for type checking only.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import unicodedata
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("slidingauth.auth.passwords")

_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LENGTH = 64
_SALT_BYTES = 16

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_HEX_HASH = re.compile(rf"^[0-9a-f]{{{_KEY_LENGTH * 2}}}$")


def _normalize(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return _NON_ALNUM.sub("", _COMBINING_MARKS.sub("", decomposed))


def normalize_password(password: str) -> str:
    """Return the hashing input for password.

    For example "Héllö Wörld!" becomes "HelloWorld".
    """
    return _normalize(password)


def generate_salt() -> str:
    """Return a fresh salt: 16 random bytes as hex, filtered to [a-zA-Z0-9].

    Hex is already alphanumeric; the filter keeps salts and passwords on the
    same normalization path.
    """
    return _normalize(secrets.token_hex(_SALT_BYTES))


def hash_password(password: str, salt: str) -> str:
    """Derive the hex scrypt hash of password with salt. Deterministic."""
    return hashlib.scrypt(
        normalize_password(password).encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LENGTH,
    ).hex()


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    """Return True if password hashes to password_hash under salt.

    Any malformed input (non-string values, empty salt, a hash that is not
    128 hex chars) returns False.
    """
    if not isinstance(password, str) or not isinstance(password_hash, str) or not isinstance(salt, str):
        return False
    if not salt or not _HEX_HASH.match(password_hash):
        logger.warning("Rejecting credential check: malformed stored hash or salt")
        return False
    try:
        computed = hash_password(password, salt)
    except (ValueError, MemoryError):
        logger.exception("Password hashing failed")
        return False
    return hmac.compare_digest(computed, password_hash)


# Timing equalization dummy credential.
# Computed once at module load. Login runs verify_password() against it when
# the email is unknown so response time does not reveal which emails exist.
DUMMY_SALT: str = generate_salt()
DUMMY_HASH: str = hash_password("slidingauth-timing-dummy", DUMMY_SALT)


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password login with timing equalization.

    scrypt runs whether or not the email exists, so response time does not
    reveal which accounts exist:
    - Unknown email: verify against DUMMY_HASH (same cost as a real check)
    - Wrong password: verify against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        # Do NOT return before hashing.
        verify_password(password, DUMMY_HASH, DUMMY_SALT)
        return None
    if not verify_password(password, user.password_hash, user.salt):
        return None
    return user


_STRENGTH_RULES = (re.compile(r"[a-z]"), re.compile(r"[A-Z]"), re.compile(r"\d"))
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100


def password_strength_error(password: str) -> str | None:
    """Return why password is too weak for a new credential, or None if it is acceptable.

    Checked on the raw input, before normalization.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be less than {PASSWORD_MAX_LENGTH} characters"
    if not all(rule.search(password) for rule in _STRENGTH_RULES):
        return "Password must contain at least one uppercase letter, one lowercase letter, and one number"
    return None
