"""
auth/tokens.py -- Self-contained, time-limited password-reset and email-verification tokens.

Wire format (unpadded base64url of compact JSON):
    base64url({"data": JSON(payload), "nonce": hex(32 random bytes), "expiresAt": epoch_ms})

  payload   -- {"subjectId": ..., "email": ...}, JSON-encoded a second time so
               the inner document round-trips byte-for-byte.
  nonce     -- 256 bits from secrets.token_hex(32); makes tokens unguessable.
  expiresAt -- absolute epoch milliseconds. Valid while expiresAt >= now; a
               token expiring exactly now is still valid at that instant.

Nothing is persisted server-side. A token is valid iff it decodes and has not
expired, which means an issued token cannot be revoked before it expires.

Signing:
  The default format carries no MAC. The nonce defeats guessing, but anyone
  who knows the format can mint a token for an arbitrary subject. Setting
  TOKEN_SIGNING_KEY adds a "sig" field (HMAC-SHA256 over data, nonce and
  expiresAt) and makes verification require it. That changes the wire
  format, so it is opt-in.

Failure policy:
  verify_token() never raises. Malformed base64, non-canonical base64,
  malformed JSON, missing or mistyped fields, a bad signature and expiry all
  produce TokenResult(valid=False).

Layer rule: no imports from api/, web/, or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
import time
from typing import Callable

from auth.models import TokenPayload, TokenResult
from core.config import Settings

_NONCE_BYTES = 32
_B64URL = re.compile(r"^[A-Za-z0-9_-]+$")
_NONCE = re.compile(rf"^[0-9a-f]{{{_NONCE_BYTES * 2}}}$")
_ENVELOPE_KEYS = {"data", "nonce", "expiresAt"}

_INVALID = TokenResult(valid=False)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dumps(obj: dict) -> str:
    return json.dumps(obj, separators=(",", ":"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(token: str) -> bytes:
    """Decode unpadded base64url, rejecting any non-canonical spelling.

    Re-encoding and comparing catches edits to the trailing padding bits that
    a lenient decoder would silently accept.
    """
    if not isinstance(token, str) or not _B64URL.match(token):
        raise ValueError("not base64url")
    raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
    if _b64url_encode(raw) != token:
        raise ValueError("non-canonical base64url")
    return raw


class TokenCodec:
    """Builds and checks tokens for one purpose (reset or verification).

    Instances differ only in default lifetime and signing key; the wire shape
    is identical. clock returns epoch milliseconds and exists for tests.
    """

    def __init__(
        self,
        ttl_ms: int,
        *,
        signing_key: str = "",
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.ttl_ms = ttl_ms
        self._key = signing_key.encode("utf-8") if signing_key else b""
        self._clock = clock

    def _sign(self, data: str, nonce: str, expires_at: int) -> str:
        message = f"{data}.{nonce}.{expires_at}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def generate_token(self, payload: TokenPayload, ttl_ms: int | None = None) -> str:
        """Return an opaque token carrying payload, valid for ttl_ms (default: the codec's)."""
        lifetime = self.ttl_ms if ttl_ms is None else ttl_ms
        data = _dumps({"subjectId": payload.subject_id, "email": payload.email})
        nonce = secrets.token_hex(_NONCE_BYTES)
        expires_at = self._clock() + lifetime
        envelope: dict = {"data": data, "nonce": nonce, "expiresAt": expires_at}
        if self._key:
            envelope["sig"] = self._sign(data, nonce, expires_at)
        return _b64url_encode(_dumps(envelope).encode("utf-8"))

    def verify_token(self, token: str) -> TokenResult:
        """Return TokenResult(valid=True, payload) for a good token, TokenResult(valid=False) otherwise."""
        try:
            envelope = json.loads(_b64url_decode(token).decode("utf-8"))
            if not isinstance(envelope, dict) or not _ENVELOPE_KEYS <= envelope.keys():
                return _INVALID
            if not envelope.keys() <= _ENVELOPE_KEYS | {"sig"}:
                return _INVALID

            data, nonce, expires_at = envelope["data"], envelope["nonce"], envelope["expiresAt"]
            if not isinstance(data, str) or not isinstance(nonce, str) or not _NONCE.match(nonce):
                return _INVALID
            if isinstance(expires_at, bool) or not isinstance(expires_at, int):
                return _INVALID

            if self._key:
                sig = envelope.get("sig")
                if not isinstance(sig, str) or not hmac.compare_digest(sig, self._sign(data, nonce, expires_at)):
                    return _INVALID

            if expires_at < self._clock():
                return _INVALID

            inner = json.loads(data)
            if not isinstance(inner, dict):
                return _INVALID
            subject_id, email = inner.get("subjectId"), inner.get("email")
            if not isinstance(subject_id, str) or not isinstance(email, str):
                return _INVALID
        except (ValueError, TypeError, RecursionError):
            return _INVALID

        return TokenResult(valid=True, payload=TokenPayload(subject_id=subject_id, email=email))


# ---------------------------------------------------------------------------
# Factories -- one codec per purpose, lifetimes from settings
# ---------------------------------------------------------------------------


def password_reset_codec(settings: Settings) -> TokenCodec:
    """Password-reset tokens: 1 hour by default."""
    return TokenCodec(settings.password_reset_ttl_seconds * 1000, signing_key=settings.token_signing_key)


def email_verification_codec(settings: Settings) -> TokenCodec:
    """Email-verification tokens: 24 hours by default."""
    return TokenCodec(settings.email_verification_ttl_seconds * 1000, signing_key=settings.token_signing_key)
