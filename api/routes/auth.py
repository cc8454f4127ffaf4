"""
api/routes/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/auth/register  -- create account, email a verification link (201)
  POST /api/auth/login     -- email/password login; starts a session + cookie
  POST /api/auth/logout    -- deletes the session, clears the cookie
  GET  /api/auth/me        -- current user, read fresh from the user store
  POST /api/auth/me        -- update name and/or password
  POST /api/auth/forgot    -- email a password-reset link (generic reply always)
  POST /api/auth/reset     -- set a new password with a reset token
  POST /api/auth/verify    -- mark the email verified with a verification token

Security:
  authenticate_user() provides timing equalization -- use it, never inline.
  Login failures return one generic "Invalid credentials" for unknown email
  and wrong password alike.
  /forgot answers identically whether or not the account exists, and whether
  or not the email could be sent.
  Every password write generates a fresh salt.
  Cache-Control: no-store on login and /me responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutResponse,
    MessageResponse,
    ProfileUpdate,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserEnvelope,
    UserResponse,
    VerifyEmailRequest,
)
from auth import accounts
from auth.accounts import AccountError, token_for
from auth.dependencies import get_current_user
from auth.models import SessionSubject, User
from auth.passwords import authenticate_user, generate_salt, hash_password
from auth.sessions import SessionManager
from auth.store import UserStore
from core.email_templates import email_verification_email, password_reset_email

logger = logging.getLogger("slidingauth.api.auth")

# Auth policy:
# - POST /api/auth/register, /login, /logout, /forgot, /reset, /verify: public
# - GET/POST /api/auth/me: requires a session (get_current_user); the gate
#   middleware also redirects unauthenticated requests for it to the login page
router = APIRouter()

_FORGOT_MESSAGE = "If an account with that email exists, a password reset link has been sent."
_DUPLICATE_EMAIL = "It seems you already have an account with this email, did you forget your password?"


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


def _account_error(exc: AccountError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message})


def _user_envelope(user: User) -> dict:
    return UserEnvelope(user=UserResponse.from_user(user)).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201, response_model_exclude_none=True)
def register(request: Request, response: Response, body: RegisterRequest) -> RegisterResponse:
    """Create an account and email a verification link.

    The account is usable immediately; email_verified only records that the
    address was confirmed. A failed send is logged, not surfaced -- the user
    can request another link through /forgot.
    """
    state = request.app.state
    user_store: UserStore = state.user_store

    if user_store.get_by_email(body.email) is not None:
        raise _bad_request("email_taken", _DUPLICATE_EMAIL)

    salt = generate_salt()
    try:
        user = user_store.create_user(
            User(name=body.name, email=body.email, password_hash=hash_password(body.password, salt), salt=salt)
        )
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email.
        raise _bad_request("email_taken", _DUPLICATE_EMAIL)

    token = state.verify_tokens.generate_token(token_for(user))
    link = f"{state.settings.app_base_url}/verify?token={token}"
    html = email_verification_email(user.name, link, state.settings.email_verification_ttl_seconds)
    result = state.mailer.send_email(user.email, "Verify Your Email Address", html)
    if not result.success:
        logger.warning("Verification email for user %s not sent: %s", user.id, result.error)

    if state.settings.auto_login_on_register:
        manager: SessionManager = state.session_manager
        if manager.create_session_with_cookie(response, SessionSubject(user_id=user.id, role=user.role)) is None:
            logger.warning("Auto-login after registration failed for user %s", user.id)

    logger.info("User registered: %s", user.id)
    return RegisterResponse(
        user=UserResponse.from_user(user),
        message="Registration successful. Please check your email to verify your account.",
        demo_preview_url=result.preview_url,
    )


@router.post("/auth/login", response_model=UserEnvelope)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; start a sliding session.

    Uses authenticate_user() which includes timing equalization. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing attack.

    The session is written to the store before the cookie is set. If the
    store is down, no cookie is issued and the client gets 503.
    """
    user = authenticate_user(request.app.state.user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="invalid_credentials", message="Invalid credentials")
            ).model_dump(exclude_none=True),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    manager: SessionManager = request.app.state.session_manager
    resp = JSONResponse(status_code=200, content=_user_envelope(user))
    subject = SessionSubject(user_id=user.id, role=user.role)
    if manager.create_session_with_cookie(resp, subject, remember_me=body.remember_me) is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "session_unavailable", "message": "Could not start a session. Please try again."},
        )
    resp.headers["Cache-Control"] = "no-store"
    logger.info("Login: user %s (remember_me=%s)", user.id, body.remember_me)
    return resp


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the caller's session and clear the cookie. Safe to call when logged out."""
    resp = JSONResponse(content=LogoutResponse().model_dump())
    request.app.state.session_manager.delete_session_with_cookie(resp, request=request)
    return resp


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(response: Response, current_user: User = Depends(get_current_user)) -> UserEnvelope:
    """Return the current user. Fields come from the user store, not the session."""
    response.headers["Cache-Control"] = "no-store"
    return UserEnvelope(user=UserResponse.from_user(current_user))


@router.post("/auth/me", response_model=UserEnvelope)
def update_me(
    request: Request,
    response: Response,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update the current user's name and/or password.

    A password change stores a fresh salt alongside the new hash. The
    session is left alone: it only carries the user id and role.
    """
    fields: dict = {}
    if body.name is not None:
        fields["name"] = body.name
    if body.password is not None:
        salt = generate_salt()
        fields["salt"] = salt
        fields["password_hash"] = hash_password(body.password, salt)

    user = current_user
    if fields:
        updated = request.app.state.user_store.update_user(current_user.id, **fields)
        if updated is None:
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Authentication required."},
            )
        user = updated
        logger.info("Profile updated for user %s (%s)", user.id, ", ".join(sorted(fields)))
    response.headers["Cache-Control"] = "no-store"
    return UserEnvelope(user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# Password reset and email verification
# ---------------------------------------------------------------------------


@router.post("/auth/forgot", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a reset link if the account exists. The reply never says which."""
    state = request.app.state
    user = state.user_store.get_by_email(body.email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return MessageResponse(message=_FORGOT_MESSAGE)

    token = state.reset_tokens.generate_token(token_for(user))
    link = f"{state.settings.app_base_url}/reset?token={token}"
    html = password_reset_email(user.name, link, state.settings.password_reset_ttl_seconds)
    result = state.mailer.send_email(user.email, "Reset Your Password", html)
    if not result.success:
        logger.error("Password reset email for user %s not sent: %s", user.id, result.error)
    return MessageResponse(message=_FORGOT_MESSAGE)


@router.post("/auth/reset", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset token.

    The token must be valid, name an existing user, and carry that user's
    current email -- a reset link stops working once the address changes.
    """
    state = request.app.state
    try:
        accounts.reset_password(state.user_store, state.reset_tokens, body.token, body.password)
    except AccountError as exc:
        raise _account_error(exc)
    return MessageResponse(message="Password has been successfully reset. You can now log in with your new password.")


@router.post("/auth/verify", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    """Mark the token's user as verified. Repeating it is harmless."""
    state = request.app.state
    try:
        message = accounts.confirm_email(state.user_store, state.verify_tokens, body.token)
    except AccountError as exc:
        raise _account_error(exc)
    return MessageResponse(message=message)
