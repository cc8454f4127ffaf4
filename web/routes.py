"""
web/routes.py -- Jinja2 template routes for the slidingauth web pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, session manager, token codecs) but return HTML
instead of JSON. Access control is the session gate middleware's job:
/me is protected, /auth/* and /verify are for signed-out visitors only, so
handlers here do not re-check it except where a page needs the user record.

Routes:
  GET  /             -- home; shows who is signed in, if anyone
  GET  /auth/login   -- login form (signed-out only)
  POST /auth/login   -- handle login, redirect to a safe callbackUrl
  GET  /me           -- profile (protected)
  POST /logout       -- delete session, clear cookie, redirect to login
  GET  /verify       -- verify email from ?token= and show the result (signed-out only)
  GET  /reset        -- new-password form for ?token=
  POST /reset        -- set the new password
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth import accounts
from auth.accounts import AccountError
from auth.dependencies import try_get_current_user
from auth.models import SessionSubject
from auth.passwords import authenticate_user, password_strength_error
from auth.sessions import SessionManager

logger = logging.getLogger("slidingauth.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /auth/login.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid credentials",
    "session_unavailable": "We could not sign you in right now. Please try again.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Prevents open redirects such as ?callbackUrl=https://attacker.com or
    ?callbackUrl=//attacker.com. Backslashes are rejected because browsers
    treat "/\\host" like "//host".
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return "/"


def _login_redirect(error: str, callback_url: Optional[str]) -> RedirectResponse:
    url = f"/auth/login?error={error}"
    target = _safe_next(callback_url)
    if target != "/":
        url += f"&callbackUrl={quote(target, safe='')}"
    return RedirectResponse(url, status_code=302)


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "home.html", {"user": try_get_current_user(request)})


@router.get("/auth/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login form. Signed-in visitors never get here; the gate sends them home."""
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": error_msg,
            "callback_url": _safe_next(request.query_params.get("callbackUrl")),
        },
    )


@router.post("/auth/login")
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    remember_me: bool = Form(False),
    callback_url: Optional[str] = Form(None, alias="callbackUrl"),
) -> RedirectResponse:
    """Handle the login form. Same checks and session setup as POST /api/auth/login."""
    user = authenticate_user(request.app.state.user_store, email, password)
    if user is None:
        return _login_redirect("bad_credentials", callback_url)

    manager: SessionManager = request.app.state.session_manager
    resp = RedirectResponse(_safe_next(callback_url), status_code=302)
    subject = SessionSubject(user_id=user.id, role=user.role)
    if manager.create_session_with_cookie(resp, subject, remember_me=remember_me) is None:
        return _login_redirect("session_unavailable", callback_url)
    resp.headers["Cache-Control"] = "no-store"
    logger.info("Web login: user %s (remember_me=%s)", user.id, remember_me)
    return resp


@router.get("/me", response_class=HTMLResponse)
def profile(request: Request) -> HTMLResponse:
    user = try_get_current_user(request)
    if user is None:
        # Session outlived its user record.
        return RedirectResponse(request.app.state.gate.login_redirect("/me"), status_code=302)
    return templates.TemplateResponse(request, "me.html", {"user": user})


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Delete the session and clear the cookie, then show the login page."""
    resp = RedirectResponse("/auth/login", status_code=302)
    request.app.state.session_manager.delete_session_with_cookie(resp, request=request)
    return resp


@router.get("/verify", response_class=HTMLResponse)
def verify_page(request: Request, token: str = "") -> HTMLResponse:
    """Verify an email address from the link in the verification email."""
    try:
        message = accounts.confirm_email(request.app.state.user_store, request.app.state.verify_tokens, token)
    except AccountError as exc:
        return templates.TemplateResponse(
            request, "verify.html", {"ok": False, "message": exc.message}, status_code=exc.status_code
        )
    return templates.TemplateResponse(request, "verify.html", {"ok": True, "message": message})


@router.get("/reset", response_class=HTMLResponse)
def reset_form(request: Request, token: str = "") -> HTMLResponse:
    return templates.TemplateResponse(request, "reset.html", {"token": token, "error_msg": None, "done": False})


@router.post("/reset", response_class=HTMLResponse)
def reset_post(
    request: Request,
    token: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    """Set a new password. Form errors re-render the form; token errors invite a new link."""
    error_msg = password_strength_error(password)
    if error_msg is None and password != confirm_password:
        error_msg = "Passwords do not match"
    if error_msg:
        return templates.TemplateResponse(
            request, "reset.html", {"token": token, "error_msg": error_msg, "done": False}, status_code=400
        )

    try:
        accounts.reset_password(request.app.state.user_store, request.app.state.reset_tokens, token, password)
    except AccountError as exc:
        return templates.TemplateResponse(
            request, "reset.html", {"token": "", "error_msg": exc.message, "done": False}, status_code=exc.status_code
        )
    return templates.TemplateResponse(request, "reset.html", {"token": "", "error_msg": None, "done": True})
