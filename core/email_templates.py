"""
core/email_templates.py -- HTML bodies for transactional emails.

Rendered with Jinja2 and autoescaping on, so a user-chosen display name such
as "<script>" reaches the inbox as text. Links are built by the caller from
APP_BASE_URL and a token; tokens are base64url and need no escaping.
"""

from __future__ import annotations

from jinja2 import DictLoader, Environment, select_autoescape

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  {% block body %}{% endblock %}
  <p>Thank you,<br/>The {{ app_name }} team</p>
</div>
"""

_PASSWORD_RESET = """\
{% extends "layout.html" %}
{% block body %}
  <h2>Password Reset Request</h2>
  <p>Hello {{ name }},</p>
  <p>We received a request to reset your password. If you didn't make this request, you can ignore this email.</p>
  <p>To reset your password, click the link below:</p>
  <p><a href="{{ link }}" style="display: inline-block; padding: 10px 20px; background-color: #3b82f6; color: white; text-decoration: none; border-radius: 4px;">Reset Password</a></p>
  <p>This link will expire in {{ expires_in }}.</p>
{% endblock %}
"""

_EMAIL_VERIFICATION = """\
{% extends "layout.html" %}
{% block body %}
  <h2>Email Verification Required</h2>
  <p>Hello {{ name }},</p>
  <p>Thank you for signing up! To complete your registration, please verify your email address by clicking the link below:</p>
  <p><a href="{{ link }}" style="display: inline-block; padding: 10px 20px; background-color: #3b82f6; color: white; text-decoration: none; border-radius: 4px;">Verify Email</a></p>
  <p>This link will expire in {{ expires_in }}.</p>
{% endblock %}
"""

_env = Environment(
    loader=DictLoader(
        {
            "layout.html": _LAYOUT,
            "password_reset.html": _PASSWORD_RESET,
            "email_verification.html": _EMAIL_VERIFICATION,
        }
    ),
    autoescape=select_autoescape(default=True, default_for_string=True),
)


def _humanize(seconds: int) -> str:
    if seconds % 86400 == 0:
        days = seconds // 86400
        return f"{days} day" if days == 1 else f"{days} days"
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, seconds // 60)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def password_reset_email(name: str, link: str, ttl_seconds: int, app_name: str = "slidingauth") -> str:
    return _env.get_template("password_reset.html").render(
        name=name or "there", link=link, expires_in=_humanize(ttl_seconds), app_name=app_name
    )


def email_verification_email(name: str, link: str, ttl_seconds: int, app_name: str = "slidingauth") -> str:
    return _env.get_template("email_verification.html").render(
        name=name or "there", link=link, expires_in=_humanize(ttl_seconds), app_name=app_name
    )
