"""
core/mailer.py -- Outbound transactional email over SMTP.

send_email() is fire-and-forget from the caller's point of view: it returns an
EmailResult and never raises. Auth routes decide what a failed send means
(forgot-password, for instance, answers the same way regardless).

Dev mode:
  When SMTP_HOST or EMAIL_FROM is unset, nothing is sent. The message is
  logged (recipient redacted, body truncated) and reported as a success so
  local registration and reset flows work without a mail server. The links
  are in the log line.

Transport:
  smtp_use_tls=True  -> plain SMTP + STARTTLS (port 587)
  smtp_use_tls=False -> implicit TLS via SMTP_SSL (port 465)

Layer rule: core/ does not import from api/, web/, auth/, or cache/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from core.config import Settings

logger = logging.getLogger("slidingauth.mailer")

_SMTP_TIMEOUT = 30
_DEV_LOG_BODY_CHARS = 2000


@dataclass(frozen=True)
class EmailResult:
    success: bool
    preview_url: Optional[str] = None
    error: Optional[str] = None


def redact_email(email: str) -> str:
    """Keep enough of an address to correlate log lines without logging PII."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "slidingauth",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))
        return msg

    def _deliver(self, to: str, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=_SMTP_TIMEOUT) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=_SMTP_TIMEOUT) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to, msg.as_string())

    def send_email(self, to: str, subject: str, html: str) -> EmailResult:
        """Send one HTML email. Never raises; failures come back as EmailResult(success=False)."""
        if not self.is_configured:
            logger.info(
                "Email (dev mode, not sent) to=%s subject=%r body=%s",
                redact_email(to),
                subject,
                html[:_DEV_LOG_BODY_CHARS],
            )
            return EmailResult(success=True)

        try:
            self._deliver(to, self._build_message(to, subject, html))
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s@%s: %s", self.smtp_user, self.smtp_host, exc)
            return EmailResult(success=False, error="smtp authentication failed")
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error("Email to %s failed: %s: %s", redact_email(to), type(exc).__name__, exc)
            return EmailResult(success=False, error=type(exc).__name__)

        logger.info("Email sent to=%s subject=%r", redact_email(to), subject)
        return EmailResult(success=True)
