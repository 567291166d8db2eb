"""
auth/email.py -- Outbound magic-link and password-reset mail.

Default implementation of the email dispatcher the orchestrator consumes.
SMTP with STARTTLS (or implicit TLS) when smtp_host is configured; otherwise
dev mode: the message is logged at INFO instead of sent. Dev mode logs the
link URL, so never run it against real users.

Any transport failure is raised as EmailDeliveryError. The orchestrator
turns that into EMAIL_SERVICE_ERROR; it never escapes as a 500.

Addresses are redacted (ab***@domain) in every log line.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import quote

from auth.errors import EmailDeliveryError

logger = logging.getLogger("authcore.email")

_SMTP_TIMEOUT_SECONDS = 30


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """SMTP mail sender for link-token emails.

    Usage:
        mailer = EmailService(smtp_host="smtp.example.com", from_email="no-reply@example.com",
                              base_url="https://app.example.com")
        mailer.send_magic_link("bob@x.com", raw_token)   # raises EmailDeliveryError on failure
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "authcore",
        base_url: str = "http://localhost:8000",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    # ------------------------------------------------------------------
    # Dispatcher interface
    # ------------------------------------------------------------------

    def send_magic_link(self, email: str, token: str) -> None:
        link = f"{self.base_url}/auth/magic-link/verify?token={quote(token)}"
        text_body = (
            "Click the link below to sign in. It expires in 15 minutes and can be used once.\n\n"
            f"{link}\n\n"
            "If you did not request this, you can ignore this email."
        )
        html_body = (
            "<p>Click the link below to sign in. It expires in 15 minutes and can be used once.</p>"
            f'<p><a href="{link}">Sign in</a></p>'
            "<p>If you did not request this, you can ignore this email.</p>"
        )
        self._send(email, "Your sign-in link", html_body, text_body)

    def send_password_reset(self, email: str, token: str) -> None:
        link = f"{self.base_url}/auth/password/reset?token={quote(token)}"
        text_body = (
            "Use the link below to choose a new password. It expires in 1 hour and can be used once.\n\n"
            f"{link}\n\n"
            "Resetting your password signs you out of every device."
        )
        html_body = (
            "<p>Use the link below to choose a new password. It expires in 1 hour and can be used once.</p>"
            f'<p><a href="{link}">Reset password</a></p>'
            "<p>Resetting your password signs you out of every device.</p>"
        )
        self._send(email, "Reset your password", html_body, text_body)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if not self.is_configured:
            logger.info("Email dev mode (not sent) to=%s subject=%r\n%s", redact_email(to_email), subject, text_body)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=_SMTP_TIMEOUT_SECONDS) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=_SMTP_TIMEOUT_SECONDS
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed via %s:%d: %s", redact_email(to_email), self.smtp_host, self.smtp_port, exc)
            raise EmailDeliveryError(f"email dispatch failed: {type(exc).__name__}") from exc

        logger.info("Email sent to=%s subject=%r", redact_email(to_email), subject)
