"""Unit tests for auth/email.py -- SMTP dispatcher and dev-mode fallback."""

import logging
import smtplib

import pytest

from auth.email import EmailService, redact_email
from auth.errors import EmailDeliveryError


class _FailingSMTP:
    def __init__(self, *args, **kwargs) -> None:
        raise smtplib.SMTPConnectError(421, "service not available")


class _RecordingSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None) -> None:
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def starttls(self, context=None) -> None:
        pass

    def login(self, user, password) -> None:
        pass

    def sendmail(self, from_addr, to_addr, message) -> None:
        _RecordingSMTP.sent.append((from_addr, to_addr, message))


def _configured() -> EmailService:
    return EmailService(
        smtp_host="smtp.example.com",
        smtp_user="mailer",
        smtp_password="pw",
        from_email="no-reply@example.com",
        base_url="https://app.example.com/",
    )


class TestRedactEmail:
    def test_redacts_local_part(self) -> None:
        assert redact_email("bobsmith@example.com") == "bo***@example.com"

    def test_not_an_address(self) -> None:
        assert redact_email("nonsense") == "redacted"


class TestDevMode:
    def test_not_configured_logs_instead_of_sending(self, caplog) -> None:
        mailer = EmailService()
        assert mailer.is_configured is False
        with caplog.at_level(logging.INFO, logger="authcore.email"):
            mailer.send_magic_link("bob@x.com", "abc123")
        assert "/auth/magic-link/verify?token=abc123" in caplog.text
        assert "bob@x.com" not in caplog.text


class TestSmtp:
    def test_transport_failure_raises_typed_error(self, monkeypatch) -> None:
        monkeypatch.setattr(smtplib, "SMTP", _FailingSMTP)
        with pytest.raises(EmailDeliveryError):
            _configured().send_password_reset("bob@x.com", "tok")

    def test_reset_link_in_message(self, monkeypatch) -> None:
        _RecordingSMTP.sent = []
        monkeypatch.setattr(smtplib, "SMTP", _RecordingSMTP)
        _configured().send_password_reset("bob@x.com", "tok")
        [(sender, recipient, message)] = _RecordingSMTP.sent
        assert sender == "no-reply@example.com"
        assert recipient == "bob@x.com"
        assert "https://app.example.com/auth/password/reset?token=tok" in message
