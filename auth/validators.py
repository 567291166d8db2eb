"""
auth/validators.py -- Default email-format and password-strength rules.

The orchestrator treats these as injected policy; swap them for stricter
ones without touching the flows. Both return a ValidationResult rather than
raising so that every field error can be reported at once.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MAX_EMAIL_LENGTH = 254  # RFC 5321
MAX_LOCAL_PART_LENGTH = 64
MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(
    r"^(?:[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r'|"(?:[\x20\x21\x23-\x5b\x5d-\x7e]|\\[\x20-\x7e])*")'
    r"@(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)
_HAS_DIGIT_RE = re.compile(r"\d")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_email(email: str) -> ValidationResult:
    if not email or not email.strip():
        return ValidationResult(False, ["Email is required"])
    trimmed = email.strip()
    if len(trimmed) > MAX_EMAIL_LENGTH:
        return ValidationResult(False, [f"Email must not exceed {MAX_EMAIL_LENGTH} characters"])

    local_part, sep, domain = trimmed.rpartition("@")
    if not sep or not local_part or not domain:
        return ValidationResult(False, ["Invalid email format"])
    if len(local_part) > MAX_LOCAL_PART_LENGTH:
        return ValidationResult(False, [f"Email local part must not exceed {MAX_LOCAL_PART_LENGTH} characters"])
    if not _EMAIL_RE.match(trimmed):
        return ValidationResult(False, ["Invalid email format"])
    return ValidationResult(True, [])


def validate_password(password: str) -> ValidationResult:
    """At least 8 characters and at least one digit."""
    if not password:
        return ValidationResult(False, ["Password is required"])
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not _HAS_DIGIT_RE.search(password):
        errors.append("Password must contain at least 1 number")
    return ValidationResult(not errors, errors)
