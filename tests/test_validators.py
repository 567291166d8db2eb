"""Unit tests for auth/validators.py -- default email and password policy."""

import pytest

from auth.validators import validate_email, validate_password


class TestValidateEmail:
    @pytest.mark.parametrize(
        "email",
        ["bob@x.com", "first.last+tag@sub.example.org", "A@X.COM", "o'neil@example.ie"],
    )
    def test_valid(self, email: str) -> None:
        assert validate_email(email).valid

    @pytest.mark.parametrize(
        "email",
        ["plainaddress", "@no-local.com", "no-domain@", "two@@x.com", "dot..dot@x.com", "bob@x", "bob@x.c"],
    )
    def test_invalid_format(self, email: str) -> None:
        result = validate_email(email)
        assert not result.valid
        assert result.errors == ["Invalid email format"]

    def test_required(self) -> None:
        assert validate_email("").errors == ["Email is required"]
        assert validate_email("   ").errors == ["Email is required"]

    def test_too_long(self) -> None:
        email = "a" * 60 + "@" + "b" * 190 + ".com"
        assert len(email) > 254
        assert validate_email(email).errors == ["Email must not exceed 254 characters"]

    def test_local_part_too_long(self) -> None:
        result = validate_email("a" * 65 + "@example.com")
        assert result.errors == ["Email local part must not exceed 64 characters"]


class TestValidatePassword:
    def test_valid(self) -> None:
        assert validate_password("pass1234").valid

    def test_required(self) -> None:
        assert validate_password("").errors == ["Password is required"]

    def test_too_short(self) -> None:
        result = validate_password("ab1")
        assert not result.valid
        assert "Password must be at least 8 characters" in result.errors

    def test_needs_digit(self) -> None:
        result = validate_password("password")
        assert result.errors == ["Password must contain at least 1 number"]

    def test_reports_every_failure(self) -> None:
        assert len(validate_password("abc").errors) == 2
