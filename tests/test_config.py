"""Unit tests for core/config.py -- SECRET_KEY policy and defaults."""

import pytest
from pydantic import ValidationError

from core.config import MIN_SECRET_KEY_LENGTH, Settings
from conftest import TEST_SECRET


class TestSecretKey:
    def test_missing_secret_refused(self, monkeypatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None)

    def test_short_secret_refused(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(secret_key="x" * (MIN_SECRET_KEY_LENGTH - 1), _env_file=None)

    def test_debug_does_not_relax_the_rule(self, monkeypatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(ValidationError):
            Settings(debug=True, _env_file=None)


class TestDefaults:
    def test_lifetimes(self) -> None:
        settings = Settings(secret_key=TEST_SECRET, _env_file=None)
        assert settings.access_token_ttl_seconds == 15 * 60
        assert settings.refresh_token_ttl_days == 7
        assert settings.magic_link_ttl_seconds == 15 * 60
        assert settings.password_reset_ttl_seconds == 60 * 60

    def test_bcrypt_rounds_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(secret_key=TEST_SECRET, bcrypt_rounds=3, _env_file=None)
