"""Tests for core/config.py -- Settings validation.

Settings is constructed directly (not via get_settings) so each test gets a
one-off configuration independent of the cached singleton.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None, debug=False, secret_key="")


def test_debug_generates_secret_key() -> None:
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) == 64


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(_env_file=None, debug=True, secret_key="too-short")


def test_bcrypt_rounds_bounds() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=True, bcrypt_rounds=3)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=True, bcrypt_rounds=32)


def test_delegated_requires_key_and_provider() -> None:
    with pytest.raises(ValidationError, match="DELEGATED_KEY"):
        Settings(_env_file=None, debug=True, token_authority="delegated")
    settings = Settings(
        _env_file=None,
        debug=True,
        token_authority="delegated",
        delegated_provider="corp-idp",
        delegated_key="k" * 32,
    )
    assert settings.delegated_algorithm == "RS256"


def test_unknown_policy_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=True, token_policy="rotate")


def test_env_vars_are_read(monkeypatch) -> None:
    monkeypatch.setenv("SESSION_SLIDING", "true")
    monkeypatch.setenv("SESSION_EXPIRE_SECONDS", "120")
    monkeypatch.setenv("GRANT_BACKEND", "memory")
    settings = Settings(_env_file=None, debug=True)
    assert settings.session_sliding is True
    assert settings.session_expire_seconds == 120
    assert settings.grant_backend == "memory"
