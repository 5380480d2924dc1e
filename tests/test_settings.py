"""Tests for startup configuration."""

import dataclasses

import pytest

from settings import load_settings

REQUIRED = {
    "JWT_SECRET": "s" * 40,
    "JWT_ISSUER": "advance-api",
    "JWT_AUDIENCE": "advance-clients",
    "REFRESH_TOKEN_SECRET": "r" * 40,
}


def test_defaults():
    settings = load_settings(REQUIRED)

    assert settings.jwt_algorithm == "HS256"
    assert settings.access_token_minutes == 60
    assert settings.refresh_token_days == 30
    assert settings.database_url.startswith("sqlite+aiosqlite")
    assert settings.notify_require_auth is False
    assert settings.debug is True


@pytest.mark.parametrize("missing", sorted(REQUIRED))
def test_missing_required_value_fails_fast(missing):
    env = {k: v for k, v in REQUIRED.items() if k != missing}

    with pytest.raises(RuntimeError, match=missing):
        load_settings(env)


def test_blank_required_value_fails_fast():
    with pytest.raises(RuntimeError, match="JWT_ISSUER"):
        load_settings({**REQUIRED, "JWT_ISSUER": "   "})


def test_overrides():
    settings = load_settings(
        {
            **REQUIRED,
            "ACCESS_TOKEN_MINUTES": "15",
            "APP_ENV": "production",
            "NOTIFY_REQUIRE_AUTH": "1",
            "CORS_ORIGINS": "https://a.example, https://b.example",
        }
    )

    assert settings.access_token_minutes == 15
    assert settings.debug is False
    assert settings.notify_require_auth is True
    assert settings.cors_origin_list == ["https://a.example", "https://b.example"]


def test_settings_are_immutable():
    settings = load_settings(REQUIRED)

    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.jwt_secret = "other"
