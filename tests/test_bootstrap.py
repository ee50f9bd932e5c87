"""
Config, database and auth layers.
"""
from datetime import timedelta

import pytest
from sqlalchemy import text

from marketplace.auth import create_access_token, decode_access_token
from marketplace.config import Settings
from marketplace.database import engine


def test_short_secret_key_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, SECRET_KEY="short")


def test_settings_defaults():
    settings = Settings(_env_file=None, SECRET_KEY="a" * 32)
    assert settings.PAYMENT_RELEASE_DELAY_SECONDS == 5
    assert settings.ALGORITHM == "HS256"


def test_negative_release_delay_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, SECRET_KEY="a" * 32, PAYMENT_RELEASE_DELAY_SECONDS=-1)


def test_foreign_keys_enabled():
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1
        assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1


def test_token_round_trip():
    token = create_access_token({"sub": "creator-1", "is_admin": False})
    payload = decode_access_token(token)
    assert payload["sub"] == "creator-1"
    assert payload["is_admin"] is False
    assert "exp" in payload


def test_invalid_and_expired_tokens_rejected():
    assert decode_access_token("invalid.token.here") is None
    expired = create_access_token({"sub": "creator-1"}, expires_delta=timedelta(seconds=-10))
    assert decode_access_token(expired) is None


def test_missing_token_is_401(client):
    response = client.get("/notifications")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_garbage_token_is_401(client):
    response = client.get("/notifications", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
