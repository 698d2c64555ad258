from __future__ import annotations

import pytest

from identity_sync.auth.clerk import (
    SessionTokenExpired,
    SessionTokenNotConfigured,
    SessionTokenRejected,
    SigningKeysUnavailable,
)
from identity_sync.dependencies import auth as auth_dependency
from identity_sync.models.user import User


@pytest.fixture()
def synced_user(db_session) -> User:
    user = User(subject_id="user_2abc", email="a@b.com", name="A B")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def verify_as(monkeypatch):
    """Stub token verification so a bearer token maps to the given claims or error."""

    def _verify_as(result):
        def _fake(token: str):
            if isinstance(result, Exception):
                raise result
            return result

        monkeypatch.setattr(auth_dependency, "verify_session_token", _fake)

    return _verify_as


def _auth(token: str = "tok") -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_me_returns_synced_record(client, synced_user, verify_as):
    verify_as({"sub": "user_2abc"})

    res = client.get("/api/users/me", headers=_auth())

    assert res.status_code == 200
    data = res.json()
    assert data["id"] == synced_user.id
    assert data["subject_id"] == "user_2abc"
    assert data["email"] == "a@b.com"
    assert data["name"] == "A B"


def test_session_view(client, synced_user, verify_as):
    verify_as({"sub": "user_2abc", "email": "A@B.com", "sid": "sess_1", "exp": 1_800_000_000})

    res = client.get("/api/users/me/session", headers=_auth())

    assert res.status_code == 200
    data = res.json()
    assert data["subject_id"] == "user_2abc"
    assert data["user_id"] == synced_user.id
    assert data["email"] == "a@b.com"
    assert data["session_id"] == "sess_1"
    assert data["expires_at"].startswith("2027-01-15T08:00:00")


def test_session_view_without_optional_claims(client, synced_user, verify_as):
    verify_as({"sub": "user_2abc"})

    data = client.get("/api/users/me/session", headers=_auth()).json()

    assert data["email"] == "a@b.com"
    assert data["session_id"] is None
    assert data["expires_at"] is None


def test_missing_token_is_unauthorized(client):
    res = client.get("/api/users/me")

    assert res.status_code == 401
    assert res.json()["error"] == "UNAUTHORIZED"
    assert res.headers["www-authenticate"] == "Bearer"


def test_unsynced_subject_is_unauthorized(client, db_session, verify_as):
    verify_as({"sub": "user_not_synced"})

    res = client.get("/api/users/me", headers=_auth())

    assert res.status_code == 401
    assert res.json()["message"] == "User not found"


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (SessionTokenExpired("expired"), "Session token has expired"),
        (SessionTokenRejected("signature", "bad"), "Invalid session token"),
    ],
)
def test_rejected_token_is_unauthorized(client, synced_user, verify_as, error, message):
    verify_as(error)

    res = client.get("/api/users/me", headers=_auth())

    assert res.status_code == 401
    assert res.json()["message"] == message


def test_unconfigured_verification_is_server_error(client, verify_as):
    verify_as(SessionTokenNotConfigured("no issuer"))

    res = client.get("/api/users/me", headers=_auth())

    assert res.status_code == 500
    assert res.json()["error"] == "INTERNAL_ERROR"


def test_unreachable_signing_keys_is_service_unavailable(client, verify_as):
    verify_as(SigningKeysUnavailable("jwks down"))

    res = client.get("/api/users/me", headers=_auth())

    assert res.status_code == 503
    assert res.json()["error"] == "SERVICE_UNAVAILABLE"
