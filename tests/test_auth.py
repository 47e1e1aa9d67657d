from __future__ import annotations

import pytest

from finboard import models
from finboard.core.config import settings
from finboard.core.deps import get_current_user
from finboard.core.security import (
    CSRF_HEADER,
    create_session,
    sign_csrf_token,
    validate_csrf_token,
    verify_signed_csrf_token,
)
from finboard.main import app


@pytest.fixture()
def real_auth():
    app.dependency_overrides.pop(get_current_user, None)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert app.title == f"{settings.APP_NAME} API"


def test_missing_session_is_rejected(client, real_auth):
    res = client.get("/api/me")
    assert res.status_code == 401
    assert res.json()["detail"] == "Your session expired. Please sign in again."


def test_bearer_token_and_revocation(client, db_session, demo_user, real_auth):
    token = create_session(db_session, demo_user.id)
    headers = {"Authorization": f"Bearer {token}"}

    res = client.get("/api/me", headers=headers)
    assert res.status_code == 200
    assert res.json()["email"] == demo_user.email

    row = db_session.query(models.AuthSession).filter_by(user_id=demo_user.id).one()
    assert row.token_hash != token
    row.revoked_at = models.utcnow_naive()
    db_session.commit()
    assert client.get("/api/me", headers=headers).status_code == 401


def test_session_cookie_is_accepted(client, db_session, demo_user, real_auth):
    token = create_session(db_session, demo_user.id)
    client.cookies.set("finboard_session", token)
    assert client.get("/api/subscription").status_code == 200


def test_validate_csrf_token():
    signed = sign_csrf_token("abc")
    assert validate_csrf_token("abc", signed) is True
    assert validate_csrf_token("abd", signed) is False
    assert validate_csrf_token("abc", "abc.forged") is False
    assert validate_csrf_token(None, signed) is False
    assert validate_csrf_token("abc", None) is False


def test_non_ascii_csrf_values_are_rejected():
    signed = sign_csrf_token("abc")
    assert validate_csrf_token("caf\u00e9", signed) is False
    assert verify_signed_csrf_token("abc.caf\u00e9") is None
    assert validate_csrf_token("abc", "caf\u00e9.sig") is False


def test_csrf_double_submit(client, monkeypatch):
    monkeypatch.setattr(settings, "CSRF_ENABLED", True)

    blocked = client.post("/api/accounts", json={"name": "Savings"})
    assert blocked.status_code == 403
    assert blocked.json()["detail"] == "Security validation failed. Please refresh the page and try again."

    # Safe methods pass without a token
    assert client.get("/api/accounts").status_code == 200

    token = client.get("/api/csrf").json()["csrf_token"]
    assert client.post("/api/accounts", json={"name": "Savings"}, headers={CSRF_HEADER: "wrong"}).status_code == 403
    res = client.post("/api/accounts", json={"name": "Savings"}, headers={CSRF_HEADER: token})
    assert res.status_code == 201


def test_csrf_header_with_non_ascii_bytes(client, monkeypatch):
    monkeypatch.setattr(settings, "CSRF_ENABLED", True)
    client.get("/api/csrf")
    res = client.post(
        "/api/categories",
        json={"name": "Dining", "type": "EXPENSE"},
        headers={CSRF_HEADER: "caf\u00e9".encode("utf-8")},
    )
    assert res.status_code == 403
    assert res.json()["detail"] == "Security validation failed. Please refresh the page and try again."


def test_update_profile(client, demo_user):
    res = client.patch("/api/me", json={"display_name": "Dee", "preferred_currency": "EUR"})
    assert res.status_code == 200
    body = res.json()
    assert body["display_name"] == "Dee"
    assert body["preferred_currency"] == "EUR"

    bad = client.patch("/api/me", json={"preferred_currency": "XYZ"})
    assert bad.status_code == 422
    assert "preferred_currency" in bad.json()["error"]
