"""Session tokens and CSRF tokens."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from finboard import models
from .config import settings

SESSION_COOKIE = "finboard_session"
CSRF_COOKIE = "finboard_csrf"
CSRF_HEADER = "X-CSRF-Token"
CSRF_TOKEN_BYTES = 32
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
SESSION_TTL = timedelta(days=30)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(db: Session, user_id: int, *, ttl: timedelta = SESSION_TTL) -> str:
    """Persist a new session for ``user_id`` and return the raw bearer token.

    Only the sha256 of the token is stored.
    """
    token = secrets.token_urlsafe(32)
    db.add(
        models.AuthSession(
            user_id=user_id,
            token_hash=hash_token(token),
            expires_at=models.utcnow_naive() + ttl,
        )
    )
    db.commit()
    return token


def _signature(token: str) -> str:
    digest = hmac.new(settings.AUTH_SESSION_SECRET.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(CSRF_TOKEN_BYTES)


def sign_csrf_token(token: str) -> str:
    return f"{token}.{_signature(token)}"


def verify_signed_csrf_token(signed: str | None) -> str | None:
    """Return the raw token when the signature is valid, else None."""
    if not signed:
        return None
    parts = signed.split(".")
    if len(parts) != 2:
        return None
    token, signature = parts
    if not hmac.compare_digest(signature.encode("utf-8"), _signature(token).encode("ascii")):
        return None
    return token


def validate_csrf_token(submitted: str | None, signed_cookie: str | None) -> bool:
    if not submitted:
        return False
    expected = verify_signed_csrf_token(signed_cookie)
    if expected is None:
        return False
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


def session_is_live(expires_at: datetime, revoked_at: datetime | None, now: datetime) -> bool:
    return revoked_at is None and expires_at > now
