from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from finboard.core.config import settings
from finboard.core.database import get_db
from finboard.core.security import (
    CSRF_COOKIE,
    CSRF_HEADER,
    SESSION_COOKIE,
    hash_token,
    session_is_live,
    validate_csrf_token,
)
from finboard.services.errors import AuthenticationError, AuthorizationError, SubscriptionRequiredError
from finboard.services.subscription_service import can_access_app
from finboard import models

CSRF_FAILURE_MESSAGE = "Security validation failed. Please refresh the page and try again."
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    """Resolve the user behind the bearer token or session cookie.

    Tests override this dependency to act as a specific user.
    """
    token = _extract_token(request)
    if not token:
        raise AuthenticationError()
    row = (
        db.query(models.AuthSession)
        .filter(models.AuthSession.token_hash == hash_token(token))
        .first()
    )
    if not row or not session_is_live(row.expires_at, row.revoked_at, models.utcnow_naive()):
        raise AuthenticationError()
    user = db.get(models.User, row.user_id)
    if not user or user.deleted_at is not None:
        raise AuthenticationError()
    return user


def require_csrf(request: Request) -> None:
    """Double-submit check on state-changing requests.

    The ``X-CSRF-Token`` header must match the signed ``finboard_csrf`` cookie.
    """
    if not settings.CSRF_ENABLED or request.method in SAFE_METHODS:
        return None
    if not validate_csrf_token(request.headers.get(CSRF_HEADER), request.cookies.get(CSRF_COOKIE)):
        raise AuthorizationError(CSRF_FAILURE_MESSAGE)
    return None


def require_active_subscription(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> models.User:
    sub = (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == current_user.id)
        .first()
    )
    if not can_access_app(sub):
        raise SubscriptionRequiredError()
    return current_user
