from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from finboard import models
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    handle_db_error,
)

logger = logging.getLogger(__name__)

DUPLICATE_NAME_MESSAGE = "An account with this name already exists"


class AccountService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _active(self):
        return self.db.query(models.Account).filter(models.Account.deleted_at.is_(None))

    def get_all(self, *, user_id: int) -> list[models.Account]:
        return self._active().filter(models.Account.user_id == user_id).order_by(models.Account.id).all()

    def get_by_id(self, user_id: int, account_id: int) -> models.Account:
        row = self._active().filter(models.Account.id == account_id).first()
        if not row:
            raise NotFoundError("Account", account_id)
        if row.user_id != user_id:
            raise AuthorizationError("You do not have access to this account")
        return row

    def get_self_account(self, user_id: int) -> Optional[models.Account]:
        return (
            self._active()
            .filter(models.Account.user_id == user_id, models.Account.type == models.AccountType.SELF)
            .order_by(models.Account.id)
            .first()
        )

    def create(self, payload: dict, *, user_id: int) -> models.Account:
        payload["user_id"] = user_id
        row = models.Account(**payload)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise handle_db_error(
                exc,
                action="create account",
                unique_message=DUPLICATE_NAME_MESSAGE,
                context={"user_id": user_id},
            )
        self.db.refresh(row)
        return row

    def update(self, row: models.Account, patch: dict) -> models.Account:
        if not patch:
            return row
        for key, value in patch.items():
            setattr(row, key, value)
        invalidate_dashboard_cache(self.db, row.user_id)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise handle_db_error(
                exc,
                action="update account",
                unique_message=DUPLICATE_NAME_MESSAGE,
                context={"account_id": row.id},
            )
        self.db.refresh(row)
        return row

    def soft_delete(self, account_id: int, user: models.User) -> models.Account:
        """Soft-delete an account, keeping at least one active account per user."""
        row = self._active().filter(models.Account.id == account_id).first()
        if not row:
            raise NotFoundError("Account", account_id)
        if row.user_id != user.id:
            raise AuthorizationError("You do not have access to this account")

        active_count = (
            self.db.query(func.count(models.Account.id))
            .filter(models.Account.user_id == user.id, models.Account.deleted_at.is_(None))
            .scalar()
        )
        if active_count <= 1:
            raise ValidationError("Cannot delete your only account. You must have at least one active account.")

        row.deleted_at = models.utcnow_naive()
        row.deleted_by = user.id
        self.db.commit()
        self.db.refresh(row)
        logger.info("Account soft-deleted", extra={"account_id": row.id, "user_id": user.id})
        return row
