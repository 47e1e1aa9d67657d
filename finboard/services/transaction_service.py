from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from finboard import models
from finboard.services.account_service import AccountService
from finboard.services.category_service import CategoryService
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import AuthorizationError, NotFoundError, ValidationError
from finboard.utils.dates import get_month_start, get_month_start_from_key, shift_month
from finboard.utils.money import round_money

logger = logging.getLogger(__name__)

BALANCE_CATEGORY_NAME = "Balance Adjustment"
BALANCE_DESCRIPTION = "Balance adjustment"
BALANCE_TOLERANCE = Decimal("0.01")


class TransactionService:
    """Transactions, transfer requests between users, and balance adjustments."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.accounts = AccountService(db)
        self.categories = CategoryService(db)

    # ---- Transactions ----------------------------------------------------
    def _active(self):
        return self.db.query(models.Transaction).filter(models.Transaction.deleted_at.is_(None))

    def get_all(
        self,
        *,
        user_id: int,
        month_key: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> list[models.Transaction]:
        q = (
            self._active()
            .join(models.Account, models.Account.id == models.Transaction.account_id)
            .filter(models.Account.user_id == user_id, models.Account.deleted_at.is_(None))
        )
        if month_key:
            q = q.filter(models.Transaction.month == get_month_start_from_key(month_key))
        if account_id is not None:
            q = q.filter(models.Transaction.account_id == account_id)
        return q.order_by(models.Transaction.date.desc(), models.Transaction.id.desc()).all()

    def get(self, user_id: int, txn_id: int) -> models.Transaction:
        row = (
            self._active()
            .join(models.Account, models.Account.id == models.Transaction.account_id)
            .filter(models.Transaction.id == txn_id, models.Account.user_id == user_id)
            .first()
        )
        if not row:
            raise NotFoundError("Transaction", txn_id, "Transaction not found")
        return row

    def _check_refs(self, user_id: int, account_id: int, category_id: int) -> None:
        self.accounts.get_by_id(user_id, account_id)
        self.categories.get(user_id, category_id)

    def _ensure_template(self, payload: dict) -> Optional[int]:
        """Create a template for a recurring transaction that has none. Does not commit."""
        if not payload.get("is_recurring") or payload.get("recurring_template_id"):
            return payload.get("recurring_template_id")
        txn_date: date = payload["date"]
        template = models.RecurringTemplate(
            account_id=payload["account_id"],
            category_id=payload["category_id"],
            type=payload["type"],
            amount=round_money(payload["amount"]),
            currency=payload["currency"],
            day_of_month=txn_date.day,
            description=payload.get("description"),
            start_month=get_month_start(txn_date),
            is_active=True,
        )
        self.db.add(template)
        self.db.flush()
        return template.id

    def create(self, payload: dict, *, user_id: int) -> models.Transaction:
        self._check_refs(user_id, payload["account_id"], payload["category_id"])
        try:
            payload["recurring_template_id"] = self._ensure_template(payload)
            row = models.Transaction(
                **{**payload, "amount": round_money(payload["amount"]), "month": get_month_start(payload["date"])}
            )
            self.db.add(row)
            invalidate_dashboard_cache(self.db, user_id, [row.month])
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row

    def update(self, txn_id: int, payload: dict, *, user_id: int) -> models.Transaction:
        self._check_refs(user_id, payload["account_id"], payload["category_id"])
        try:
            # Re-read inside the unit of work so a concurrent delete is seen
            row = self.get(user_id, txn_id)
            old_month = row.month
            payload["recurring_template_id"] = self._ensure_template(payload)
            for key, value in payload.items():
                setattr(row, key, value)
            row.amount = round_money(payload["amount"])
            row.month = get_month_start(payload["date"])
            invalidate_dashboard_cache(self.db, user_id, [old_month, row.month])
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row

    def delete(self, txn_id: int, *, user_id: int) -> None:
        row = self.get(user_id, txn_id)
        row.deleted_at = models.utcnow_naive()
        invalidate_dashboard_cache(self.db, user_id, [row.month])
        self.db.commit()

    # ---- Transfer requests ----------------------------------------------
    def create_request(self, payload: dict, *, user_id: int) -> models.TransactionRequest:
        from_account = self.accounts.get_self_account(user_id)
        if from_account is None:
            raise ValidationError("Unable to identify your primary account")
        to_account = (
            self.db.query(models.Account)
            .filter(models.Account.id == payload["to_id"], models.Account.deleted_at.is_(None))
            .first()
        )
        if to_account is None:
            raise NotFoundError("Account", payload["to_id"])
        if to_account.id == from_account.id:
            raise ValidationError.field("to_id", "Choose a different account for the request")
        self.categories.get(user_id, payload["category_id"])

        row = models.TransactionRequest(
            from_id=from_account.id,
            to_id=to_account.id,
            category_id=payload["category_id"],
            amount=round_money(payload["amount"]),
            currency=payload["currency"],
            date=payload["date"],
            description=payload.get("description"),
            status=models.RequestStatus.PENDING,
        )
        self.db.add(row)
        # Pending requests show on every month of the recipient's dashboard
        invalidate_dashboard_cache(self.db, to_account.user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    def _request_for_recipient(self, request_id: int, user_id: int) -> models.TransactionRequest:
        row = self.db.get(models.TransactionRequest, request_id)
        if row is None:
            raise NotFoundError("TransactionRequest", request_id, "Transaction request not found")
        if row.to_account is None or row.to_account.user_id != user_id:
            raise AuthorizationError("You do not have access to this transaction request")
        if row.status != models.RequestStatus.PENDING:
            raise ValidationError.field("status", f"Request is already {row.status.value.lower()}")
        return row

    def approve_request(self, request_id: int, *, user_id: int) -> models.TransactionRequest:
        """Approve a pending request and book the expense on the recipient's account."""
        try:
            row = self._request_for_recipient(request_id, user_id)
            row.status = models.RequestStatus.APPROVED
            month = get_month_start(row.date)
            self.db.add(
                models.Transaction(
                    account_id=row.to_id,
                    category_id=row.category_id,
                    type=models.TxnType.EXPENSE,
                    amount=row.amount,
                    currency=row.currency,
                    date=row.date,
                    month=month,
                    description=row.description,
                )
            )
            invalidate_dashboard_cache(self.db, user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row

    def reject_request(self, request_id: int, *, user_id: int) -> models.TransactionRequest:
        row = self._request_for_recipient(request_id, user_id)
        row.status = models.RequestStatus.REJECTED
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    # ---- Balance adjustment ----------------------------------------------
    def month_net(self, account_id: int, month_start: date) -> Decimal:
        signed = case(
            (models.Transaction.type == models.TxnType.INCOME, models.Transaction.amount),
            else_=-models.Transaction.amount,
        )
        total = (
            self.db.query(func.coalesce(func.sum(signed), 0))
            .filter(
                models.Transaction.account_id == account_id,
                models.Transaction.deleted_at.is_(None),
                models.Transaction.date >= month_start,
                models.Transaction.date < shift_month(month_start, 1),
            )
            .scalar()
        )
        return round_money(total)

    def set_balance(
        self,
        account_id: int,
        target_balance: float | Decimal,
        currency: models.Currency,
        month_key: str,
        *,
        user_id: int,
    ) -> dict:
        """Book one transaction that moves the month's net to ``target_balance``.

        Returns ``{"adjustment": amount, "transaction_id": id or None}``.
        """
        account = self.accounts.get_by_id(user_id, account_id)
        month_start = get_month_start_from_key(month_key)
        adjustment = round_money(target_balance) - self.month_net(account.id, month_start)
        if abs(adjustment) < BALANCE_TOLERANCE:
            return {"adjustment": Decimal("0"), "transaction_id": None}

        try:
            category = self.categories.find_or_create(user_id, BALANCE_CATEGORY_NAME, models.TxnType.INCOME)
            row = models.Transaction(
                account_id=account.id,
                category_id=category.id,
                type=models.TxnType.INCOME if adjustment > 0 else models.TxnType.EXPENSE,
                amount=abs(adjustment),
                currency=currency,
                date=month_start,
                month=month_start,
                description=BALANCE_DESCRIPTION,
            )
            self.db.add(row)
            invalidate_dashboard_cache(self.db, user_id, [month_start])
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Balance adjusted", extra={"account_id": account.id, "adjustment": str(adjustment)})
        return {"adjustment": adjustment, "transaction_id": row.id}
