from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from finboard import models
from finboard.services.account_service import AccountService
from finboard.services.category_service import CategoryService
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import AuthorizationError, NotFoundError
from finboard.utils.dates import get_month_start_from_key
from finboard.utils.money import round_money


class BudgetService:
    """Per-month budgets and monthly income goals."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def budget_row(self, account_id: int, category_id: int, month: date) -> models.Budget:
        """The budget for ``(account, category, month)``, revived or added to the session."""
        row = (
            self.db.query(models.Budget)
            .filter(
                models.Budget.account_id == account_id,
                models.Budget.category_id == category_id,
                models.Budget.month == month,
            )
            .first()
        )
        if row is None:
            row = models.Budget(account_id=account_id, category_id=category_id, month=month)
            self.db.add(row)
        row.deleted_at = None
        return row

    def upsert_budget(self, payload: dict, *, user_id: int) -> models.Budget:
        AccountService(self.db).get_by_id(user_id, payload["account_id"])
        CategoryService(self.db).get(user_id, payload["category_id"])
        month = get_month_start_from_key(payload["month_key"])

        row = self.budget_row(payload["account_id"], payload["category_id"], month)
        row.planned = round_money(payload["planned"])
        row.currency = payload["currency"]
        row.notes = payload.get("notes")
        invalidate_dashboard_cache(self.db, user_id, [month])
        self.db.commit()
        self.db.refresh(row)
        return row

    def create_quick_budget(self, payload: dict, *, user_id: int) -> models.Budget:
        """Onboarding shortcut: set the planned amount, keeping any existing notes."""
        account = (
            self.db.query(models.Account)
            .filter(
                models.Account.id == payload["account_id"],
                models.Account.user_id == user_id,
                models.Account.deleted_at.is_(None),
            )
            .first()
        )
        if account is None:
            raise AuthorizationError("Account not found or access denied", field="account_id")
        category = (
            self.db.query(models.Category)
            .filter(models.Category.id == payload["category_id"], models.Category.user_id == user_id)
            .first()
        )
        if category is None:
            raise AuthorizationError("Category not found or access denied", field="category_id")

        month = get_month_start_from_key(payload["month_key"])
        row = self.budget_row(account.id, category.id, month)
        row.planned = round_money(payload["planned"])
        row.currency = payload["currency"]
        invalidate_dashboard_cache(self.db, user_id, [month])
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_budget(self, budget_id: int, *, user_id: int) -> None:
        row = (
            self.db.query(models.Budget)
            .join(models.Account, models.Account.id == models.Budget.account_id)
            .filter(
                models.Budget.id == budget_id,
                models.Budget.deleted_at.is_(None),
                models.Account.user_id == user_id,
            )
            .first()
        )
        if not row:
            raise NotFoundError("Budget", budget_id)
        row.deleted_at = models.utcnow_naive()
        invalidate_dashboard_cache(self.db, user_id, [row.month])
        self.db.commit()

    def upsert_income_goal(self, payload: dict, *, user_id: int) -> models.MonthlyIncomeGoal:
        AccountService(self.db).get_by_id(user_id, payload["account_id"])
        month = get_month_start_from_key(payload["month_key"])
        row = (
            self.db.query(models.MonthlyIncomeGoal)
            .filter(
                models.MonthlyIncomeGoal.account_id == payload["account_id"],
                models.MonthlyIncomeGoal.month == month,
            )
            .first()
        )
        if row is None:
            row = models.MonthlyIncomeGoal(account_id=payload["account_id"], month=month)
            self.db.add(row)
        row.amount = round_money(payload["amount"])
        row.currency = payload["currency"]
        row.deleted_at = None
        # Later months may carry this goal forward
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_income_goal(self, account_id: int, month_key: str, *, user_id: int) -> None:
        AccountService(self.db).get_by_id(user_id, account_id)
        month = get_month_start_from_key(month_key)
        row = (
            self.db.query(models.MonthlyIncomeGoal)
            .filter(
                models.MonthlyIncomeGoal.account_id == account_id,
                models.MonthlyIncomeGoal.month == month,
                models.MonthlyIncomeGoal.deleted_at.is_(None),
            )
            .first()
        )
        if not row:
            raise NotFoundError("Income goal", account_id)
        row.deleted_at = models.utcnow_naive()
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()
