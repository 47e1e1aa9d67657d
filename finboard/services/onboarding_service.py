"""Sample data for a new user's first look at the dashboard."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from finboard import models
from finboard.services.budget_service import BudgetService
from finboard.services.category_service import CategoryService
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import AuthorizationError, handle_db_error
from finboard.utils.dates import get_month_start

logger = logging.getLogger(__name__)

DEFAULT_EXPENSE_CATEGORIES = [
    {"name": "Groceries", "color": "#84cc16"},
    {"name": "Rent", "color": "#ef4444"},
    {"name": "Utilities", "color": "#fde047"},
    {"name": "Transportation", "color": "#38bdf8"},
    {"name": "Dining", "color": "#f97316"},
    {"name": "Entertainment", "color": "#22d3ee"},
]
DEFAULT_INCOME_CATEGORIES = [
    {"name": "Salary", "color": "#1d4ed8"},
    {"name": "Freelance", "color": "#7c3aed"},
    {"name": "Investments", "color": "#14b8a6"},
    {"name": "Other Income", "color": "#0ea5e9"},
]

SAMPLE_GROCERIES = Decimal("85.50")
SAMPLE_SALARY = Decimal("3500.00")
SAMPLE_GROCERIES_BUDGET = Decimal("400.00")


class OnboardingService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def seed_sample_data(self, user: models.User, today: date | None = None) -> dict[str, Any]:
        """Add the default categories, two sample transactions and a groceries budget.

        Everything lands in the user's oldest account, in their preferred
        currency, in one transaction. Existing categories are un-archived and
        an existing groceries budget is left as it is.
        """
        account = (
            self.db.query(models.Account)
            .filter(models.Account.user_id == user.id, models.Account.deleted_at.is_(None))
            .order_by(models.Account.created_at, models.Account.id)
            .first()
        )
        if account is None:
            raise AuthorizationError("No account found. Please create an account first.")

        today = today or models.utcnow_naive().date()
        month = get_month_start(today)
        currency = user.preferred_currency
        items = [{**c, "type": models.TxnType.EXPENSE} for c in DEFAULT_EXPENSE_CATEGORIES] + [
            {**c, "type": models.TxnType.INCOME} for c in DEFAULT_INCOME_CATEGORIES
        ]

        try:
            categories = CategoryService(self.db).upsert_many(user.id, items, recolor=False)
            by_name = {c.name: c for c in categories}
            groceries = by_name["Groceries"]
            salary = by_name["Salary"]

            self.db.add_all(
                [
                    models.Transaction(
                        account_id=account.id,
                        category_id=groceries.id,
                        type=models.TxnType.EXPENSE,
                        amount=SAMPLE_GROCERIES,
                        currency=currency,
                        date=today,
                        month=month,
                        description="Weekly grocery shopping",
                    ),
                    models.Transaction(
                        account_id=account.id,
                        category_id=salary.id,
                        type=models.TxnType.INCOME,
                        amount=SAMPLE_SALARY,
                        currency=currency,
                        date=month,
                        month=month,
                        description="Monthly salary",
                    ),
                ]
            )

            existing = (
                self.db.query(models.Budget)
                .filter(
                    models.Budget.account_id == account.id,
                    models.Budget.category_id == groceries.id,
                    models.Budget.month == month,
                    models.Budget.deleted_at.is_(None),
                )
                .first()
            )
            if existing is None:
                budget = BudgetService(self.db).budget_row(account.id, groceries.id, month)
                budget.planned = SAMPLE_GROCERIES_BUDGET
                budget.currency = currency

            invalidate_dashboard_cache(self.db, user.id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise handle_db_error(
                exc,
                action="seed sample data",
                fallback_message="Unable to create sample data",
                context={"user_id": user.id},
            )

        logger.info("Sample data seeded", extra={"user_id": user.id, "account_id": account.id})
        return {
            "categories_created": len(items),
            "transactions_created": 2,
            "budgets_created": 1,
        }
