"""Month dashboard: actuals vs budgets, projections and history.

All inputs are read up front with range/``IN`` queries on the request's
session and every amount is converted in memory through per-month rate
caches. Results are cached in the ``dashboardcache`` table for
``DASHBOARD_CACHE_TTL_SECONDS``.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.orm import Session

from finboard import models
from finboard.core.config import settings
from finboard.services.currency import (
    CurrencyService,
    RateCache,
    build_rate_cache,
    convert_amount_with_cache,
    load_exchange_rate_rows,
    normalize_currency,
)
from finboard.services.errors import NotFoundError, ValidationError
from finboard.services.expense_sharing_service import ExpenseSharingService
from finboard.utils.dates import get_month_key, get_month_start_from_key, shift_month
from finboard.utils.money import money_float, round_money, to_decimal

logger = logging.getLogger(__name__)

HISTORY_MONTHS = 6
HISTORY_ROW_LIMIT = 1000
ZERO = Decimal("0")

TxnType = models.TxnType


# ---- Cache -----------------------------------------------------------------

def dashboard_cache_key(
    user_id: int,
    month_key: str,
    account_id: int | None = None,
    preferred_currency: str | None = None,
) -> str:
    return f"dashboard:{user_id}:{month_key}:{account_id or 'ALL'}:{preferred_currency or 'DEFAULT'}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Unserializable value: {type(value).__name__}")


def invalidate_dashboard_cache(
    db: Session,
    user_id: int,
    months: Iterable[date] | None = None,
) -> int:
    """Drop cached dashboards for a user, optionally only for some months.

    Every account scope of the month goes, since the ALL view covers them all.
    The caller commits.
    """
    q = db.query(models.DashboardCache).filter(models.DashboardCache.user_id == user_id)
    if months is not None:
        month_list = sorted(set(months))
        if not month_list:
            return 0
        q = q.filter(models.DashboardCache.month.in_(month_list))
    return q.delete(synchronize_session=False)


# ---- Aggregation -----------------------------------------------------------

class DashboardService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self._rate_rows: list | None = None
        self._rate_caches: dict[date, RateCache] = {}

    # -- cache --
    def _read_cache(self, key: str) -> dict | None:
        row = (
            self.db.query(models.DashboardCache)
            .filter(models.DashboardCache.cache_key == key)
            .first()
        )
        if not row:
            return None
        age = models.utcnow_naive() - row.fetched_at
        if age > timedelta(seconds=settings.DASHBOARD_CACHE_TTL_SECONDS):
            return None
        return json.loads(row.data)

    def _write_cache(
        self,
        key: str,
        data: dict,
        *,
        user_id: int,
        month_start: date,
        account_id: int | None,
        preferred_currency: str | None,
    ) -> None:
        payload = json.dumps(data, default=_json_default)
        row = (
            self.db.query(models.DashboardCache)
            .filter(models.DashboardCache.cache_key == key)
            .first()
        )
        if row is None:
            row = models.DashboardCache(cache_key=key, user_id=user_id, month=month_start)
            self.db.add(row)
        row.account_id = account_id
        row.preferred_currency = preferred_currency
        row.data = payload
        row.fetched_at = models.utcnow_naive()
        self.db.commit()

    # -- rates --
    def _cache_for_month(self, month_start: date) -> RateCache:
        cache = self._rate_caches.get(month_start)
        if cache is None:
            if self._rate_rows is None:
                self._rate_rows = load_exchange_rate_rows(self.db)
            cache = build_rate_cache(self._rate_rows, month_start)
            self._rate_caches[month_start] = cache
        return cache

    def _convert(self, amount: Any, currency: Any, preferred: str | None, month_start: date) -> Decimal:
        if not preferred:
            return to_decimal(amount)
        return convert_amount_with_cache(amount, currency, preferred, self._cache_for_month(month_start))

    # -- loading --
    def _scope_accounts(self, user_id: int | None, account_id: int | None) -> list[models.Account]:
        q = self.db.query(models.Account).filter(models.Account.deleted_at.is_(None))
        if user_id is not None:
            q = q.filter(models.Account.user_id == user_id)
        accounts = q.order_by(models.Account.id).all()
        if account_id is not None:
            accounts = [a for a in accounts if a.id == account_id]
            if not accounts:
                raise NotFoundError("Account", account_id)
        return accounts

    def _transactions(self, account_ids: list[int], start: date, end: date, limit: int | None = None):
        q = (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.account_id.in_(account_ids),
                models.Transaction.deleted_at.is_(None),
                models.Transaction.date >= start,
                models.Transaction.date < end,
            )
            .order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
        )
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def _income_goal(
        self, account_ids: list[int], month_start: date, preferred: str | None
    ) -> dict | None:
        rows = (
            self.db.query(models.MonthlyIncomeGoal)
            .filter(
                models.MonthlyIncomeGoal.account_id.in_(account_ids),
                models.MonthlyIncomeGoal.deleted_at.is_(None),
                models.MonthlyIncomeGoal.month <= month_start,
            )
            .order_by(models.MonthlyIncomeGoal.month.desc())
            .all()
        )
        # Newest first: the first row seen per account is the month's goal or the carried-forward one
        chosen: dict[int, models.MonthlyIncomeGoal] = {}
        for row in rows:
            chosen.setdefault(row.account_id, row)
        if not chosen:
            return None
        total = ZERO
        for row in chosen.values():
            total += self._convert(row.amount, row.currency, preferred, month_start)
        first = next(iter(chosen.values()))
        return {
            "amount": round_money(total),
            "currency": preferred or first.currency.value,
            "is_default": all(row.month != month_start for row in chosen.values()),
        }

    def get_dashboard_data(
        self,
        month_key: str,
        account_id: int | None = None,
        preferred_currency: str | None = None,
        user_id: int | None = None,
        *,
        use_cache: bool = True,
    ) -> dict[str, Any]:
        try:
            month_start = get_month_start_from_key(month_key)
        except ValueError:
            raise ValidationError.field("month", "Month must be in YYYY-MM format")
        preferred = normalize_currency(preferred_currency) if preferred_currency else None

        cache_key = None
        if use_cache and user_id is not None:
            cache_key = dashboard_cache_key(user_id, month_key, account_id, preferred)
            data = self._read_cache(cache_key)
        else:
            data = None

        if data is None:
            data = self._build(month_start, account_id, preferred, user_id)
            if cache_key is not None:
                self._write_cache(
                    cache_key,
                    data,
                    user_id=user_id,
                    month_start=month_start,
                    account_id=account_id,
                    preferred_currency=preferred,
                )

        if user_id is not None:
            data = {**data, **self._user_sections(user_id)}
        return data

    def _user_sections(self, user_id: int) -> dict[str, Any]:
        """Accounts and expense-sharing state, read on every call.

        Other users change these (sharing, marking shares paid), so they stay
        out of the per-user cache.
        """
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        sharing = ExpenseSharingService(self.db, user)
        return {
            "accounts": [
                {
                    "id": a.id,
                    "user_id": a.user_id,
                    "name": a.name,
                    "type": a.type.value,
                    "preferred_currency": a.preferred_currency.value,
                    "color": a.color,
                    "icon": a.icon,
                    "description": a.description,
                    "created_at": a.created_at,
                }
                for a in self._scope_accounts(user_id, None)
            ],
            "shared_expenses": sharing.get_shared_expenses()["items"],
            "expenses_shared_with_me": sharing.get_expenses_shared_with_me()["items"],
            "settlement_balances": sharing.get_settlement_balance(),
        }

    def _build(
        self,
        month_start: date,
        account_id: int | None,
        preferred: str | None,
        user_id: int | None,
    ) -> dict[str, Any]:
        month_key = get_month_key(month_start)
        next_start = shift_month(month_start, 1)
        prev_start = shift_month(month_start, -1)
        history_start = shift_month(month_start, -(HISTORY_MONTHS - 1))

        accounts = self._scope_accounts(user_id, account_id)
        account_ids = [a.id for a in accounts]
        account_names = {a.id: a.name for a in accounts}
        owner_ids = {a.user_id for a in accounts} if user_id is None else {user_id}

        categories = (
            self.db.query(models.Category)
            .filter(models.Category.user_id.in_(owner_ids))
            .order_by(models.Category.type, models.Category.name)
            .all()
        )
        category_by_id = {c.id: c for c in categories}

        budgets = (
            self.db.query(models.Budget)
            .filter(
                models.Budget.account_id.in_(account_ids),
                models.Budget.month == month_start,
                models.Budget.deleted_at.is_(None),
            )
            .order_by(models.Budget.id)
            .all()
        )
        transactions = self._transactions(account_ids, month_start, next_start)
        previous = self._transactions(account_ids, prev_start, month_start)
        history_rows = self._transactions(account_ids, history_start, next_start, limit=HISTORY_ROW_LIMIT)
        requests = (
            self.db.query(models.TransactionRequest)
            .filter(
                models.TransactionRequest.to_id.in_(account_ids),
                models.TransactionRequest.status == models.RequestStatus.PENDING,
            )
            .order_by(models.TransactionRequest.created_at.desc())
            .all()
        )
        templates = (
            self.db.query(models.RecurringTemplate)
            .filter(models.RecurringTemplate.account_id.in_(account_ids))
            .order_by(models.RecurringTemplate.day_of_month, models.RecurringTemplate.id)
            .all()
        )
        goal = self._income_goal(account_ids, month_start, preferred)

        # Actuals for the month, keyed by (account, category) for budget matching
        actual_income = ZERO
        actual_expense = ZERO
        actuals: dict[tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
        txn_items: list[dict[str, Any]] = []
        for txn in transactions:
            converted = self._convert(txn.amount, txn.currency, preferred, month_start)
            if txn.type == TxnType.INCOME:
                actual_income += converted
            else:
                actual_expense += converted
            actuals[(txn.account_id, txn.category_id)] += converted
            category = category_by_id.get(txn.category_id)
            txn_items.append(
                {
                    "id": txn.id,
                    "account_id": txn.account_id,
                    "category_id": txn.category_id,
                    "type": txn.type.value,
                    "amount": money_float(txn.amount),
                    "currency": txn.currency.value,
                    "date": txn.date,
                    "month": txn.month,
                    "description": txn.description,
                    "is_recurring": txn.is_recurring,
                    "recurring_template_id": txn.recurring_template_id,
                    "is_mutual": txn.is_mutual,
                    "converted_amount": money_float(converted),
                    "display_currency": preferred or txn.currency.value,
                    "account_name": account_names.get(txn.account_id, ""),
                    "category_name": category.name if category else "",
                }
            )

        planned_income = ZERO
        planned_expense = ZERO
        remaining_income = ZERO
        remaining_expense = ZERO
        budget_items: list[dict[str, Any]] = []
        left_categories: list[dict[str, Any]] = []
        for budget in budgets:
            category = category_by_id.get(budget.category_id)
            if category is None:
                continue
            planned = self._convert(budget.planned, budget.currency, preferred, month_start)
            actual = actuals.get((budget.account_id, budget.category_id), ZERO)
            remaining = planned - actual
            if category.type == TxnType.INCOME:
                planned_income += planned
                remaining_income += remaining
            else:
                planned_expense += planned
                remaining_expense += remaining
                left_categories.append(
                    {
                        "category_id": category.id,
                        "name": category.name,
                        "planned": money_float(planned),
                        "actual": money_float(actual),
                        "remaining": money_float(remaining),
                    }
                )
            budget_items.append(
                {
                    "budget_id": budget.id,
                    "account_id": budget.account_id,
                    "account_name": account_names.get(budget.account_id, ""),
                    "category_id": category.id,
                    "category_name": category.name,
                    "category_type": category.type.value,
                    "planned": money_float(planned),
                    "actual": money_float(actual),
                    "remaining": money_float(remaining),
                    "month": month_key,
                }
            )

        actual_net = actual_income - actual_expense
        expected_remaining_income = max(remaining_income, ZERO)
        remaining_budgeted_expense = max(remaining_expense, ZERO)
        projected_net = (actual_income + expected_remaining_income) - (actual_expense + remaining_budgeted_expense)

        recurring_income = ZERO
        for tpl in templates:
            if (
                tpl.type == TxnType.INCOME
                and tpl.is_active
                and tpl.start_month <= month_start
                and (tpl.end_month is None or tpl.end_month >= month_start)
            ):
                recurring_income += self._convert(tpl.amount, tpl.currency, preferred, month_start)

        goal_amount = goal["amount"] if goal else ZERO
        if goal_amount > 0:
            expected_income, income_source = goal_amount, "goal"
        elif recurring_income > 0:
            expected_income, income_source = recurring_income, "recurring"
        elif planned_income > 0:
            expected_income, income_source = planned_income, "budget"
        else:
            expected_income, income_source = ZERO, "none"
        planned_net = expected_income - planned_expense

        previous_net = ZERO
        for txn in previous:
            converted = self._convert(txn.amount, txn.currency, preferred, prev_start)
            previous_net += converted if txn.type == TxnType.INCOME else -converted

        history_buckets: dict[date, list[Decimal]] = {
            shift_month(history_start, i): [ZERO, ZERO] for i in range(HISTORY_MONTHS)
        }
        for txn in history_rows:
            bucket = history_buckets.get(txn.month)
            if bucket is None:
                continue
            converted = self._convert(txn.amount, txn.currency, preferred, txn.month)
            bucket[0 if txn.type == TxnType.INCOME else 1] += converted
        history = [
            {
                "month": get_month_key(month),
                "income": money_float(income),
                "expense": money_float(expense),
                "net": money_float(income - expense),
            }
            for month, (income, expense) in sorted(history_buckets.items())
        ]

        stats = [
            {
                "label": "Saved so far",
                "amount": money_float(actual_net),
                "variant": "positive" if actual_net >= 0 else "negative",
                "helper": "Income minus expenses this month",
                "breakdown": {
                    "type": "net-this-month",
                    "income": money_float(actual_income),
                    "expense": money_float(actual_expense),
                    "net": money_float(actual_net),
                },
            },
            {
                "label": "On track for",
                "amount": money_float(projected_net),
                "variant": "positive" if projected_net >= 0 else "negative",
                "helper": "Where you'll be at month end",
                "breakdown": {
                    "type": "on-track-for",
                    "actual_income": money_float(actual_income),
                    "actual_expense": money_float(actual_expense),
                    "expected_remaining_income": money_float(expected_remaining_income),
                    "remaining_budgeted_expense": money_float(remaining_budgeted_expense),
                    "income_source": income_source,
                    "projected": money_float(projected_net),
                },
            },
            {
                "label": "Left to spend",
                "amount": money_float(remaining_budgeted_expense),
                "variant": "neutral" if remaining_expense <= 0 else "negative",
                "helper": "Budget not yet used",
                "breakdown": {
                    "type": "left-to-spend",
                    "total_planned": money_float(planned_expense),
                    "total_actual": money_float(planned_expense - remaining_expense),
                    "total_remaining": money_float(remaining_expense),
                    "categories": left_categories,
                },
            },
            {
                "label": "Monthly goal",
                "amount": money_float(planned_net),
                "variant": "positive" if planned_net >= 0 else "negative",
                "helper": "Expected income minus budgeted expenses",
                "breakdown": {
                    "type": "monthly-target",
                    "planned_income": money_float(expected_income),
                    "income_source": income_source,
                    "planned_expense": money_float(planned_expense),
                    "target": money_float(planned_net),
                },
            },
        ]

        template_items = [
            {
                "id": tpl.id,
                "account_id": tpl.account_id,
                "account_name": account_names.get(tpl.account_id, ""),
                "category_id": tpl.category_id,
                "category_name": category_by_id[tpl.category_id].name if tpl.category_id in category_by_id else "",
                "type": tpl.type.value,
                "amount": money_float(tpl.amount),
                "currency": tpl.currency.value,
                "description": tpl.description,
                "day_of_month": tpl.day_of_month,
                "is_active": tpl.is_active,
                "start_month_key": get_month_key(tpl.start_month),
                "end_month_key": get_month_key(tpl.end_month) if tpl.end_month else None,
            }
            for tpl in templates
        ]

        request_items = [
            {
                "id": r.id,
                "from_id": r.from_id,
                "to_id": r.to_id,
                "category_id": r.category_id,
                "amount": money_float(r.amount),
                "currency": r.currency.value,
                "date": r.date,
                "description": r.description,
                "status": r.status.value,
            }
            for r in requests
        ]

        category_items = [
            {
                "id": c.id,
                "name": c.name,
                "type": c.type.value,
                "color": c.color,
                "is_holding": c.is_holding,
                "is_archived": c.is_archived,
            }
            for c in categories
            if not c.is_archived
        ]

        return {
            "month": month_key,
            "stats": stats,
            "budgets": budget_items,
            "transactions": txn_items,
            "recurring_templates": template_items,
            "transaction_requests": request_items,
            "categories": category_items,
            "comparison": {
                "previous_month": get_month_key(prev_start),
                "previous_net": money_float(previous_net),
                "change": money_float(actual_net - previous_net),
            },
            "history": history,
            "actual_income": money_float(actual_income),
            "monthly_income_goal": (
                {**goal, "amount": money_float(goal["amount"])} if goal else None
            ),
            "exchange_rate_last_update": CurrencyService(self.db).get_last_update_time(),
            "preferred_currency": preferred,
        }
