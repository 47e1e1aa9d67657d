"""GDPR data export and account deletion."""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Literal

from sqlalchemy import or_
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.rate_limit import RateLimiter, account_deletion_limiter, data_export_limiter
from finboard.services.errors import RateLimitError, ValidationError

logger = logging.getLogger(__name__)

ExportFormat = Literal["json", "csv"]


def escape_csv(value: Any) -> str:
    """Quote a CSV cell, doubling inner quotes and flattening newlines."""
    text = "" if value is None else str(value)
    text = text.replace('"', '""').replace("\r\n", " ").replace("\n", " ")
    return f'"{text}"'


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _num(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _enum(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _check_limit(limiter: RateLimiter, key: str, message: str) -> None:
    result = limiter.check(key)
    if not result.allowed:
        raise RateLimitError(message, retry_after=result.retry_after_seconds)
    limiter.increment(key)


class PrivacyService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ---- Export ----------------------------------------------------------
    def collect_user_data(self, user: models.User) -> dict[str, Any]:
        accounts = (
            self.db.query(models.Account)
            .filter(models.Account.user_id == user.id)
            .order_by(models.Account.id)
            .all()
        )
        account_ids = [a.id for a in accounts]
        categories = (
            self.db.query(models.Category)
            .filter(models.Category.user_id == user.id)
            .order_by(models.Category.id)
            .all()
        )
        subscription = (
            self.db.query(models.Subscription).filter(models.Subscription.user_id == user.id).first()
        )

        def by_accounts(model) -> list:
            if not account_ids:
                return []
            q = self.db.query(model).filter(model.account_id.in_(account_ids))
            if hasattr(model, "deleted_at"):
                q = q.filter(model.deleted_at.is_(None))
            return q.order_by(model.id).all()

        return {
            "exportedAt": _iso(models.utcnow_naive()),
            "user": {
                "id": user.id,
                "email": user.email,
                "displayName": user.display_name,
                "preferredCurrency": _enum(user.preferred_currency),
                "emailVerified": user.email_verified,
                "hasCompletedOnboarding": user.has_completed_onboarding,
                "createdAt": _iso(user.created_at),
            },
            "subscription": (
                {
                    "id": subscription.id,
                    "status": _enum(subscription.status),
                    "trialEndsAt": _iso(subscription.trial_ends_at),
                    "currentPeriodStart": _iso(subscription.current_period_start),
                    "currentPeriodEnd": _iso(subscription.current_period_end),
                    "createdAt": _iso(subscription.created_at),
                }
                if subscription
                else None
            ),
            "accounts": [
                {
                    "id": a.id,
                    "name": a.name,
                    "type": _enum(a.type),
                    "preferredCurrency": _enum(a.preferred_currency),
                    "color": a.color,
                    "icon": a.icon,
                    "description": a.description,
                    "createdAt": _iso(a.created_at),
                }
                for a in accounts
            ],
            "categories": [
                {
                    "id": c.id,
                    "name": c.name,
                    "type": _enum(c.type),
                    "color": c.color,
                    "isHolding": c.is_holding,
                    "isArchived": c.is_archived,
                    "createdAt": _iso(c.created_at),
                }
                for c in categories
            ],
            "transactions": [
                {
                    "id": t.id,
                    "accountId": t.account_id,
                    "categoryId": t.category_id,
                    "type": _enum(t.type),
                    "amount": _num(t.amount),
                    "currency": _enum(t.currency),
                    "date": _iso(t.date),
                    "month": _iso(t.month),
                    "description": t.description,
                    "isRecurring": t.is_recurring,
                    "isMutual": t.is_mutual,
                    "createdAt": _iso(t.created_at),
                }
                for t in by_accounts(models.Transaction)
            ],
            "budgets": [
                {
                    "id": b.id,
                    "accountId": b.account_id,
                    "categoryId": b.category_id,
                    "month": _iso(b.month),
                    "planned": _num(b.planned),
                    "currency": _enum(b.currency),
                    "notes": b.notes,
                    "createdAt": _iso(b.created_at),
                }
                for b in by_accounts(models.Budget)
            ],
            "holdings": [
                {
                    "id": h.id,
                    "accountId": h.account_id,
                    "categoryId": h.category_id,
                    "symbol": h.symbol,
                    "quantity": _num(h.quantity),
                    "averageCost": _num(h.average_cost),
                    "currency": _enum(h.currency),
                    "notes": h.notes,
                    "createdAt": _iso(h.created_at),
                }
                for h in by_accounts(models.Holding)
            ],
            "recurringTemplates": [
                {
                    "id": r.id,
                    "accountId": r.account_id,
                    "categoryId": r.category_id,
                    "type": _enum(r.type),
                    "amount": _num(r.amount),
                    "currency": _enum(r.currency),
                    "dayOfMonth": r.day_of_month,
                    "description": r.description,
                    "isActive": r.is_active,
                    "startMonth": _iso(r.start_month),
                    "endMonth": _iso(r.end_month),
                    "createdAt": _iso(r.created_at),
                }
                for r in by_accounts(models.RecurringTemplate)
            ],
        }

    def export_user_data(self, user: models.User, format: ExportFormat = "json") -> dict[str, Any]:
        """Return ``{"format": ..., "data": ...}``; CSV data is one text document."""
        _check_limit(
            data_export_limiter,
            f"export:{user.id}",
            "Too many export requests. Please try again later.",
        )
        data = self.collect_user_data(user)
        logger.info("User data exported", extra={"user_id": user.id, "format": format})
        if format == "csv":
            return {"format": "csv", "data": render_csv(data)}
        return {"format": "json", "data": data}

    # ---- Deletion --------------------------------------------------------
    def delete_user_account(self, user: models.User, confirm_email: str) -> None:
        """Permanently delete the user and everything they own in one unit of work."""
        if confirm_email.strip().lower() != user.email.lower():
            raise ValidationError.field("confirm_email", "Email does not match your account")
        _check_limit(
            account_deletion_limiter,
            f"delete:{user.id}",
            "Too many deletion attempts. Please try again later.",
        )

        user_id = user.id
        account_ids = [
            aid for (aid,) in self.db.query(models.Account.id).filter(models.Account.user_id == user_id).all()
        ]
        category_ids = [
            cid for (cid,) in self.db.query(models.Category.id).filter(models.Category.user_id == user_id).all()
        ]

        def wipe(model, *conditions) -> int:
            if not conditions:
                return 0
            return self.db.query(model).filter(or_(*conditions)).delete(synchronize_session=False)

        try:
            TR = models.TransactionRequest
            wipe(
                TR,
                *([TR.from_id.in_(account_ids), TR.to_id.in_(account_ids)] if account_ids else []),
                *([TR.category_id.in_(category_ids)] if category_ids else []),
            )
            owned_shares = [
                sid
                for (sid,) in self.db.query(models.SharedExpense.id)
                .filter(models.SharedExpense.owner_id == user_id)
                .all()
            ]
            txn_ids = (
                [
                    tid
                    for (tid,) in self.db.query(models.Transaction.id)
                    .filter(models.Transaction.account_id.in_(account_ids))
                    .all()
                ]
                if account_ids
                else []
            )
            shares_on_txns = (
                [
                    sid
                    for (sid,) in self.db.query(models.SharedExpense.id)
                    .filter(models.SharedExpense.transaction_id.in_(txn_ids))
                    .all()
                ]
                if txn_ids
                else []
            )
            share_ids = sorted(set(owned_shares) | set(shares_on_txns))
            EP = models.ExpenseParticipant
            wipe(
                EP,
                EP.user_id == user_id,
                *([EP.shared_expense_id.in_(share_ids)] if share_ids else []),
            )
            if share_ids:
                wipe(models.SharedExpense, models.SharedExpense.id.in_(share_ids))
            for model in (models.Transaction, models.Holding, models.Budget):
                if account_ids:
                    wipe(model, model.account_id.in_(account_ids))
            RT = models.RecurringTemplate
            wipe(
                RT,
                *([RT.account_id.in_(account_ids)] if account_ids else []),
                *([RT.category_id.in_(category_ids)] if category_ids else []),
            )
            if account_ids:
                wipe(models.MonthlyIncomeGoal, models.MonthlyIncomeGoal.account_id.in_(account_ids))
            DC = models.DashboardCache
            wipe(DC, DC.user_id == user_id, *([DC.account_id.in_(account_ids)] if account_ids else []))

            self.db.delete(user)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Account deletion failed", extra={"user_id": user_id})
            raise
        logger.info("User account deleted", extra={"user_id": user_id, "accounts": len(account_ids)})


def _section(lines: list[str], title: str, header: str, rows: Iterable[dict], mapper: Callable[[dict], list]) -> None:
    if lines:
        lines.append("")
    lines.append(f"=== {title} ===")
    lines.append(header)
    for row in rows:
        lines.append(",".join(_csv_value(v) for v in mapper(row)))


def render_csv(data: dict[str, Any]) -> str:
    lines: list[str] = []
    u = data["user"]
    _section(
        lines,
        "USER",
        "id,email,displayName,preferredCurrency,emailVerified,hasCompletedOnboarding,createdAt",
        [u],
        lambda r: [
            r["id"],
            escape_csv(r["email"]),
            escape_csv(r["displayName"]),
            r["preferredCurrency"],
            r["emailVerified"],
            r["hasCompletedOnboarding"],
            r["createdAt"],
        ],
    )
    if data["subscription"]:
        _section(
            lines,
            "SUBSCRIPTION",
            "id,status,trialEndsAt,currentPeriodStart,currentPeriodEnd,createdAt",
            [data["subscription"]],
            lambda r: [
                r["id"],
                r["status"],
                r["trialEndsAt"],
                r["currentPeriodStart"],
                r["currentPeriodEnd"],
                r["createdAt"],
            ],
        )
    _section(
        lines,
        "ACCOUNTS",
        "id,name,type,preferredCurrency,color,icon,description,createdAt",
        data["accounts"],
        lambda r: [
            r["id"],
            escape_csv(r["name"]),
            r["type"],
            r["preferredCurrency"],
            r["color"],
            r["icon"],
            escape_csv(r["description"]),
            r["createdAt"],
        ],
    )
    _section(
        lines,
        "CATEGORIES",
        "id,name,type,color,isHolding,isArchived,createdAt",
        data["categories"],
        lambda r: [r["id"], escape_csv(r["name"]), r["type"], r["color"], r["isHolding"], r["isArchived"], r["createdAt"]],
    )
    _section(
        lines,
        "TRANSACTIONS",
        "id,accountId,categoryId,type,amount,currency,date,month,description,isRecurring,isMutual,createdAt",
        data["transactions"],
        lambda r: [
            r["id"],
            r["accountId"],
            r["categoryId"],
            r["type"],
            r["amount"],
            r["currency"],
            r["date"],
            r["month"],
            escape_csv(r["description"]),
            r["isRecurring"],
            r["isMutual"],
            r["createdAt"],
        ],
    )
    _section(
        lines,
        "BUDGETS",
        "id,accountId,categoryId,month,planned,currency,notes,createdAt",
        data["budgets"],
        lambda r: [
            r["id"],
            r["accountId"],
            r["categoryId"],
            r["month"],
            r["planned"],
            r["currency"],
            escape_csv(r["notes"]),
            r["createdAt"],
        ],
    )
    _section(
        lines,
        "HOLDINGS",
        "id,accountId,categoryId,symbol,quantity,averageCost,currency,notes,createdAt",
        data["holdings"],
        lambda r: [
            r["id"],
            r["accountId"],
            r["categoryId"],
            r["symbol"],
            r["quantity"],
            r["averageCost"],
            r["currency"],
            escape_csv(r["notes"]),
            r["createdAt"],
        ],
    )
    _section(
        lines,
        "RECURRING TEMPLATES",
        "id,accountId,categoryId,type,amount,currency,dayOfMonth,description,isActive,startMonth,endMonth,createdAt",
        data["recurringTemplates"],
        lambda r: [
            r["id"],
            r["accountId"],
            r["categoryId"],
            r["type"],
            r["amount"],
            r["currency"],
            r["dayOfMonth"],
            escape_csv(r["description"]),
            r["isActive"],
            r["startMonth"],
            r["endMonth"],
            r["createdAt"],
        ],
    )
    return "\n".join(lines)
