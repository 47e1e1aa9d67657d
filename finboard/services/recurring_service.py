from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from finboard import models
from finboard.services.account_service import AccountService
from finboard.services.category_service import CategoryService
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import NotFoundError, ValidationError
from finboard.utils.dates import clamp_day, get_month_start_from_key
from finboard.utils.money import round_money

logger = logging.getLogger(__name__)


class RecurringService:
    """Recurring income/expense templates and their monthly application."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_all(self, *, user_id: int, account_id: Optional[int] = None) -> list[models.RecurringTemplate]:
        q = (
            self.db.query(models.RecurringTemplate)
            .join(models.Account, models.Account.id == models.RecurringTemplate.account_id)
            .filter(models.Account.user_id == user_id, models.Account.deleted_at.is_(None))
        )
        if account_id is not None:
            q = q.filter(models.RecurringTemplate.account_id == account_id)
        return q.order_by(models.RecurringTemplate.day_of_month, models.RecurringTemplate.id).all()

    def get(self, user_id: int, template_id: int) -> models.RecurringTemplate:
        row = (
            self.db.query(models.RecurringTemplate)
            .join(models.Account, models.Account.id == models.RecurringTemplate.account_id)
            .filter(models.RecurringTemplate.id == template_id, models.Account.user_id == user_id)
            .first()
        )
        if not row:
            raise NotFoundError("Recurring template", template_id)
        return row

    def upsert_template(self, payload: dict, *, user_id: int) -> models.RecurringTemplate:
        start_month = get_month_start_from_key(payload.pop("start_month_key"))
        end_key = payload.pop("end_month_key", None)
        end_month = get_month_start_from_key(end_key) if end_key else None
        if end_month is not None and end_month < start_month:
            raise ValidationError.field("end_month_key", "End month must be after the start month")

        AccountService(self.db).get_by_id(user_id, payload["account_id"])
        CategoryService(self.db).get(user_id, payload["category_id"])

        template_id = payload.pop("id", None)
        if template_id is not None:
            row = self.get(user_id, template_id)
        else:
            row = models.RecurringTemplate()
            self.db.add(row)
        for key, value in payload.items():
            setattr(row, key, value)
        row.amount = round_money(payload["amount"])
        row.start_month = start_month
        row.end_month = end_month
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    def toggle_template(self, template_id: int, is_active: bool, *, user_id: int) -> models.RecurringTemplate:
        row = self.get(user_id, template_id)
        row.is_active = is_active
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_template(self, template_id: int, *, user_id: int) -> None:
        row = self.get(user_id, template_id)
        self.db.delete(row)
        invalidate_dashboard_cache(self.db, user_id)
        self.db.commit()

    def apply_templates(
        self,
        account_id: int,
        month_key: str,
        template_ids: Optional[Iterable[int]] = None,
        *,
        user_id: int,
    ) -> dict[str, int]:
        """Create this month's transactions from active templates.

        Templates that already produced a transaction in the month are skipped,
        so applying twice creates nothing the second time.
        """
        AccountService(self.db).get_by_id(user_id, account_id)
        try:
            month_start = get_month_start_from_key(month_key)
        except ValueError:
            raise ValidationError.field("month_key", "Month must be in YYYY-MM format")

        q = self.db.query(models.RecurringTemplate).filter(
            models.RecurringTemplate.account_id == account_id,
            models.RecurringTemplate.is_active.is_(True),
            models.RecurringTemplate.start_month <= month_start,
            or_(
                models.RecurringTemplate.end_month.is_(None),
                models.RecurringTemplate.end_month >= month_start,
            ),
        )
        if template_ids is not None:
            ids = list(template_ids)
            if not ids:
                return {"created": 0}
            q = q.filter(models.RecurringTemplate.id.in_(ids))
        templates = q.order_by(models.RecurringTemplate.id).all()
        if not templates:
            return {"created": 0}

        already_applied = {
            tid
            for (tid,) in self.db.query(models.Transaction.recurring_template_id)
            .filter(
                models.Transaction.recurring_template_id.in_([t.id for t in templates]),
                models.Transaction.month == month_start,
                models.Transaction.deleted_at.is_(None),
            )
            .all()
        }

        rows = [
            models.Transaction(
                account_id=tpl.account_id,
                category_id=tpl.category_id,
                type=tpl.type,
                amount=tpl.amount,
                currency=tpl.currency,
                date=clamp_day(month_start, tpl.day_of_month),
                month=month_start,
                description=tpl.description,
                is_recurring=True,
                recurring_template_id=tpl.id,
            )
            for tpl in templates
            if tpl.id not in already_applied
        ]
        if rows:
            try:
                self.db.add_all(rows)
                invalidate_dashboard_cache(self.db, user_id, [month_start])
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            logger.info(
                "Applied recurring templates",
                extra={"account_id": account_id, "month": month_key, "created": len(rows)},
            )
        return {"created": len(rows)}
