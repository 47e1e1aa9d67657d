from __future__ import annotations

import logging
from typing import Literal, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from finboard import models
from finboard.services.dashboard_service import invalidate_dashboard_cache
from finboard.services.errors import ConflictError, NotFoundError, handle_db_error

logger = logging.getLogger(__name__)

CreateStatus = Literal["CREATED", "REACTIVATED", "DUPLICATE"]


class CategoryService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_all(self, *, user_id: int, type: Optional[models.TxnType] = None, include_archived: bool = False) -> list[models.Category]:
        q = self.db.query(models.Category).filter(models.Category.user_id == user_id)
        if not include_archived:
            q = q.filter(models.Category.is_archived.is_(False))
        if type is not None:
            q = q.filter(models.Category.type == type)
        return q.order_by(models.Category.type, models.Category.name).all()

    def get(self, user_id: int, category_id: int) -> models.Category:
        row = (
            self.db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .first()
        )
        if not row:
            raise NotFoundError("Category", category_id)
        return row

    def _find(self, user_id: int, name: str, type: models.TxnType) -> models.Category | None:
        return (
            self.db.query(models.Category)
            .filter(
                models.Category.user_id == user_id,
                models.Category.name == name,
                models.Category.type == type,
            )
            .first()
        )

    def create_or_reactivate(
        self,
        user_id: int,
        name: str,
        type: models.TxnType,
        color: Optional[str] = None,
        is_holding: bool = False,
    ) -> tuple[CreateStatus, models.Category]:
        """Create a category, or bring back an archived one with the same name and type.

        Concurrent creators race on the unique constraint; the loser reports
        DUPLICATE with the winner's row.
        """
        name = name.strip()
        existing = self._find(user_id, name, type)
        if existing is not None and not existing.is_archived:
            return "DUPLICATE", existing

        if existing is not None:
            values = {"is_archived": False, "updated_at": models.utcnow_naive()}
            if color is not None:
                values["color"] = color
            result = self.db.execute(
                update(models.Category)
                .where(models.Category.id == existing.id, models.Category.is_archived.is_(True))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            invalidate_dashboard_cache(self.db, user_id)
            self.db.commit()
            self.db.refresh(existing)
            if not result.rowcount:
                return "DUPLICATE", existing
            return "REACTIVATED", existing

        row = models.Category(user_id=user_id, name=name, type=type, color=color, is_holding=is_holding)
        self.db.add(row)
        invalidate_dashboard_cache(self.db, user_id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self._find(user_id, name, type)
            if winner is None:
                raise
            return "DUPLICATE", winner
        self.db.refresh(row)
        return "CREATED", row

    def update(self, row: models.Category, patch: dict) -> models.Category:
        if not patch:
            return row
        if "name" in patch and patch["name"] is not None:
            patch["name"] = patch["name"].strip()
        for key, value in patch.items():
            if value is not None:
                setattr(row, key, value)
        invalidate_dashboard_cache(self.db, row.user_id)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise handle_db_error(
                exc,
                action="update category",
                unique_message="A category with this name already exists",
                context={"category_id": row.id},
            )
        self.db.refresh(row)
        return row

    def archive(self, row: models.Category) -> models.Category:
        if row.is_archived:
            raise ConflictError("Category is already archived")
        row.is_archived = True
        invalidate_dashboard_cache(self.db, row.user_id)
        self.db.commit()
        self.db.refresh(row)
        return row

    def upsert_many(self, user_id: int, items: list[dict], *, recolor: bool = True) -> list[models.Category]:
        """Create each ``(name, type)`` or un-archive the existing row. Does not commit.

        ``recolor`` lets a supplied color overwrite an existing category's color.
        """
        rows: list[models.Category] = []
        for item in items:
            name = item["name"].strip()
            row = self._find(user_id, name, item["type"])
            if row is None:
                row = models.Category(user_id=user_id, name=name, type=item["type"], color=item.get("color"))
                self.db.add(row)
                self.db.flush()
            else:
                if recolor and item.get("color") is not None:
                    row.color = item["color"]
                row.is_archived = False
            rows.append(row)
        return rows

    def bulk_upsert(self, user_id: int, items: list[dict]) -> list[models.Category]:
        """Create or reactivate several categories in one transaction."""
        try:
            rows = self.upsert_many(user_id, items)
            invalidate_dashboard_cache(self.db, user_id)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise handle_db_error(
                exc,
                action="create categories",
                fallback_message="Unable to create categories",
                context={"user_id": user_id, "count": len(items)},
            )
        for row in rows:
            self.db.refresh(row)
        return rows

    def find_or_create(self, user_id: int, name: str, type: models.TxnType) -> models.Category:
        """Return the named category, un-archiving or creating it as needed. Does not commit."""
        row = self._find(user_id, name, type)
        if row is None:
            row = models.Category(user_id=user_id, name=name, type=type)
            self.db.add(row)
            self.db.flush()
        elif row.is_archived:
            row.is_archived = False
        return row
