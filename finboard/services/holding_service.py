"""Investment holdings and their valuation against cached stock prices."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from finboard import models
from finboard.services import stock_prices
from finboard.services.account_service import AccountService
from finboard.services.currency import batch_load_exchange_rates, convert_amount_with_cache, normalize_currency
from finboard.services.errors import ConflictError, NotFoundError, ValidationError
from finboard.utils.money import money_float, round_money, round_quantity, to_decimal

logger = logging.getLogger(__name__)

DUPLICATE_HOLDING_MESSAGE = "Unable to create holding. It may already exist."


def _float_or_none(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


class HoldingService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _active(self):
        return (
            self.db.query(models.Holding)
            .join(models.Account, models.Account.id == models.Holding.account_id)
            .filter(models.Holding.deleted_at.is_(None), models.Account.deleted_at.is_(None))
        )

    def get(self, user_id: int, holding_id: int) -> models.Holding:
        row = self._active().filter(models.Holding.id == holding_id, models.Account.user_id == user_id).first()
        if not row:
            raise NotFoundError("Holding", holding_id)
        return row

    def validate_holding_category(self, user_id: int, category_id: int) -> models.Category:
        category = (
            self.db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .first()
        )
        if category is None:
            raise ValidationError.field("category_id", "Category not found")
        if not category.is_holding:
            raise ValidationError.field("category_id", "Category must be marked as a holding category")
        return category

    def validate_symbol(self, symbol: str) -> stock_prices.StockQuote:
        try:
            return stock_prices.fetch_stock_quote(symbol)
        except stock_prices.StockApiError as exc:
            raise ValidationError.field("symbol", str(exc))

    def create(self, payload: dict, *, user_id: int) -> models.Holding:
        AccountService(self.db).get_by_id(user_id, payload["account_id"])
        self.validate_holding_category(user_id, payload["category_id"])
        symbol = payload["symbol"].strip().upper()
        quote = self.validate_symbol(symbol)

        # A deleted holding keeps its (account, symbol) slot; reuse it
        row = (
            self.db.query(models.Holding)
            .filter(
                models.Holding.account_id == payload["account_id"],
                models.Holding.symbol == symbol,
                models.Holding.deleted_at.is_not(None),
            )
            .first()
        )
        if row is None:
            row = models.Holding(account_id=payload["account_id"], symbol=symbol)
            self.db.add(row)
        row.category_id = payload["category_id"]
        row.quantity = round_quantity(payload["quantity"])
        row.average_cost = round_money(payload["average_cost"])
        row.currency = payload["currency"]
        row.notes = payload.get("notes")
        row.deleted_at = None
        # The validation call already paid for a quote; keep it
        self.db.add(
            models.StockPrice(
                symbol=quote.symbol,
                price=quote.price,
                change_percent=quote.change_percent,
                volume=quote.volume,
                currency=models.Currency.USD,
                source=stock_prices.PRICE_SOURCE,
                fetched_at=quote.fetched_at,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("Duplicate holding", extra={"account_id": payload["account_id"], "symbol": symbol})
            raise ConflictError(DUPLICATE_HOLDING_MESSAGE)
        self.db.refresh(row)
        return row

    def update(self, holding_id: int, payload: dict, *, user_id: int) -> models.Holding:
        row = self.get(user_id, holding_id)
        row.quantity = round_quantity(payload["quantity"])
        row.average_cost = round_money(payload["average_cost"])
        row.notes = payload.get("notes")
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, holding_id: int, *, user_id: int) -> None:
        row = self.get(user_id, holding_id)
        row.deleted_at = models.utcnow_naive()
        self.db.commit()

    def refresh_prices(self, account_id: int, *, user_id: int) -> dict[str, Any]:
        AccountService(self.db).get_by_id(user_id, account_id)
        symbols = [
            s
            for (s,) in self.db.query(models.Holding.symbol)
            .filter(models.Holding.account_id == account_id, models.Holding.deleted_at.is_(None))
            .distinct()
            .all()
        ]
        if not symbols:
            return {"updated": 0, "skipped": 0, "errors": []}
        return stock_prices.refresh_stock_prices(self.db, symbols)

    def get_holdings_with_prices(
        self,
        account_id: Optional[int] = None,
        preferred_currency: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Value every holding in scope with its latest cached price.

        Falls back to cost basis when a symbol has no price yet. ``*_converted``
        fields are filled only when ``preferred_currency`` differs from the
        holding's currency.
        """
        q = self._active()
        if user_id is not None:
            q = q.filter(models.Account.user_id == user_id)
        if account_id is not None:
            q = q.filter(models.Holding.account_id == account_id)
        holdings = q.order_by(models.Holding.symbol, models.Holding.id).all()
        if not holdings:
            return []

        prices = stock_prices.batch_load_stock_prices(self.db, [h.symbol for h in holdings])
        preferred = normalize_currency(preferred_currency) if preferred_currency else None
        rates = batch_load_exchange_rates(self.db) if preferred else None

        items: list[dict[str, Any]] = []
        for h in holdings:
            quantity = to_decimal(h.quantity)
            cost_basis = round_money(quantity * to_decimal(h.average_cost))
            price = prices.get(h.symbol)
            current_price = price.price if price else None
            market_value = round_money(quantity * current_price) if current_price is not None else cost_basis
            gain_loss = market_value - cost_basis
            gain_loss_percent = (gain_loss / cost_basis * 100) if cost_basis != 0 else Decimal("0")

            item: dict[str, Any] = {
                "id": h.id,
                "account_id": h.account_id,
                "account_name": h.account.name,
                "category_id": h.category_id,
                "category_name": h.category.name,
                "symbol": h.symbol,
                "quantity": float(quantity),
                "average_cost": money_float(h.average_cost),
                "currency": h.currency.value,
                "notes": h.notes,
                "current_price": _float_or_none(current_price),
                "change_percent": _float_or_none(price.change_percent) if price else None,
                "market_value": money_float(market_value),
                "cost_basis": money_float(cost_basis),
                "gain_loss": money_float(gain_loss),
                "gain_loss_percent": money_float(gain_loss_percent),
                "price_age": price.fetched_at if price else None,
                "is_stale": price.is_stale if price else True,
            }
            if preferred and preferred != h.currency.value:
                for key, amount in (
                    ("current_price_converted", current_price),
                    ("market_value_converted", market_value),
                    ("cost_basis_converted", cost_basis),
                    ("gain_loss_converted", gain_loss),
                ):
                    item[key] = (
                        money_float(convert_amount_with_cache(amount, h.currency, preferred, rates))
                        if amount is not None
                        else None
                    )
            items.append(item)
        return items
