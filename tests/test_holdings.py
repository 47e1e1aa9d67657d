from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from finboard import models
from finboard.core.config import settings
from finboard.services import stock_prices
from finboard.services.stock_prices import InvalidSymbolError, StockQuote


def _quote(symbol: str, price: str = "150.00") -> StockQuote:
    return StockQuote(
        symbol=symbol.strip().upper(),
        price=Decimal(price),
        change_percent=Decimal("1.25"),
        volume=1000,
        fetched_at=models.utcnow_naive(),
    )


@pytest.fixture()
def quotes(monkeypatch):
    prices = {"AAPL": "150.00", "MSFT": "400.00"}

    def fake_fetch(symbol):
        normalized = symbol.strip().upper()
        if normalized not in prices:
            raise InvalidSymbolError(f"Invalid stock symbol: {normalized}")
        return _quote(normalized, prices[normalized])

    monkeypatch.setattr(stock_prices, "fetch_stock_quote", fake_fetch)
    monkeypatch.setattr(settings, "STOCK_REFRESH_DELAY_MS", 0)
    return prices


@pytest.fixture()
def stocks(client):
    res = client.post("/api/categories", json={"name": "Stocks", "type": "EXPENSE", "is_holding": True})
    return res.json()["category"]


def _holding(client, account_id: int, category_id: int, **overrides):
    body = {
        "account_id": account_id,
        "category_id": category_id,
        "symbol": "aapl",
        "quantity": 10,
        "average_cost": 100,
        "currency": "USD",
    }
    body.update(overrides)
    return client.post("/api/holdings", json=body)


def test_create_holding_and_value_it(client, demo_account, stocks, quotes):
    res = _holding(client, demo_account.id, stocks["id"])
    assert res.status_code == 201
    assert res.json()["symbol"] == "AAPL"
    assert res.json()["quantity"] == 10.0

    [item] = client.get("/api/holdings").json()
    assert item["account_name"] == "Personal"
    assert item["category_name"] == "Stocks"
    assert item["current_price"] == 150.0
    assert item["change_percent"] == 1.25
    assert item["market_value"] == 1500.0
    assert item["cost_basis"] == 1000.0
    assert item["gain_loss"] == 500.0
    assert item["gain_loss_percent"] == 50.0
    assert item["is_stale"] is False
    assert item["market_value_converted"] is None


def test_missing_price_falls_back_to_cost_basis(client, db_session, demo_account, stocks, quotes):
    _holding(client, demo_account.id, stocks["id"])
    db_session.query(models.StockPrice).delete()
    db_session.commit()

    [item] = client.get("/api/holdings").json()
    assert item["current_price"] is None
    assert item["market_value"] == 1000.0
    assert item["gain_loss"] == 0.0
    assert item["is_stale"] is True


def test_stale_price_is_flagged(client, db_session, demo_account, stocks, quotes):
    _holding(client, demo_account.id, stocks["id"])
    row = db_session.query(models.StockPrice).one()
    row.fetched_at = models.utcnow_naive() - timedelta(hours=settings.STOCK_PRICE_MAX_AGE_HOURS + 1)
    db_session.commit()

    [item] = client.get("/api/holdings").json()
    assert item["is_stale"] is True
    assert item["current_price"] == 150.0


def test_converted_values_for_other_currency(client, db_session, demo_account, stocks, quotes):
    _holding(client, demo_account.id, stocks["id"])
    db_session.add(
        models.ExchangeRate(
            base_currency=models.Currency.USD,
            target_currency=models.Currency.EUR,
            rate=Decimal("0.9"),
            date=datetime(2026, 1, 1),
        )
    )
    db_session.commit()

    [item] = client.get("/api/holdings", params={"currency": "EUR"}).json()
    assert item["market_value"] == 1500.0
    assert item["market_value_converted"] == 1350.0
    assert item["cost_basis_converted"] == 900.0
    assert item["gain_loss_converted"] == 450.0
    assert item["current_price_converted"] == 135.0


def test_category_must_be_a_holding_category(client, demo_account, quotes):
    plain = client.post("/api/categories", json={"name": "Groceries", "type": "EXPENSE"}).json()["category"]
    res = _holding(client, demo_account.id, plain["id"])
    assert res.status_code == 400
    assert res.json()["error"] == {"category_id": ["Category must be marked as a holding category"]}

    missing = _holding(client, demo_account.id, 9999)
    assert missing.json()["error"] == {"category_id": ["Category not found"]}


def test_symbol_validation(client, demo_account, stocks, quotes):
    bad_format = _holding(client, demo_account.id, stocks["id"], symbol="TOOLONG")
    assert bad_format.status_code == 422
    assert "symbol" in bad_format.json()["error"]

    unknown = _holding(client, demo_account.id, stocks["id"], symbol="ZZZZ")
    assert unknown.status_code == 400
    assert unknown.json()["error"] == {"symbol": ["Invalid stock symbol: ZZZZ"]}


def test_duplicate_holding_conflicts(client, demo_account, stocks, quotes):
    assert _holding(client, demo_account.id, stocks["id"]).status_code == 201
    dup = _holding(client, demo_account.id, stocks["id"])
    assert dup.status_code == 409
    assert dup.json()["detail"] == "Unable to create holding. It may already exist."


def test_update_and_delete(client, demo_account, stocks, quotes):
    created = _holding(client, demo_account.id, stocks["id"]).json()
    updated = client.patch(f"/api/holdings/{created['id']}", json={"quantity": 2.5, "average_cost": 120})
    assert updated.status_code == 200
    assert updated.json()["quantity"] == 2.5
    assert updated.json()["average_cost"] == 120.0

    assert client.delete(f"/api/holdings/{created['id']}").status_code == 204
    assert client.get("/api/holdings").json() == []
    assert client.delete(f"/api/holdings/{created['id']}").status_code == 404


def test_deleted_symbol_can_be_added_again(client, db_session, demo_account, stocks, quotes):
    first = _holding(client, demo_account.id, stocks["id"], notes="old lot").json()
    assert client.delete(f"/api/holdings/{first['id']}").status_code == 204

    again = _holding(client, demo_account.id, stocks["id"], quantity=3, average_cost=140)
    assert again.status_code == 201
    body = again.json()
    assert body["id"] == first["id"]
    assert body["quantity"] == 3.0
    assert body["average_cost"] == 140.0
    assert body["notes"] is None

    [item] = client.get("/api/holdings").json()
    assert item["quantity"] == 3.0
    assert db_session.query(models.Holding).count() == 1


def test_refresh_prices(client, db_session, demo_account, stocks, quotes):
    empty = client.post("/api/holdings/refresh-prices", json={"account_id": demo_account.id})
    assert empty.json() == {"updated": 0, "skipped": 0, "errors": []}

    _holding(client, demo_account.id, stocks["id"])
    _holding(client, demo_account.id, stocks["id"], symbol="MSFT", quantity=1)
    quotes["AAPL"] = "155.00"

    res = client.post("/api/holdings/refresh-prices", json={"account_id": demo_account.id})
    assert res.status_code == 200
    assert res.json() == {"updated": 2, "skipped": 0, "errors": []}

    values = {h["symbol"]: h["current_price"] for h in client.get("/api/holdings").json()}
    assert values == {"AAPL": 155.0, "MSFT": 400.0}
