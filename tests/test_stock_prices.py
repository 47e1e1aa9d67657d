from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from finboard import models
from finboard.core.config import settings
from finboard.services import stock_prices
from finboard.services.stock_prices import (
    DailyCallCounter,
    InvalidSymbolError,
    InvalidSymbolMemo,
    StockApiError,
    StockApiRateLimited,
    StockQuote,
    batch_load_stock_prices,
    fetch_stock_quote,
    is_price_stale,
    refresh_stock_prices,
)


@pytest.fixture()
def api_key(monkeypatch):
    monkeypatch.setattr(settings, "ALPHA_VANTAGE_API_KEY", "test-key")


def _payload(price: str = "187.4400") -> dict:
    return {
        "Global Quote": {
            "01. symbol": "AAPL",
            "05. price": price,
            "06. volume": "52000000",
            "10. change percent": "-0.5123%",
        }
    }


def test_fetch_parses_global_quote(api_key, monkeypatch):
    urls = []

    def fake_get_json(url):
        urls.append(url)
        return _payload()

    monkeypatch.setattr(stock_prices, "_get_json", fake_get_json)
    quote = fetch_stock_quote(" aapl ")
    assert quote.symbol == "AAPL"
    assert quote.price == Decimal("187.4400")
    assert quote.change_percent == Decimal("-0.5123")
    assert quote.volume == 52000000
    assert "symbol=AAPL" in urls[0]
    assert "function=GLOBAL_QUOTE" in urls[0]


def test_fetch_requires_api_key(monkeypatch):
    monkeypatch.setattr(settings, "ALPHA_VANTAGE_API_KEY", None)
    with pytest.raises(StockApiError):
        fetch_stock_quote("AAPL")


def test_invalid_symbol_is_remembered(api_key, monkeypatch):
    calls = []

    def fake_get_json(url):
        calls.append(url)
        return {"Error Message": "Invalid API call."}

    monkeypatch.setattr(stock_prices, "_get_json", fake_get_json)
    with pytest.raises(InvalidSymbolError):
        fetch_stock_quote("NOPE")
    with pytest.raises(InvalidSymbolError):
        fetch_stock_quote("nope")
    assert len(calls) == 1


def test_rate_limit_note(api_key, monkeypatch):
    monkeypatch.setattr(stock_prices, "_get_json", lambda url: {"Note": "Thank you for using Alpha Vantage!"})
    with pytest.raises(StockApiRateLimited):
        fetch_stock_quote("AAPL")


def test_daily_counter_and_memo_expiry():
    counter = DailyCallCounter(limit=2)
    assert [counter.try_acquire() for _ in range(3)] == [True, True, False]
    counter.reset()
    assert counter.try_acquire() is True

    memo = InvalidSymbolMemo(ttl=timedelta(seconds=-1), max_entries=2)
    memo.add("AAA")
    assert "AAA" not in memo

    small = InvalidSymbolMemo(max_entries=2)
    for symbol in ("A", "B", "C"):
        small.add(symbol)
    assert "A" not in small
    assert "C" in small


def test_is_price_stale():
    now = models.utcnow_naive()
    assert is_price_stale(now - timedelta(hours=1), now) is False
    assert is_price_stale(now - timedelta(hours=settings.STOCK_PRICE_MAX_AGE_HOURS + 1), now) is True


def _fake_quote(symbol: str) -> StockQuote:
    return StockQuote(
        symbol=symbol,
        price=Decimal("10.00"),
        change_percent=None,
        volume=None,
        fetched_at=models.utcnow_naive(),
    )


def test_refresh_spaces_calls_and_stores_prices(db_session, monkeypatch):
    monkeypatch.setattr(stock_prices, "fetch_stock_quote", _fake_quote)
    monkeypatch.setattr(settings, "STOCK_REFRESH_DELAY_MS", 12000)
    sleeps = []

    result = refresh_stock_prices(db_session, ["aapl", "MSFT", "AAPL"], sleep=sleeps.append, clock=lambda: 0.0)
    assert result == {"updated": 2, "skipped": 0, "errors": []}
    assert sleeps == [12.0]
    assert set(batch_load_stock_prices(db_session, ["AAPL", "MSFT"])) == {"AAPL", "MSFT"}


def test_refresh_stops_on_rate_limit(db_session, monkeypatch):
    def fetch(symbol):
        if symbol == "B":
            raise StockApiRateLimited("Daily stock price limit reached. Try again tomorrow.")
        return _fake_quote(symbol)

    monkeypatch.setattr(stock_prices, "fetch_stock_quote", fetch)
    monkeypatch.setattr(settings, "STOCK_REFRESH_DELAY_MS", 0)
    result = refresh_stock_prices(db_session, ["A", "B", "C"], sleep=lambda s: None, clock=lambda: 0.0)
    assert result["updated"] == 1
    assert result["skipped"] == 2
    assert result["errors"] == ["B: Daily stock price limit reached. Try again tomorrow."]


def test_refresh_respects_time_budget(db_session, monkeypatch):
    monkeypatch.setattr(stock_prices, "fetch_stock_quote", _fake_quote)
    monkeypatch.setattr(settings, "STOCK_REFRESH_DELAY_MS", 0)
    ticks = iter([0.0, 0.0, 100.0, 100.0])

    result = refresh_stock_prices(db_session, ["A", "B", "C"], sleep=lambda s: None, clock=lambda: next(ticks))
    assert result["updated"] == 1
    assert result["skipped"] == 2
    assert result["errors"] == ["Time budget exhausted; remaining symbols skipped"]


def test_batch_load_returns_latest_price(db_session):
    now = models.utcnow_naive()
    for age, price in ((5, "9.00"), (1, "11.00")):
        db_session.add(
            models.StockPrice(
                symbol="AAPL",
                price=Decimal(price),
                currency=models.Currency.USD,
                fetched_at=now - timedelta(hours=age),
            )
        )
    db_session.commit()
    prices = batch_load_stock_prices(db_session, ["aapl", "MSFT"])
    assert list(prices) == ["AAPL"]
    assert prices["AAPL"].price == Decimal("11.00")
    assert prices["AAPL"].is_stale is False
    assert batch_load_stock_prices(db_session, []) == {}
