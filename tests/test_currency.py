from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from finboard import models
from finboard.services import currency
from finboard.services.currency import (
    CurrencyService,
    RateCache,
    RateProviderUnavailable,
    build_rate_cache,
    convert_amount_with_cache,
    normalize_currency,
)


ROWS = [
    ("USD", "EUR", Decimal("0.90"), datetime(2026, 1, 10)),
    ("USD", "EUR", Decimal("0.92"), datetime(2026, 2, 10)),
    ("USD", "ILS", Decimal("3.70"), datetime(2026, 3, 1)),
]


def test_normalize_currency():
    assert normalize_currency(" eur ") == "EUR"
    assert normalize_currency(models.Currency.ILS) == "ILS"
    with pytest.raises(ValueError):
        normalize_currency("EURO")


def test_build_rate_cache_picks_rate_as_of_month():
    latest = build_rate_cache(ROWS)
    assert latest.get("USD", "EUR") == Decimal("0.92")

    january = build_rate_cache(ROWS, date(2026, 1, 31))
    assert january.get("USD", "EUR") == Decimal("0.90")
    # Nothing that old for ILS, so the earliest later rate is used
    assert january.get("USD", "ILS") == Decimal("3.70")

    before_any = build_rate_cache(ROWS, date(2025, 6, 1))
    assert before_any.get("USD", "EUR") == Decimal("0.90")
    assert len(before_any) == 2


def test_convert_with_cache():
    cache = build_rate_cache(ROWS)
    assert convert_amount_with_cache(100, "USD", "EUR", cache) == Decimal("92.00")
    assert convert_amount_with_cache("10.005", "USD", "EUR", cache) == Decimal("9.20")
    # Missing pair or target leaves the amount unconverted
    assert convert_amount_with_cache(100, "EUR", "ILS", cache) == Decimal("100")
    assert convert_amount_with_cache(100, "EUR", None, cache) == Decimal("100")


@pytest.mark.parametrize("cache", [RateCache(), build_rate_cache(ROWS)])
def test_same_currency_is_unchanged(cache):
    assert convert_amount_with_cache(Decimal("12.345"), "USD", "usd", cache) == Decimal("12.345")


def test_convert_amount_fetches_and_caches(db_session, monkeypatch):
    calls = []

    def fake_fetch(base, symbols):
        calls.append((base, tuple(symbols)))
        return {"EUR": Decimal("0.5"), "ILS": Decimal("4")}

    monkeypatch.setattr(currency, "fetch_latest_rates", fake_fetch)
    svc = CurrencyService(db_session)

    assert svc.convert_amount(10, "USD", "EUR", date(2026, 2, 1)) == Decimal("5.00")
    assert svc.convert_amount(10, "USD", "ILS", date(2026, 2, 1)) == Decimal("40.00")
    assert calls == [("USD", ("EUR", "ILS"))]
    assert db_session.query(models.ExchangeRate).count() == 2
    assert svc.get_last_update_time() is not None


def test_convert_amount_falls_back_to_last_cached_rate(db_session, monkeypatch):
    def failing_fetch(base, symbols):
        raise RateProviderUnavailable("down")

    monkeypatch.setattr(currency, "fetch_latest_rates", failing_fetch)
    svc = CurrencyService(db_session)

    with pytest.raises(RateProviderUnavailable):
        svc.convert_amount(10, "USD", "EUR")
    assert svc.convert_amount(10, "USD", "USD") == Decimal("10")

    db_session.add(
        models.ExchangeRate(
            base_currency=models.Currency.USD,
            target_currency=models.Currency.EUR,
            rate=Decimal("0.8"),
            date=datetime(2025, 12, 1),
        )
    )
    db_session.commit()
    assert svc.convert_amount(10, "USD", "EUR") == Decimal("8.00")


def test_exchange_rate_endpoints(client, monkeypatch):
    status = client.get("/api/exchange-rates")
    assert status.status_code == 200
    assert status.json() == {"last_update": None}

    def fake_fetch(base, symbols):
        return {code: Decimal("1.5") for code in symbols}

    monkeypatch.setattr(currency, "fetch_latest_rates", fake_fetch)
    refreshed = client.post("/api/exchange-rates/refresh")
    assert refreshed.status_code == 200
    assert refreshed.json()["updated"] == 6
    assert refreshed.json()["last_update"] is not None

    # Refreshing the same day updates rows in place
    assert client.post("/api/exchange-rates/refresh").json()["updated"] == 6
    assert client.get("/api/exchange-rates").json()["last_update"] is not None


def test_refresh_failure_is_503(client, monkeypatch):
    def failing_fetch(base, symbols):
        raise RateProviderUnavailable("Frankfurter API unavailable")

    monkeypatch.setattr(currency, "fetch_latest_rates", failing_fetch)
    res = client.post("/api/exchange-rates/refresh")
    assert res.status_code == 503
    assert res.json()["detail"] == "Exchange rates are unavailable right now. Please try again later."
