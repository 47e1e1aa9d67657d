"""Stock quotes from Alpha Vantage, cached in the ``stockprice`` table.

The free tier allows 25 calls a day and roughly 5 a minute, so refreshes are
spaced out and bounded by a time budget. Symbols the API rejects are
remembered for a day so they do not burn quota again.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Callable, Iterable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.config import settings

logger = logging.getLogger(__name__)

DAILY_CALL_LIMIT = 25
INVALID_SYMBOL_TTL = timedelta(hours=24)
MAX_INVALID_SYMBOLS = 1000
PRICE_SOURCE = "alphavantage"


class StockApiError(RuntimeError):
    """Quote could not be fetched; the message is safe to show to users."""


class StockApiRateLimited(StockApiError):
    pass


class InvalidSymbolError(StockApiError):
    pass


@dataclass(frozen=True)
class StockQuote:
    symbol: str
    price: Decimal
    change_percent: Decimal | None
    volume: int | None
    fetched_at: datetime


@dataclass(frozen=True)
class PriceData:
    price: Decimal
    change_percent: Decimal | None
    fetched_at: datetime
    is_stale: bool


class InvalidSymbolMemo:
    def __init__(self, ttl: timedelta = INVALID_SYMBOL_TTL, max_entries: int = MAX_INVALID_SYMBOLS) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: OrderedDict[str, datetime] = OrderedDict()
        self._lock = Lock()

    def add(self, symbol: str) -> None:
        with self._lock:
            self._entries.pop(symbol, None)
            self._entries[symbol] = models.utcnow_naive()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            marked_at = self._entries.get(symbol)
            if marked_at is None:
                return False
            if models.utcnow_naive() - marked_at > self.ttl:
                del self._entries[symbol]
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class DailyCallCounter:
    def __init__(self, limit: int = DAILY_CALL_LIMIT) -> None:
        self.limit = limit
        self._day: date | None = None
        self._count = 0
        self._lock = Lock()

    def try_acquire(self) -> bool:
        today = models.utcnow_naive().date()
        with self._lock:
            if self._day != today:
                self._day = today
                self._count = 0
            if self._count >= self.limit:
                return False
            self._count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._day = None
            self._count = 0


invalid_symbols = InvalidSymbolMemo()
daily_calls = DailyCallCounter()


def reset_stock_api_state() -> None:
    invalid_symbols.clear()
    daily_calls.reset()


def _get_json(url: str) -> dict[str, Any]:
    try:
        with urlopen(url, timeout=settings.HTTP_TIMEOUT_SECONDS) as response:
            payload = json.load(response)
    except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise StockApiError("Unable to reach the stock price service") from exc
    if not isinstance(payload, dict):
        raise StockApiError("Unexpected response from the stock price service")
    return payload


def _parse_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value).strip().rstrip("%"))
    except InvalidOperation:
        return None


def fetch_stock_quote(symbol: str) -> StockQuote:
    api_key = settings.ALPHA_VANTAGE_API_KEY
    if not api_key:
        raise StockApiError("Stock price API key is not configured")

    normalized = symbol.strip().upper()
    if normalized in invalid_symbols:
        raise InvalidSymbolError(f"Invalid stock symbol: {normalized}")
    if not daily_calls.try_acquire():
        raise StockApiRateLimited("Daily stock price limit reached. Try again tomorrow.")

    query = urlencode({"function": "GLOBAL_QUOTE", "symbol": normalized, "apikey": api_key})
    payload = _get_json(f"{settings.ALPHA_VANTAGE_BASE_URL}?{query}")

    if "Note" in payload or "Information" in payload:
        raise StockApiRateLimited("Stock price API rate limit reached. Please try again later.")
    if "Error Message" in payload:
        invalid_symbols.add(normalized)
        raise InvalidSymbolError(f"Invalid stock symbol: {normalized}")

    quote = payload.get("Global Quote") or {}
    price = _parse_decimal(quote.get("05. price"))
    if price is None:
        invalid_symbols.add(normalized)
        raise InvalidSymbolError(f"Invalid stock symbol: {normalized}")

    volume = _parse_decimal(quote.get("06. volume"))
    return StockQuote(
        symbol=normalized,
        price=price,
        change_percent=_parse_decimal(quote.get("10. change percent")),
        volume=int(volume) if volume is not None else None,
        fetched_at=models.utcnow_naive(),
    )


def is_price_stale(fetched_at: datetime, now: datetime | None = None) -> bool:
    now = now or models.utcnow_naive()
    age_hours = (now - fetched_at).total_seconds() / 3600
    return age_hours > settings.STOCK_PRICE_MAX_AGE_HOURS


def batch_load_stock_prices(db: Session, symbols: Iterable[str]) -> dict[str, PriceData]:
    """Latest cached price per symbol in one query."""
    unique = sorted({s.strip().upper() for s in symbols if s})
    if not unique:
        return {}

    SP = models.StockPrice
    latest = (
        db.query(SP.symbol.label("symbol"), func.max(SP.fetched_at).label("latest"))
        .filter(SP.symbol.in_(unique))
        .group_by(SP.symbol)
        .subquery()
    )
    rows = (
        db.query(SP)
        .join(latest, and_(SP.symbol == latest.c.symbol, SP.fetched_at == latest.c.latest))
        .all()
    )
    now = models.utcnow_naive()
    return {
        row.symbol: PriceData(
            price=row.price,
            change_percent=row.change_percent,
            fetched_at=row.fetched_at,
            is_stale=is_price_stale(row.fetched_at, now),
        )
        for row in rows
    }


def refresh_stock_prices(
    db: Session,
    symbols: Iterable[str],
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Fetch fresh quotes and store them.

    Returns ``{"updated": n, "skipped": n, "errors": [...]}``.
    """
    unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s))
    updated = 0
    skipped = 0
    errors: list[str] = []
    started = clock()
    budget_seconds = settings.STOCK_REFRESH_TIME_BUDGET_MS / 1000
    delay_seconds = settings.STOCK_REFRESH_DELAY_MS / 1000
    called = False

    for index, symbol in enumerate(unique):
        if clock() - started >= budget_seconds:
            skipped += len(unique) - index
            errors.append("Time budget exhausted; remaining symbols skipped")
            break
        if symbol in invalid_symbols:
            skipped += 1
            continue
        if called and delay_seconds > 0:
            sleep(delay_seconds)
        called = True
        try:
            quote = fetch_stock_quote(symbol)
        except StockApiRateLimited as exc:
            errors.append(f"{symbol}: {exc}")
            skipped += len(unique) - index
            break
        except StockApiError as exc:
            errors.append(f"{symbol}: {exc}")
            continue

        db.add(
            models.StockPrice(
                symbol=quote.symbol,
                price=quote.price,
                change_percent=quote.change_percent,
                volume=quote.volume,
                currency=models.Currency.USD,
                source=PRICE_SOURCE,
                fetched_at=quote.fetched_at,
            )
        )
        updated += 1

    db.commit()
    if errors:
        logger.warning("Stock price refresh finished with %d error(s)", len(errors), extra={"errors": errors})
    return {"updated": updated, "skipped": skipped, "errors": errors}
