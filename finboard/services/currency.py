"""Exchange-rate cache and currency conversion.

Rates are cached in the ``exchangerate`` table, one row per
``(base, target, day)``. Request paths load the whole table once into a
``RateCache`` and convert synchronously from memory; single on-demand
conversions go through ``CurrencyService.convert_amount``, which fetches from
Frankfurter on a cache miss.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from sqlalchemy import func
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.config import settings
from finboard.utils.dates import start_of_day
from finboard.utils.money import round_money, to_decimal

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES: tuple[str, ...] = tuple(c.value for c in models.Currency)


class RateProviderUnavailable(RuntimeError):
    """Raised when no live or cached rate can be produced for a pair."""


def normalize_currency(value: str | models.Currency) -> str:
    raw = value.value if isinstance(value, models.Currency) else str(value)
    normalized = raw.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


@dataclass
class RateCache:
    """In-memory view of the exchange-rate table keyed by (base, target)."""

    rates: dict[tuple[str, str], Decimal] = field(default_factory=dict)

    def get(self, base: str | models.Currency, target: str | models.Currency) -> Decimal | None:
        return self.rates.get((normalize_currency(base), normalize_currency(target)))

    def __len__(self) -> int:
        return len(self.rates)


RateRow = tuple[str, str, Decimal, datetime]


def load_exchange_rate_rows(db: Session) -> list[RateRow]:
    """All cached rates, oldest day first, in one query."""
    rows = (
        db.query(
            models.ExchangeRate.base_currency,
            models.ExchangeRate.target_currency,
            models.ExchangeRate.rate,
            models.ExchangeRate.date,
        )
        .order_by(models.ExchangeRate.date.asc(), models.ExchangeRate.fetched_at.asc())
        .all()
    )
    return [
        (normalize_currency(base), normalize_currency(target), to_decimal(rate), day)
        for base, target, rate, day in rows
    ]


def build_rate_cache(rows: Iterable[RateRow], as_of: date | datetime | None = None) -> RateCache:
    """Build a lookup from preloaded rows.

    Without ``as_of`` the newest rate per pair wins. With ``as_of`` the newest
    rate on or before that day wins, and a pair with nothing that old takes
    its earliest later rate.
    """
    cutoff = start_of_day(as_of) if as_of is not None else None
    cache = RateCache()
    for base, target, rate, day in rows:
        key = (base, target)
        if cutoff is None or day <= cutoff or key not in cache.rates:
            cache.rates[key] = rate
    return cache


def batch_load_exchange_rates(db: Session, as_of: date | datetime | None = None) -> RateCache:
    return build_rate_cache(load_exchange_rate_rows(db), as_of)


def convert_amount_with_cache(
    amount: Decimal | int | float | str,
    from_currency: str | models.Currency,
    to_currency: str | models.Currency | None,
    cache: RateCache,
) -> Decimal:
    """Convert with a preloaded cache.

    Returns the amount unconverted when the target currency or the rate is
    missing.
    """
    value = to_decimal(amount)
    if not to_currency:
        return value
    source = normalize_currency(from_currency)
    target = normalize_currency(to_currency)
    if source == target:
        return value
    rate = cache.get(source, target)
    if rate is None:
        return value
    return round_money(value * rate)


def fetch_latest_rates(base: str, symbols: Iterable[str]) -> dict[str, Decimal]:
    """Fetch the latest ``base -> symbols`` rates from Frankfurter."""
    query = urlencode({"base": base, "symbols": ",".join(symbols)})
    url = f"{settings.FRANKFURTER_BASE_URL.rstrip('/')}/latest?{query}"
    try:
        with urlopen(url, timeout=settings.HTTP_TIMEOUT_SECONDS) as response:
            payload = json.load(response)
    except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise RateProviderUnavailable("Frankfurter API unavailable") from exc

    rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(rates, dict):
        raise RateProviderUnavailable("Frankfurter response missing rates")
    return {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}


class CurrencyService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_cached_rate(self, base: str, target: str, day: datetime) -> Decimal | None:
        row = (
            self.db.query(models.ExchangeRate)
            .filter(
                models.ExchangeRate.base_currency == base,
                models.ExchangeRate.target_currency == target,
                models.ExchangeRate.date == day,
            )
            .first()
        )
        return to_decimal(row.rate) if row else None

    def get_latest_cached_rate(self, base: str, target: str) -> Decimal | None:
        row = (
            self.db.query(models.ExchangeRate)
            .filter(
                models.ExchangeRate.base_currency == base,
                models.ExchangeRate.target_currency == target,
            )
            .order_by(models.ExchangeRate.date.desc())
            .first()
        )
        return to_decimal(row.rate) if row else None

    def upsert_rates(self, base: str, rates: Mapping[str, Decimal], day: datetime) -> int:
        fetched_at = models.utcnow_naive()
        written = 0
        for target, rate in rates.items():
            if target == base or target not in SUPPORTED_CURRENCIES:
                continue
            row = (
                self.db.query(models.ExchangeRate)
                .filter(
                    models.ExchangeRate.base_currency == base,
                    models.ExchangeRate.target_currency == target,
                    models.ExchangeRate.date == day,
                )
                .first()
            )
            if row:
                row.rate = rate
                row.fetched_at = fetched_at
            else:
                self.db.add(
                    models.ExchangeRate(
                        base_currency=base,
                        target_currency=target,
                        rate=rate,
                        date=day,
                        fetched_at=fetched_at,
                    )
                )
            written += 1
        self.db.commit()
        return written

    def get_rate(self, base: str, target: str, on_date: date | datetime | None = None) -> Decimal:
        day = start_of_day(on_date)
        cached = self.get_cached_rate(base, target, day)
        if cached is not None:
            return cached
        try:
            rates = fetch_latest_rates(base, [c for c in SUPPORTED_CURRENCIES if c != base])
            self.upsert_rates(base, rates, day)
            if target not in rates:
                raise RateProviderUnavailable(f"No rate for {base}->{target}")
            return rates[target]
        except RateProviderUnavailable as exc:
            fallback = self.get_latest_cached_rate(base, target)
            if fallback is not None:
                logger.warning("Using last cached rate for %s->%s: %s", base, target, exc)
                return fallback
            raise

    def convert_amount(
        self,
        amount: Decimal | int | float | str,
        from_currency: str | models.Currency,
        to_currency: str | models.Currency,
        on_date: date | datetime | None = None,
    ) -> Decimal:
        value = to_decimal(amount)
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        if source == target:
            return value
        return round_money(value * self.get_rate(source, target, on_date))

    def refresh_exchange_rates(self) -> int:
        """Fetch and upsert today's rates for every supported pair."""
        day = start_of_day()
        written = 0
        for base in SUPPORTED_CURRENCIES:
            rates = fetch_latest_rates(base, [c for c in SUPPORTED_CURRENCIES if c != base])
            written += self.upsert_rates(base, rates, day)
        logger.info("Refreshed %d exchange rate(s)", written)
        return written

    def get_last_update_time(self) -> datetime | None:
        return self.db.query(func.max(models.ExchangeRate.fetched_at)).scalar()
