"""Time-gated price refresh and the shared quote cache."""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from loguru import logger

from ..config import (
    BASE_CURRENCY,
    DEFAULT_EXCHANGE_RATE,
    DEFAULT_REFRESH_CUTOFF_HOUR,
    FOREIGN_CURRENCY,
    Settings,
)
from ..messages import MessageLevel, ServiceMessage
from ..models import ExchangeRate, Instrument, PriceQuote, QuoteSource, align_datetime, to_decimal
from ..registry import InstrumentRegistry
from ..versioning import unwrap, wrap
from .market_data import ExchangeRateProvider, QuoteProvider


def refresh_cutoff(now: datetime, cutoff_hour: int = DEFAULT_REFRESH_CUTOFF_HOUR) -> datetime:
    """Most recent cutoff instant at or before ``now``."""
    cutoff = now.replace(hour=cutoff_hour, minute=0, second=0, microsecond=0)
    if now < cutoff:
        cutoff -= timedelta(days=1)
    return cutoff


def is_refresh_due(
    last_fetched_at: Optional[datetime],
    now: datetime,
    cutoff_hour: int = DEFAULT_REFRESH_CUTOFF_HOUR,
) -> bool:
    """A refresh is due once per cutoff-anchored day, never on a rolling window."""
    if last_fetched_at is None:
        return True
    return align_datetime(last_fetched_at, now) < refresh_cutoff(now, cutoff_hour)


class PriceLookup(Protocol):
    def quote_for(self, instrument_id: str) -> Optional[PriceQuote]: ...


class QuoteCache:
    """Last known-good quotes and exchange rate.

    Writers build a new mapping and swap it in under a lock, so readers keep
    seeing the previous state until a merge completes. Merges only move
    forward in time: a quote is never replaced by one fetched earlier.
    """

    def __init__(
        self,
        quotes: Optional[Mapping[str, PriceQuote]] = None,
        exchange_rate: Optional[ExchangeRate] = None,
        last_fetched_at: Optional[datetime] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._quotes: Mapping[str, PriceQuote] = MappingProxyType(dict(quotes or {}))
        self._exchange_rate = exchange_rate
        self._last_fetched_at = last_fetched_at

    def quote_for(self, instrument_id: str) -> Optional[PriceQuote]:
        return self._quotes.get(instrument_id)

    get = quote_for

    def quotes(self) -> Mapping[str, PriceQuote]:
        return self._quotes

    @property
    def exchange_rate(self) -> Optional[ExchangeRate]:
        return self._exchange_rate

    @property
    def last_fetched_at(self) -> Optional[datetime]:
        return self._last_fetched_at

    def merge(
        self,
        quotes: Iterable[PriceQuote],
        exchange_rate: Optional[ExchangeRate] = None,
        fetched_at: Optional[datetime] = None,
    ) -> int:
        """Fold ``quotes`` into the cache; returns how many entries changed."""
        with self._lock:
            updated = dict(self._quotes)
            changed = 0
            for quote in quotes:
                current = updated.get(quote.instrument_id)
                if current is not None and align_datetime(current.fetched_at, quote.fetched_at) > quote.fetched_at:
                    logger.debug("Ignoring stale quote for {} from {}", quote.instrument_id, quote.fetched_at)
                    continue
                updated[quote.instrument_id] = quote
                changed += 1

            rate = self._exchange_rate
            if exchange_rate is not None and (
                rate is None
                or rate.fetched_at is None
                or exchange_rate.fetched_at is None
                or exchange_rate.fetched_at >= align_datetime(rate.fetched_at, exchange_rate.fetched_at)
            ):
                rate = exchange_rate

            last = self._last_fetched_at
            if fetched_at is not None and (last is None or fetched_at > align_datetime(last, fetched_at)):
                last = fetched_at

            self._quotes = MappingProxyType(updated)
            self._exchange_rate = rate
            self._last_fetched_at = last
            return changed

    def set_manual_price(self, instrument_id: str, price: Decimal, at: datetime) -> PriceQuote:
        """Record a user-entered price; it wins over whatever is cached."""
        quote = PriceQuote(
            instrument_id=instrument_id,
            price_in_base_currency=to_decimal(price),
            fetched_at=at,
            source=QuoteSource.MANUAL,
        )
        with self._lock:
            updated = dict(self._quotes)
            updated[instrument_id] = quote
            self._quotes = MappingProxyType(updated)
        return quote

    def to_document(self) -> Dict[str, Any]:
        rate = self._exchange_rate
        return wrap(
            "quote_cache",
            {
                "last_fetched_at": None if self._last_fetched_at is None else self._last_fetched_at.isoformat(),
                "exchange_rate": None
                if rate is None
                else {
                    "base": rate.base,
                    "quote": rate.quote,
                    "rate": str(rate.rate),
                    "fetched_at": None if rate.fetched_at is None else rate.fetched_at.isoformat(),
                },
                "quotes": [
                    {
                        "instrument_id": q.instrument_id,
                        "price_in_base_currency": str(q.price_in_base_currency),
                        "price_in_foreign_currency": None
                        if q.price_in_foreign_currency is None
                        else str(q.price_in_foreign_currency),
                        "change_pct": str(q.change_pct),
                        "fetched_at": q.fetched_at.isoformat(),
                        "source": q.source.value,
                    }
                    for q in self._quotes.values()
                ],
            },
        )

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "QuoteCache":
        payload = unwrap(document, "quote_cache")
        raw_rate = payload.get("exchange_rate")
        rate = None
        if raw_rate:
            rate = ExchangeRate(
                base=raw_rate["base"],
                quote=raw_rate["quote"],
                rate=Decimal(raw_rate["rate"]),
                fetched_at=datetime.fromisoformat(raw_rate["fetched_at"]) if raw_rate.get("fetched_at") else None,
            )
        quotes = {
            q["instrument_id"]: PriceQuote(
                instrument_id=q["instrument_id"],
                price_in_base_currency=Decimal(q["price_in_base_currency"]),
                price_in_foreign_currency=Decimal(q["price_in_foreign_currency"])
                if q.get("price_in_foreign_currency") is not None
                else None,
                change_pct=Decimal(q.get("change_pct", "0")),
                fetched_at=datetime.fromisoformat(q["fetched_at"]),
                source=QuoteSource(q["source"]),
            )
            for q in payload.get("quotes", [])
        }
        last = payload.get("last_fetched_at")
        return cls(quotes, rate, datetime.fromisoformat(last) if last else None)


@dataclass
class RefreshResult:
    quotes: Dict[str, PriceQuote] = field(default_factory=dict)
    exchange_rate: Optional[ExchangeRate] = None
    errors: List[ServiceMessage] = field(default_factory=list)
    fetched_at: Optional[datetime] = None
    performed: bool = False


def _now() -> datetime:
    return datetime.now()


class PriceRefreshGate:
    """Decides when to hit the price feed and merges what comes back.

    The exchange-rate fetch and every instrument fetch fail independently;
    failures are reported in ``RefreshResult.errors`` and never raised.
    """

    def __init__(
        self,
        quote_provider: QuoteProvider,
        fx_provider: ExchangeRateProvider,
        cache: QuoteCache,
        registry: InstrumentRegistry,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _now,
        base_currency: str = BASE_CURRENCY,
        foreign_currency: str = FOREIGN_CURRENCY,
    ) -> None:
        self._quote_provider = quote_provider
        self._fx_provider = fx_provider
        self._cache = cache
        self._registry = registry
        self._settings = settings or Settings()
        self._clock = clock
        self._base_currency = base_currency
        self._foreign_currency = foreign_currency

    @property
    def cache(self) -> QuoteCache:
        return self._cache

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return is_refresh_due(
            self._cache.last_fetched_at,
            now or self._clock(),
            self._settings.refresh_cutoff_hour,
        )

    async def refresh_if_due(
        self,
        instrument_ids: Iterable[str],
        api_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RefreshResult:
        if not self.is_due(now):
            logger.debug("Price refresh skipped; already refreshed since the last cutoff")
            return RefreshResult()
        return await self.refresh(instrument_ids, api_key=api_key)

    async def refresh(self, instrument_ids: Iterable[str], api_key: Optional[str] = None) -> RefreshResult:
        key = api_key or self._settings.finnhub_api_key
        ids = list(dict.fromkeys(instrument_ids))
        if not key:
            logger.info("No market data API key configured; price refresh skipped")
            return RefreshResult()

        fetched_at = self._clock()
        result = RefreshResult(fetched_at=fetched_at, performed=True)
        if not ids:
            return result

        result.exchange_rate = await self._refresh_exchange_rate(fetched_at, result.errors)
        rate = result.exchange_rate or self._cache.exchange_rate
        rate_value = rate.rate if rate is not None else DEFAULT_EXCHANGE_RATE

        targets: List[Instrument] = []
        for instrument_id in ids:
            instrument = self._registry.get(instrument_id)
            if instrument is None:
                result.errors.append(
                    ServiceMessage(MessageLevel.WARNING, f"Unknown instrument {instrument_id}; no price fetched.", instrument_id)
                )
            elif instrument.quote_symbol:
                targets.append(instrument)

        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._quote_provider.fetch_quote, item.quote_symbol, key) for item in targets),
            return_exceptions=True,
        )

        fresh: List[PriceQuote] = []
        failed: List[str] = []
        for instrument, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException) or outcome is None:
                if isinstance(outcome, BaseException):
                    logger.warning("Quote fetch for {} failed: {!r}", instrument.quote_symbol, outcome)
                failed.append(instrument.id)
                cached = self._cache.quote_for(instrument.id)
                if cached is not None:
                    result.quotes[instrument.id] = replace(cached, source=QuoteSource.STALE_FALLBACK)
                continue
            quote = self._to_quote(instrument, outcome.price, outcome.change_pct, rate_value, fetched_at)
            fresh.append(quote)
            result.quotes[instrument.id] = quote

        if failed:
            level = MessageLevel.ERROR if len(failed) == len(targets) else MessageLevel.WARNING
            text = (
                "No quotes could be fetched; showing last known prices."
                if level is MessageLevel.ERROR
                else f"Could not fetch prices for: {', '.join(failed)}"
            )
            result.errors.append(ServiceMessage(level, text))

        changed = self._cache.merge(fresh, exchange_rate=result.exchange_rate, fetched_at=fetched_at)
        logger.info(
            "Price refresh merged {} of {} quotes ({} failed)", changed, len(targets), len(failed)
        )
        return result

    async def _refresh_exchange_rate(
        self, fetched_at: datetime, errors: List[ServiceMessage]
    ) -> Optional[ExchangeRate]:
        try:
            value = await asyncio.to_thread(self._fx_provider.fetch_rate, self._foreign_currency)
        except Exception as exc:  # noqa: BLE001 - reported as a service message
            logger.warning("Exchange rate fetch failed: {!r}", exc)
            errors.append(
                ServiceMessage(
                    MessageLevel.WARNING,
                    f"Could not fetch {self._foreign_currency}/{self._base_currency} rate ({exc}); using last known rate.",
                )
            )
            return None
        if value is None or value <= 0:
            errors.append(ServiceMessage(MessageLevel.WARNING, f"Invalid exchange rate received: {value}"))
            return None
        return ExchangeRate(self._base_currency, self._foreign_currency, to_decimal(value), fetched_at)

    def _to_quote(
        self,
        instrument: Instrument,
        price: Decimal,
        change_pct: Decimal,
        rate: Decimal,
        fetched_at: datetime,
    ) -> PriceQuote:
        if instrument.base_currency == self._foreign_currency:
            return PriceQuote(
                instrument_id=instrument.id,
                price_in_base_currency=price * rate,
                price_in_foreign_currency=price,
                change_pct=change_pct,
                fetched_at=fetched_at,
                source=QuoteSource.LIVE,
            )
        return PriceQuote(
            instrument_id=instrument.id,
            price_in_base_currency=price,
            change_pct=change_pct,
            fetched_at=fetched_at,
            source=QuoteSource.LIVE,
        )
