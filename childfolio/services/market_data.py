"""Adapters for the external quote and exchange-rate sources."""
from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol, TypeVar

import requests
import yfinance as yf
from loguru import logger

from ..config import CURRENCY_TO_PAIR, FINNHUB_BASE_URL
from ..models import CurrencyPairConfig

T = TypeVar("T")


class TransientFetchError(Exception):
    """A failure worth retrying (rate limit, server error, dropped connection)."""


@dataclass(frozen=True)
class RawQuote:
    """A quote as returned by the provider, in the instrument's listing currency."""

    symbol: str
    price: Decimal
    change: Decimal
    change_pct: Decimal
    previous_close: Decimal
    timestamp: datetime


class QuoteProvider(Protocol):
    def fetch_quote(self, symbol: str, api_key: str) -> Optional[RawQuote]: ...


class ExchangeRateProvider(Protocol):
    def fetch_rate(self, currency: str) -> Decimal: ...


def with_retry(
    fn: Callable[[], T],
    retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying TransientFetchError with exponential backoff and jitter."""
    for attempt in range(retries + 1):
        try:
            return fn()
        except TransientFetchError as exc:
            if attempt == retries:
                raise
            delay = min(base_delay * (2 ** attempt) * (0.75 + random.random() * 0.5), max_delay)
            logger.debug("Retrying after {!r} (attempt {}, waiting {:.2f}s)", exc, attempt + 1, delay)
            sleep(delay)
    raise AssertionError("unreachable")


class FinnhubQuoteProvider:
    """Fetches last-trade quotes from the Finnhub REST API."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = FINNHUB_BASE_URL,
        retries: int = 2,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._retries = retries
        self._timeout = timeout
        self._sleep = sleep

    def fetch_quote(self, symbol: str, api_key: str) -> Optional[RawQuote]:
        def call() -> Dict:
            try:
                response = self._session.get(
                    f"{self._base_url}/quote",
                    params={"symbol": symbol, "token": api_key},
                    timeout=self._timeout,
                )
            except requests.ConnectionError as exc:
                raise TransientFetchError(str(exc)) from exc
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientFetchError(f"HTTP {response.status_code}")
            response.raise_for_status()
            return response.json()

        data = with_retry(call, retries=self._retries, sleep=self._sleep)

        price = Decimal(str(data.get("c") or 0))
        previous_close = Decimal(str(data.get("pc") or 0))
        # Finnhub answers unknown symbols with an all-zero payload.
        if price == 0 and previous_close == 0:
            logger.warning("Symbol not found on Finnhub: {}", symbol)
            return None

        change = Decimal(str(data["d"])) if data.get("d") is not None else price - previous_close
        if data.get("dp") is not None:
            change_pct = Decimal(str(data["dp"]))
        elif previous_close:
            change_pct = (price - previous_close) / previous_close * 100
        else:
            change_pct = Decimal("0")
        return RawQuote(
            symbol=symbol,
            price=price,
            change=change,
            change_pct=change_pct,
            previous_close=previous_close,
            timestamp=datetime.fromtimestamp(int(data.get("t") or 0), tz=timezone.utc),
        )


class YahooExchangeRateProvider:
    """Reads the latest close of the configured Yahoo FX pair."""

    def __init__(self, pair_config: Dict[str, CurrencyPairConfig] | None = None, period: str = "5d") -> None:
        self._pair_config = pair_config or CURRENCY_TO_PAIR
        self._period = period

    def fetch_rate(self, currency: str) -> Decimal:
        config = self._pair_config.get(currency)
        if not config or not config.symbol:
            raise ValueError(f"No currency pair configured for {currency}")

        hist = yf.Ticker(config.symbol).history(period=self._period)
        if hist.empty or "Close" not in hist:
            raise ValueError(f"empty history for {config.symbol}")
        closes = hist["Close"].astype(float).replace(0.0, float("nan")).dropna()
        if closes.empty:
            raise ValueError(f"no usable close for {config.symbol}")

        rate = Decimal(str(closes.iloc[-1]))
        if config.invert:
            rate = Decimal(1) / rate
        return rate
