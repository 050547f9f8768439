"""Shared test fixtures for childfolio."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from childfolio import (
    HoldingsAggregator,
    InMemoryDocumentStore,
    InstrumentRegistry,
    PortfolioService,
    SnapshotGenerator,
    TransactionDraft,
    TransactionKind,
    TransactionLedger,
    ValuationEngine,
)
from childfolio.services.market_data import RawQuote


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeQuoteProvider:
    def __init__(self, prices=None, failing=()):
        self.prices = {k: Decimal(str(v)) for k, v in (prices or {}).items()}
        self.failing = set(failing)
        self.calls = []

    def fetch_quote(self, symbol, api_key):
        self.calls.append((symbol, api_key))
        if symbol in self.failing:
            raise ConnectionError(f"{symbol} unavailable")
        price = self.prices.get(symbol)
        if price is None:
            return None
        return RawQuote(
            symbol=symbol,
            price=price,
            change=Decimal("1"),
            change_pct=Decimal("0.5"),
            previous_close=price - 1,
            timestamp=datetime(2024, 3, 1),
        )


class FakeFxProvider:
    def __init__(self, rate="4000", fail=False):
        self.rate = Decimal(rate)
        self.fail = fail
        self.calls = 0

    def fetch_rate(self, currency):
        self.calls += 1
        if self.fail:
            raise TimeoutError("fx service down")
        return self.rate


def draft(instrument_id, kind, units, price, occurred_at, **kwargs):
    return TransactionDraft(
        instrument_id=instrument_id,
        kind=TransactionKind(kind),
        units=Decimal(str(units)),
        price_per_unit=Decimal(str(price)),
        occurred_at=occurred_at,
        **kwargs,
    )


def dividend(instrument_id, amount, occurred_at):
    return draft(instrument_id, "dividend", 0, 0, occurred_at, total_amount=Decimal(str(amount)))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 6, 15, 10, 0))


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def registry():
    return InstrumentRegistry()


@pytest.fixture
def ledger(store, registry, clock):
    return TransactionLedger(store, registry=registry, clock=clock)


@pytest.fixture
def aggregator(ledger):
    return HoldingsAggregator(ledger)


@pytest.fixture
def engine(registry):
    return ValuationEngine(registry)


@pytest.fixture
def service(ledger, aggregator, engine, clock):
    return PortfolioService(ledger, aggregator, engine, clock=clock)


@pytest.fixture
def snapshots(aggregator, engine, store, clock):
    return SnapshotGenerator(aggregator, engine, store, clock=clock)
