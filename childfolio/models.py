"""Domain models for the child investment ledger."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple

import pandas as pd

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert ints, floats and numeric strings into ``Decimal`` without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def align_datetime(value: datetime, reference: datetime) -> datetime:
    """Express ``value`` with the same tz-awareness as ``reference``.

    Naive datetimes are read as local time.
    """
    if (value.utcoffset() is None) == (reference.utcoffset() is None):
        return value
    if reference.utcoffset() is None:
        return value.astimezone().replace(tzinfo=None)
    return value.astimezone(reference.tzinfo)


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"


class MilestoneTag(str, Enum):
    FIRST_INVESTMENT = "first_investment"
    BIRTHDAY = "birthday"
    CHRISTMAS = "christmas"
    ACHIEVEMENT = "achievement"
    MONTHLY = "monthly"
    SPECIAL_MOMENT = "special_moment"


class QuoteSource(str, Enum):
    LIVE = "live"
    MANUAL = "manual"
    STALE_FALLBACK = "stale-fallback"


class PriceSource(str, Enum):
    """Level of the fallback chain that priced a holding."""

    QUOTE = "quote"
    REFERENCE = "reference"
    UNAVAILABLE = "unavailable"


class SnapshotKind(str, Enum):
    MANUAL = "manual"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Instrument:
    """A tradable instrument of the catalog.

    ``reference_price`` is expressed in ``base_currency`` and acts as the
    fallback whenever no cached quote exists. ``quote_symbol`` is the ticker
    used by the live quote provider; ``None`` means the instrument is only
    priced manually.
    """

    id: str
    ticker: str
    display_name: str
    base_currency: str
    reference_price: Decimal
    reference_price_at: Optional[datetime] = None
    quote_symbol: Optional[str] = None
    category: str = "equity"

    def __post_init__(self) -> None:
        object.__setattr__(self, "reference_price", to_decimal(self.reference_price))

    def with_reference_price(self, price: Decimal, at: datetime) -> "Instrument":
        return replace(self, reference_price=to_decimal(price), reference_price_at=at)


@dataclass(frozen=True)
class CurrencyPairConfig:
    """Configuration for converting a foreign currency into the base currency."""

    currency: str
    symbol: Optional[str]
    invert: bool = False


@dataclass
class TransactionDraft:
    """User input for a new ledger entry, before it is validated and stored."""

    instrument_id: str
    kind: TransactionKind
    units: Decimal
    price_per_unit: Decimal
    occurred_at: datetime
    currency: str = "COP"
    total_amount: Optional[Decimal] = None
    fees: Decimal = ZERO
    exchange_rate_at_entry: Optional[Decimal] = None
    note: Optional[str] = None
    milestone_tag: Optional[MilestoneTag] = None

    def __post_init__(self) -> None:
        self.kind = TransactionKind(self.kind)
        self.units = to_decimal(self.units)
        self.price_per_unit = to_decimal(self.price_per_unit)
        self.fees = to_decimal(self.fees if self.fees is not None else ZERO)
        if self.total_amount is not None:
            self.total_amount = to_decimal(self.total_amount)
        if self.exchange_rate_at_entry is not None:
            self.exchange_rate_at_entry = to_decimal(self.exchange_rate_at_entry)
        if self.milestone_tag is not None:
            self.milestone_tag = MilestoneTag(self.milestone_tag)


@dataclass(frozen=True)
class Transaction:
    """An immutable buy, sell or dividend event owned by one user."""

    id: str
    user_id: str
    instrument_id: str
    kind: TransactionKind
    units: Decimal
    price_per_unit: Decimal
    total_amount: Decimal
    currency: str
    occurred_at: datetime
    sequence: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    fees: Decimal = ZERO
    exchange_rate_at_entry: Optional[Decimal] = None
    note: Optional[str] = None
    milestone_tag: Optional[MilestoneTag] = None

    @property
    def sort_key(self) -> Tuple[datetime, int, str]:
        return (self.occurred_at, self.sequence, self.id)


@dataclass
class Holding:
    """Current position in one instrument under average-cost accounting."""

    instrument_id: str
    units: Decimal = ZERO
    cost_basis: Decimal = ZERO

    @property
    def average_cost(self) -> Decimal:
        if self.units <= 0:
            return ZERO
        return self.cost_basis / self.units


@dataclass(frozen=True)
class PriceQuote:
    instrument_id: str
    price_in_base_currency: Decimal
    fetched_at: datetime
    source: QuoteSource = QuoteSource.LIVE
    price_in_foreign_currency: Optional[Decimal] = None
    change_pct: Decimal = ZERO


@dataclass(frozen=True)
class ExchangeRate:
    """Units of ``base`` currency paid for one unit of ``quote`` currency."""

    base: str
    quote: str
    rate: Decimal
    fetched_at: Optional[datetime] = None


@dataclass(frozen=True)
class HoldingValuation:
    """A holding priced at a given moment."""

    instrument_id: str
    units: Decimal
    cost_basis: Decimal
    average_cost: Decimal
    price_per_unit: Decimal
    value_at_date: Decimal
    unrealized_gain: Decimal
    unrealized_return_pct: Decimal
    percentage_of_portfolio: Decimal
    price_source: PriceSource

    @property
    def is_priced(self) -> bool:
        return self.price_source is not PriceSource.UNAVAILABLE


@dataclass
class PortfolioValuation:
    """Aggregated totals for the entire portfolio, as handed to presentation."""

    total_invested: Decimal
    current_value: Decimal
    diversification_score: float
    holdings: list[HoldingValuation]
    as_of: datetime
    exchange_rate: Optional[Decimal] = None
    total_dividends: Decimal = ZERO
    transaction_count: int = 0
    first_transaction_at: Optional[datetime] = None
    last_transaction_at: Optional[datetime] = None
    monthly_contribution: Decimal = ZERO
    last_contribution_at: Optional[datetime] = None

    @property
    def total_return(self) -> Decimal:
        return self.current_value - self.total_invested

    @property
    def total_return_pct(self) -> Decimal:
        if self.total_invested <= 0:
            return ZERO
        return self.total_return / self.total_invested * 100

    @property
    def unpriced_instruments(self) -> list[str]:
        return [h.instrument_id for h in self.holdings if not h.is_priced]

    def to_frame(self) -> pd.DataFrame:
        """Holdings table, one row per instrument, for reporting layers."""
        columns = [
            "instrument_id",
            "units",
            "average_cost",
            "cost_basis",
            "price_per_unit",
            "value_at_date",
            "unrealized_gain",
            "unrealized_return_pct",
            "percentage_of_portfolio",
            "price_source",
        ]
        rows = [
            {
                "instrument_id": h.instrument_id,
                "units": float(h.units),
                "average_cost": float(h.average_cost),
                "cost_basis": float(h.cost_basis),
                "price_per_unit": float(h.price_per_unit),
                "value_at_date": float(h.value_at_date),
                "unrealized_gain": float(h.unrealized_gain),
                "unrealized_return_pct": float(h.unrealized_return_pct),
                "percentage_of_portfolio": float(h.percentage_of_portfolio),
                "price_source": h.price_source.value,
            }
            for h in self.holdings
        ]
        return pd.DataFrame(rows, columns=columns).set_index("instrument_id")


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Immutable point-in-time capture of a valuation."""

    id: str
    user_id: str
    taken_at: datetime
    kind: SnapshotKind
    total_value: Decimal
    total_invested: Decimal
    total_return: Decimal
    total_return_pct: Decimal
    holdings: Tuple[HoldingValuation, ...] = field(default_factory=tuple)
