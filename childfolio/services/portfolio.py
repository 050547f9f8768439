"""Portfolio summary assembled from the ledger, aggregator and valuation engine."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from dateutil.relativedelta import relativedelta

from ..config import DEFAULT_EXCHANGE_RATE
from ..models import ZERO, PortfolioValuation, TransactionKind
from .aggregation import HoldingsAggregator
from .ledger import TransactionLedger
from .pricing import PriceLookup
from . import reports
from .reports import InstrumentYearBreakdown, YearSummary
from .valuation import ValuationEngine


def resolve_exchange_rate(prices: PriceLookup, exchange_rate: Optional[Decimal]) -> Decimal:
    """Explicit rate first, then the one cached next to the quotes, then the default."""
    if exchange_rate is not None:
        return exchange_rate
    cached = getattr(prices, "exchange_rate", None)
    if cached is not None:
        return cached.rate
    return DEFAULT_EXCHANGE_RATE


class PortfolioService:
    """Builds the summary object the presentation layer depends on."""

    def __init__(
        self,
        ledger: TransactionLedger,
        aggregator: HoldingsAggregator,
        engine: ValuationEngine,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ledger = ledger
        self._aggregator = aggregator
        self._engine = engine
        self._clock = clock

    def summary(
        self,
        user_id: str,
        prices: PriceLookup,
        exchange_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> PortfolioValuation:
        now = now or self._clock()
        valuation = self._engine.valuate(
            self._aggregator.holdings(user_id),
            prices,
            resolve_exchange_rate(prices, exchange_rate),
            as_of=now,
            dividends=self._aggregator.dividends(user_id),
        )

        transactions = self._ledger.list(user_id)
        valuation.transaction_count = len(transactions)
        if transactions:
            valuation.first_transaction_at = min(tx.occurred_at for tx in transactions)
            valuation.last_transaction_at = max(tx.occurred_at for tx in transactions)

        buys = [tx for tx in transactions if tx.kind is TransactionKind.BUY]
        month_ago = now - relativedelta(months=1)
        valuation.monthly_contribution = sum(
            (tx.total_amount for tx in buys if tx.occurred_at >= month_ago), ZERO
        )
        if buys:
            valuation.last_contribution_at = max(tx.occurred_at for tx in buys)
        return valuation

    # ------------------ Annual report ------------------ #

    def available_years(self, user_id: str) -> List[int]:
        return reports.available_years(self._ledger.list(user_id))

    def year_summary(self, user_id: str, year: int) -> YearSummary:
        return reports.year_summary(self._ledger.list(user_id), year)

    def year_breakdown(self, user_id: str, year: int) -> List[InstrumentYearBreakdown]:
        return reports.year_breakdown(self._ledger.list(user_id), year, self._engine.registry)
