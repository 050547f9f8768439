"""Service layer of the investment ledger."""
from .aggregation import HoldingsAggregator, aggregate, sort_transactions, total_dividends
from .ledger import TransactionLedger
from .market_data import (
    FinnhubQuoteProvider,
    RawQuote,
    TransientFetchError,
    YahooExchangeRateProvider,
    with_retry,
)
from .portfolio import PortfolioService
from .pricing import (
    PriceLookup,
    PriceRefreshGate,
    QuoteCache,
    RefreshResult,
    is_refresh_due,
    refresh_cutoff,
)
from .projection import Projection, generate_projections, project_future_value
from .reports import (
    InstrumentYearBreakdown,
    YearSummary,
    available_years,
    breakdown_frame,
    year_breakdown,
    year_summary,
)
from .snapshots import SnapshotGenerator, snapshots_frame
from .valuation import ValuationEngine, diversification_score

__all__ = [
    "FinnhubQuoteProvider",
    "HoldingsAggregator",
    "InstrumentYearBreakdown",
    "PortfolioService",
    "PriceLookup",
    "PriceRefreshGate",
    "Projection",
    "QuoteCache",
    "RawQuote",
    "RefreshResult",
    "SnapshotGenerator",
    "TransactionLedger",
    "TransientFetchError",
    "ValuationEngine",
    "YahooExchangeRateProvider",
    "YearSummary",
    "aggregate",
    "available_years",
    "breakdown_frame",
    "diversification_score",
    "generate_projections",
    "is_refresh_due",
    "project_future_value",
    "refresh_cutoff",
    "snapshots_frame",
    "sort_transactions",
    "total_dividends",
    "with_retry",
    "year_breakdown",
    "year_summary",
]
