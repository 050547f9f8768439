"""Investment ledger and portfolio valuation for a child's savings."""

from .config import (
    BASE_CURRENCY,
    CURRENCY_TO_PAIR,
    DEFAULT_EXCHANGE_RATE,
    DEFAULT_INSTRUMENTS,
    FOREIGN_CURRENCY,
    Settings,
)
from .errors import (
    ChildfolioError,
    ConfigurationError,
    InsufficientUnitsError,
    LedgerIntegrityError,
    MigrationError,
    OwnershipError,
    TransactionNotFoundError,
    ValidationError,
)
from .logs import setup_logging
from .messages import MessageLevel, ServiceMessage
from .models import (
    ExchangeRate,
    Holding,
    HoldingValuation,
    Instrument,
    MilestoneTag,
    PortfolioSnapshot,
    PortfolioValuation,
    PriceQuote,
    PriceSource,
    QuoteSource,
    SnapshotKind,
    Transaction,
    TransactionDraft,
    TransactionKind,
)
from .registry import InstrumentRegistry
from .repositories import InMemoryDocumentStore, JsonFileDocumentStore, ReferencePriceRepository
from .services import (
    FinnhubQuoteProvider,
    HoldingsAggregator,
    PortfolioService,
    PriceRefreshGate,
    QuoteCache,
    SnapshotGenerator,
    TransactionLedger,
    ValuationEngine,
    YahooExchangeRateProvider,
    aggregate,
    is_refresh_due,
)

__all__ = [
    "BASE_CURRENCY",
    "CURRENCY_TO_PAIR",
    "ChildfolioError",
    "ConfigurationError",
    "DEFAULT_EXCHANGE_RATE",
    "DEFAULT_INSTRUMENTS",
    "ExchangeRate",
    "FOREIGN_CURRENCY",
    "FinnhubQuoteProvider",
    "Holding",
    "HoldingValuation",
    "HoldingsAggregator",
    "InMemoryDocumentStore",
    "InsufficientUnitsError",
    "Instrument",
    "InstrumentRegistry",
    "JsonFileDocumentStore",
    "LedgerIntegrityError",
    "MessageLevel",
    "MigrationError",
    "MilestoneTag",
    "OwnershipError",
    "PortfolioService",
    "PortfolioSnapshot",
    "PortfolioValuation",
    "PriceQuote",
    "PriceRefreshGate",
    "PriceSource",
    "QuoteCache",
    "QuoteSource",
    "ReferencePriceRepository",
    "ServiceMessage",
    "Settings",
    "SnapshotGenerator",
    "SnapshotKind",
    "Transaction",
    "TransactionDraft",
    "TransactionKind",
    "TransactionLedger",
    "TransactionNotFoundError",
    "ValidationError",
    "ValuationEngine",
    "YahooExchangeRateProvider",
    "aggregate",
    "is_refresh_due",
    "setup_logging",
]
