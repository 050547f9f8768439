"""
Childfolio exception hierarchy.

Every exception raised by the library inherits from ChildfolioError so callers
can catch library failures in one place and still tell specific cases apart.
Refresh and price problems are never raised; they travel as ServiceMessage.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional


class ChildfolioError(Exception):
    """Base exception class for all childfolio errors."""


class ConfigurationError(ChildfolioError):
    """Raised for invalid settings (bad cutoff hour, malformed numbers)."""


class ValidationError(ChildfolioError):
    """Raised when transaction input is rejected before it reaches the ledger."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InsufficientUnitsError(ChildfolioError):
    """Raised when a sell would take more units than are held."""

    def __init__(self, instrument_id: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Cannot sell {requested} units of {instrument_id}: only {available} held"
        )
        self.instrument_id = instrument_id
        self.requested = requested
        self.available = available


class TransactionNotFoundError(ChildfolioError):
    """Raised when a corrective operation targets an unknown transaction."""


class OwnershipError(ChildfolioError):
    """Raised when a user tries to change a transaction they do not own."""


class LedgerIntegrityError(ChildfolioError):
    """Raised when data that validation should have stopped reaches the aggregator."""


class MigrationError(ChildfolioError):
    """Raised when a persisted document cannot be migrated to the current version."""
