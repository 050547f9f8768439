"""Reduction of the transaction ledger into current holdings."""
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..errors import InsufficientUnitsError, LedgerIntegrityError
from ..models import ZERO, Holding, Transaction, TransactionKind

if TYPE_CHECKING:
    from .ledger import TransactionLedger


def sort_transactions(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Chronological order; same-instant events keep their ledger sequence."""
    return sorted(transactions, key=lambda tx: tx.sort_key)


def aggregate(transactions: Iterable[Transaction]) -> Dict[str, Holding]:
    """Replay ``transactions`` with average-cost accounting.

    Returns active holdings keyed by instrument id; instruments whose units
    went back to zero are left out. The input is never mutated and nothing is
    returned when a sell exceeds the units held at that point.
    """
    positions: Dict[str, Holding] = {}

    for tx in sort_transactions(transactions):
        if tx.units < 0:
            logger.critical("Transaction {} reached the aggregator with negative units {}", tx.id, tx.units)
            raise LedgerIntegrityError(f"Transaction {tx.id} has negative units: {tx.units}")

        holding = positions.setdefault(tx.instrument_id, Holding(tx.instrument_id))

        if tx.kind is TransactionKind.BUY:
            holding.units += tx.units
            holding.cost_basis += tx.total_amount
        elif tx.kind is TransactionKind.SELL:
            if tx.units > holding.units:
                raise InsufficientUnitsError(tx.instrument_id, tx.units, holding.units)
            average_cost = holding.average_cost
            holding.units -= tx.units
            if holding.units == 0:
                holding.cost_basis = ZERO
            else:
                holding.cost_basis -= average_cost * tx.units
        elif tx.kind is TransactionKind.DIVIDEND:
            # Realized cash flow, tracked by total_dividends().
            continue
        else:
            logger.critical("Transaction {} has unsupported kind {!r}", tx.id, tx.kind)
            raise LedgerIntegrityError(f"Unsupported transaction kind: {tx.kind!r}")

    return {instrument_id: h for instrument_id, h in positions.items() if h.units > 0}


def total_dividends(transactions: Iterable[Transaction], instrument_id: Optional[str] = None) -> Decimal:
    return sum(
        (
            tx.total_amount
            for tx in transactions
            if tx.kind is TransactionKind.DIVIDEND
            and (instrument_id is None or tx.instrument_id == instrument_id)
        ),
        ZERO,
    )


class HoldingsAggregator:
    """Caches aggregation results per user, keyed by the ledger version.

    Any ledger mutation bumps the version, so a cached entry is only reused
    while the persisted transaction set is unchanged.
    """

    def __init__(self, ledger: "TransactionLedger") -> None:
        self._ledger = ledger
        self._cache: Dict[str, Tuple[int, Dict[str, Holding], Decimal]] = {}
        self.computations = 0

    def _entry(self, user_id: str) -> Tuple[int, Dict[str, Holding], Decimal]:
        version = self._ledger.version(user_id)
        cached = self._cache.get(user_id)
        if cached is not None and cached[0] == version:
            return cached

        transactions = self._ledger.list(user_id)
        entry = (version, aggregate(transactions), total_dividends(transactions))
        self._cache[user_id] = entry
        self.computations += 1
        logger.debug("Aggregated {} transactions for {} at ledger version {}", len(transactions), user_id, version)
        return entry

    def holdings(self, user_id: str) -> Dict[str, Holding]:
        _, holdings, _ = self._entry(user_id)
        return {
            key: Holding(h.instrument_id, h.units, h.cost_basis)
            for key, h in holdings.items()
        }

    def dividends(self, user_id: str) -> Decimal:
        return self._entry(user_id)[2]

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)
