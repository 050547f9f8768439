"""Append-only, per-user ledger of buy, sell and dividend events."""
from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config import BASE_CURRENCY, FOREIGN_CURRENCY
from ..errors import (
    InsufficientUnitsError,
    OwnershipError,
    TransactionNotFoundError,
    ValidationError,
)
from ..models import (
    CENT,
    ZERO,
    MilestoneTag,
    Transaction,
    TransactionDraft,
    TransactionKind,
    to_decimal,
)
from ..registry import InstrumentRegistry
from ..repositories import DocumentStore, transaction_from_dict, transaction_to_dict
from ..versioning import unwrap, wrap
from .aggregation import aggregate

TRANSACTIONS = "transactions"
HOLDINGS = "holdings"
LEDGER_STATE = "ledger_state"
COUNTERS = "counters"

_IMMUTABLE_FIELDS = frozenset({"id", "user_id", "sequence", "created_at", "updated_at"})
_AMENDABLE_FIELDS = frozenset(
    {
        "instrument_id",
        "kind",
        "units",
        "price_per_unit",
        "total_amount",
        "currency",
        "occurred_at",
        "fees",
        "exchange_rate_at_entry",
        "note",
        "milestone_tag",
    }
)


def _now() -> datetime:
    return datetime.now()


class TransactionLedger:
    """Source of truth for a user's investment history.

    Every mutation is validated up front and checked against the full
    history, so the persisted set always aggregates without error. Callers
    re-derive holdings after a mutation; nothing is recomputed here.

    The ledger version and the last assigned sequence live in the store next
    to the transactions, so every ledger instance sharing a store sees the
    same counters.
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: Optional[InstrumentRegistry] = None,
        clock: Callable[[], datetime] = _now,
        base_currency: str = BASE_CURRENCY,
        foreign_currency: str = FOREIGN_CURRENCY,
    ) -> None:
        self._store = store
        self._registry = registry
        self._clock = clock
        self._currencies = {base_currency, foreign_currency}
        self._lock = threading.Lock()

    # ------------------ Queries ------------------ #

    def version(self, user_id: str) -> int:
        return self._counters(user_id)[0]

    def list(
        self,
        user_id: str,
        instrument_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Transaction]:
        """All transactions of ``user_id`` matching the filters, in storage order."""
        transactions = [
            transaction_from_dict(unwrap(doc, "transaction"))
            for doc in self._store.list(user_id, TRANSACTIONS)
        ]
        if instrument_id is not None:
            transactions = [tx for tx in transactions if tx.instrument_id == instrument_id]
        if start is not None:
            transactions = [tx for tx in transactions if tx.occurred_at >= start]
        if end is not None:
            transactions = [tx for tx in transactions if tx.occurred_at <= end]
        return transactions

    def get(self, user_id: str, transaction_id: str) -> Transaction:
        doc = self._store.get(user_id, TRANSACTIONS, transaction_id)
        if doc is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        tx = transaction_from_dict(unwrap(doc, "transaction"))
        if tx.user_id != user_id:
            raise OwnershipError(f"Transaction {transaction_id} does not belong to {user_id}")
        return tx

    # ------------------ Mutations ------------------ #

    def append(self, user_id: str, draft: TransactionDraft) -> Transaction:
        now = self._clock()
        total_amount = self._validate(
            kind=draft.kind,
            instrument_id=draft.instrument_id,
            units=draft.units,
            price_per_unit=draft.price_per_unit,
            total_amount=draft.total_amount,
            fees=draft.fees,
            currency=draft.currency,
            occurred_at=draft.occurred_at,
            now=now,
        )

        with self._lock:
            existing = self.list(user_id)
            version, last_sequence = self._counters(user_id)
            sequence = max(last_sequence, max((tx.sequence for tx in existing), default=0)) + 1
            tx = Transaction(
                id=uuid.uuid4().hex,
                user_id=user_id,
                instrument_id=draft.instrument_id,
                kind=draft.kind,
                units=draft.units,
                price_per_unit=draft.price_per_unit,
                total_amount=total_amount,
                currency=draft.currency,
                occurred_at=draft.occurred_at,
                sequence=sequence,
                created_at=now,
                fees=draft.fees,
                exchange_rate_at_entry=draft.exchange_rate_at_entry,
                note=draft.note,
                milestone_tag=draft.milestone_tag,
            )
            self._check_history(user_id, existing + [tx])

            self._store.put(user_id, TRANSACTIONS, tx.id, wrap("transaction", transaction_to_dict(tx)))
            if tx.kind is TransactionKind.BUY:
                self._bootstrap_holding(user_id, tx)
            self._save_counters(user_id, version + 1, sequence)

        logger.bind(user_id=user_id).info("Recorded {} of {} {}", tx.kind.value, tx.units, tx.instrument_id)
        return tx

    def amend(self, user_id: str, transaction_id: str, /, **changes: Any) -> Transaction:
        """Correct fields of an owned transaction; the result is revalidated in full.

        ``user_id`` and ``transaction_id`` are positional-only so that an
        attempt to amend a field of the same name reaches validation.
        """
        current = self.get(user_id, transaction_id)

        forbidden = set(changes) & _IMMUTABLE_FIELDS
        if forbidden:
            raise ValidationError(f"Fields cannot be amended: {', '.join(sorted(forbidden))}", field=sorted(forbidden)[0])
        unknown = set(changes) - _AMENDABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

        values = self._coerce(changes)
        pricing_changed = {"units", "price_per_unit", "fees", "kind"} & set(values)
        if "total_amount" not in values and pricing_changed:
            values["total_amount"] = None
        candidate = replace(current, **{k: v for k, v in values.items() if k != "total_amount"})

        now = self._clock()
        total_amount = self._validate(
            kind=candidate.kind,
            instrument_id=candidate.instrument_id,
            units=candidate.units,
            price_per_unit=candidate.price_per_unit,
            total_amount=values.get("total_amount", current.total_amount),
            fees=candidate.fees,
            currency=candidate.currency,
            occurred_at=candidate.occurred_at,
            now=now,
        )
        amended = replace(candidate, total_amount=total_amount, updated_at=now)

        with self._lock:
            others = [tx for tx in self.list(user_id) if tx.id != transaction_id]
            self._check_history(user_id, others + [amended])

            self._store.put(user_id, TRANSACTIONS, amended.id, wrap("transaction", transaction_to_dict(amended)))
            self._bump(user_id)

        logger.bind(user_id=user_id).info("Amended transaction {}: {}", transaction_id, ", ".join(sorted(changes)))
        return amended

    def remove(self, user_id: str, transaction_id: str) -> Transaction:
        current = self.get(user_id, transaction_id)
        with self._lock:
            remaining = [tx for tx in self.list(user_id) if tx.id != transaction_id]
            self._check_history(user_id, remaining)

            self._store.delete(user_id, TRANSACTIONS, transaction_id)
            self._bump(user_id)

        logger.bind(user_id=user_id).info("Removed transaction {}", transaction_id)
        return current

    # ------------------ Internals ------------------ #

    def _validate(
        self,
        *,
        kind: TransactionKind,
        instrument_id: str,
        units: Decimal,
        price_per_unit: Decimal,
        total_amount: Optional[Decimal],
        fees: Decimal,
        currency: str,
        occurred_at: datetime,
        now: datetime,
    ) -> Decimal:
        """Check a transaction's fields and return its total amount."""
        if not instrument_id:
            raise self._reject("Instrument id is required", "instrument_id")
        if self._registry is not None and instrument_id not in self._registry:
            raise self._reject(f"Unknown instrument: {instrument_id}", "instrument_id")
        if currency not in self._currencies:
            raise self._reject(f"Unsupported currency: {currency}", "currency")
        if (occurred_at.utcoffset() is None) != (now.utcoffset() is None):
            expected = "timezone-aware" if now.utcoffset() is not None else "naive"
            raise self._reject(
                f"Transaction date {occurred_at.isoformat()} must be {expected} like the ledger clock",
                "occurred_at",
            )
        if occurred_at > now:
            raise self._reject(f"Transaction date {occurred_at.isoformat()} is in the future", "occurred_at")
        if fees < 0:
            raise self._reject("Fees cannot be negative", "fees")

        if kind is TransactionKind.DIVIDEND:
            if units != 0:
                raise self._reject("Dividends must have zero units", "units")
            if total_amount is None or total_amount <= 0:
                raise self._reject("Dividend amount must be greater than zero", "total_amount")
            return total_amount

        if units <= 0:
            raise self._reject("Units must be greater than zero", "units")
        if price_per_unit <= 0:
            raise self._reject("Price per unit must be greater than zero", "price_per_unit")

        expected = units * price_per_unit + fees
        if total_amount is None:
            total_amount = expected
        elif abs(total_amount - expected) >= CENT:
            raise self._reject(
                f"Total amount {total_amount} does not match units * price + fees ({expected})",
                "total_amount",
            )
        if total_amount <= 0:
            raise self._reject("Total amount must be greater than zero", "total_amount")
        return total_amount

    @staticmethod
    def _reject(message: str, field: str) -> ValidationError:
        logger.warning("Rejected transaction: {}", message)
        return ValidationError(message, field=field)

    @staticmethod
    def _coerce(changes: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(changes)
        for key in ("units", "price_per_unit", "fees"):
            if key in values:
                values[key] = to_decimal(values[key] if values[key] is not None else ZERO)
        for key in ("total_amount", "exchange_rate_at_entry"):
            if values.get(key) is not None:
                values[key] = to_decimal(values[key])
        if "kind" in values:
            values["kind"] = TransactionKind(values["kind"])
        if values.get("milestone_tag") is not None:
            values["milestone_tag"] = MilestoneTag(values["milestone_tag"])
        return values

    @staticmethod
    def _check_history(user_id: str, transactions: List[Transaction]) -> None:
        try:
            aggregate(transactions)
        except InsufficientUnitsError:
            logger.bind(user_id=user_id).warning("Rejected ledger change: history would oversell")
            raise

    def _counters(self, user_id: str) -> Tuple[int, int]:
        """Persisted ``(version, last_sequence)`` of ``user_id``'s ledger."""
        doc = self._store.get(user_id, LEDGER_STATE, COUNTERS)
        if doc is None:
            return 0, 0
        payload = unwrap(doc, "ledger_state")
        return int(payload["version"]), int(payload["sequence"])

    def _save_counters(self, user_id: str, version: int, sequence: int) -> None:
        self._store.put(
            user_id,
            LEDGER_STATE,
            COUNTERS,
            wrap("ledger_state", {"version": version, "sequence": sequence}),
        )

    def _bump(self, user_id: str) -> None:
        version, sequence = self._counters(user_id)
        self._save_counters(user_id, version + 1, sequence)

    def _bootstrap_holding(self, user_id: str, tx: Transaction) -> None:
        if self._store.get(user_id, HOLDINGS, tx.instrument_id) is not None:
            return
        self._store.put(
            user_id,
            HOLDINGS,
            tx.instrument_id,
            wrap(
                "holding",
                {"instrument_id": tx.instrument_id, "first_purchased_at": tx.occurred_at.isoformat()},
            ),
        )
        logger.debug("Created holding placeholder for {} / {}", user_id, tx.instrument_id)
