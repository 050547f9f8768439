"""Repositories responsible for persisting and loading ledger data."""
from __future__ import annotations

import json
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import pandas as pd

from .config import Settings
from .messages import MessageLevel, ServiceMessage
from .models import (
    HoldingValuation,
    Instrument,
    MilestoneTag,
    PortfolioSnapshot,
    PriceSource,
    SnapshotKind,
    Transaction,
    TransactionKind,
)

Document = Dict[str, Any]


class DocumentStore(Protocol):
    """Per-user document storage, organised in named collections."""

    def list(self, user_id: str, collection: str) -> List[Document]: ...

    def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]: ...

    def put(self, user_id: str, collection: str, doc_id: str, document: Document) -> None: ...

    def delete(self, user_id: str, collection: str, doc_id: str) -> bool: ...


class InMemoryDocumentStore:
    """Dictionary-backed store, used in tests and single-session embedding."""

    def __init__(self) -> None:
        self._data: Dict[tuple[str, str], Dict[str, Document]] = {}
        self._lock = threading.Lock()

    def list(self, user_id: str, collection: str) -> List[Document]:
        with self._lock:
            return [json.loads(json.dumps(doc)) for doc in self._data.get((user_id, collection), {}).values()]

    def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._data.get((user_id, collection), {}).get(doc_id)
            return None if doc is None else json.loads(json.dumps(doc))

    def put(self, user_id: str, collection: str, doc_id: str, document: Document) -> None:
        with self._lock:
            self._data.setdefault((user_id, collection), {})[doc_id] = json.loads(json.dumps(document))

    def delete(self, user_id: str, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._data.get((user_id, collection), {}).pop(doc_id, None) is not None


class JsonFileDocumentStore:
    """Stores each user's collection as one JSON file under ``base_path``.

    Concurrent writers from different processes follow last-write-wins.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        self._base_path = (base_path or Path.cwd()).expanduser()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "JsonFileDocumentStore":
        return cls(settings.store_path)

    def _path(self, user_id: str, collection: str) -> Path:
        return self._base_path / user_id / f"{collection}.json"

    def _read(self, user_id: str, collection: str) -> Dict[str, Document]:
        path = self._path(user_id, collection)
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, user_id: str, collection: str, docs: Dict[str, Document]) -> None:
        path = self._path(user_id, collection)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(docs, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(path)

    def list(self, user_id: str, collection: str) -> List[Document]:
        with self._lock:
            return list(self._read(user_id, collection).values())

    def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            return self._read(user_id, collection).get(doc_id)

    def put(self, user_id: str, collection: str, doc_id: str, document: Document) -> None:
        with self._lock:
            docs = self._read(user_id, collection)
            docs[doc_id] = document
            self._write(user_id, collection, docs)

    def delete(self, user_id: str, collection: str, doc_id: str) -> bool:
        with self._lock:
            docs = self._read(user_id, collection)
            if docs.pop(doc_id, None) is None:
                return False
            self._write(user_id, collection, docs)
            return True


class ReferencePriceRepository:
    """Loads reference prices for the instruments from CSV snapshots."""

    def __init__(self, base_path: Path | None = None) -> None:
        self._base_path = base_path or Path.cwd()

    def load_prices(
        self,
        instruments: Iterable[Instrument],
        snapshot_filename: str,
    ) -> tuple[Mapping[str, Decimal], list[ServiceMessage]]:
        csv_path = self._base_path / snapshot_filename
        messages: list[ServiceMessage] = []

        if not csv_path.exists():
            messages.append(
                ServiceMessage(
                    MessageLevel.ERROR,
                    f"Reference price file not found: {snapshot_filename}",
                )
            )
            return {}, messages

        df = pd.read_csv(csv_path, index_col=0, dtype={"reference_price": str})
        prices: dict[str, Decimal] = {}
        for instrument in instruments:
            if instrument.ticker not in df.index:
                messages.append(
                    ServiceMessage(
                        MessageLevel.WARNING,
                        f"Ticker {instrument.ticker} missing from {snapshot_filename}; keeping current reference price.",
                        instrument_id=instrument.id,
                    )
                )
                continue
            price = Decimal(str(df.loc[instrument.ticker, "reference_price"]).strip())
            if price <= 0:
                messages.append(
                    ServiceMessage(
                        MessageLevel.WARNING,
                        f"Invalid reference price for {instrument.ticker}: {price}",
                        instrument_id=instrument.id,
                    )
                )
                continue
            prices[instrument.id] = price

        return prices, messages


# ------------------ Serialization ------------------ #


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _dt(value: Optional[str]) -> Optional[datetime]:
    return None if value is None else datetime.fromisoformat(value)


def transaction_to_dict(tx: Transaction) -> Document:
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "instrument_id": tx.instrument_id,
        "kind": tx.kind.value,
        "units": str(tx.units),
        "price_per_unit": str(tx.price_per_unit),
        "total_amount": str(tx.total_amount),
        "currency": tx.currency,
        "occurred_at": tx.occurred_at.isoformat(),
        "sequence": tx.sequence,
        "created_at": tx.created_at.isoformat(),
        "updated_at": _iso(tx.updated_at),
        "fees": str(tx.fees),
        "exchange_rate_at_entry": None if tx.exchange_rate_at_entry is None else str(tx.exchange_rate_at_entry),
        "note": tx.note,
        "milestone_tag": None if tx.milestone_tag is None else tx.milestone_tag.value,
    }


def transaction_from_dict(data: Document) -> Transaction:
    occurred_at = datetime.fromisoformat(data["occurred_at"])
    return Transaction(
        id=data["id"],
        user_id=data["user_id"],
        instrument_id=data["instrument_id"],
        kind=TransactionKind(data["kind"]),
        units=Decimal(str(data["units"])),
        price_per_unit=Decimal(str(data["price_per_unit"])),
        total_amount=Decimal(str(data["total_amount"])),
        currency=data.get("currency", "COP"),
        occurred_at=occurred_at,
        sequence=int(data.get("sequence", 0)),
        created_at=_dt(data.get("created_at")) or occurred_at,
        updated_at=_dt(data.get("updated_at")),
        fees=Decimal(str(data.get("fees") or "0")),
        exchange_rate_at_entry=_dec(data.get("exchange_rate_at_entry")),
        note=data.get("note"),
        milestone_tag=MilestoneTag(data["milestone_tag"]) if data.get("milestone_tag") else None,
    )


def _holding_valuation_to_dict(h: HoldingValuation) -> Document:
    return {
        "instrument_id": h.instrument_id,
        "units": str(h.units),
        "cost_basis": str(h.cost_basis),
        "average_cost": str(h.average_cost),
        "price_per_unit": str(h.price_per_unit),
        "value_at_date": str(h.value_at_date),
        "unrealized_gain": str(h.unrealized_gain),
        "unrealized_return_pct": str(h.unrealized_return_pct),
        "percentage_of_portfolio": str(h.percentage_of_portfolio),
        "price_source": h.price_source.value,
    }


def _holding_valuation_from_dict(data: Document) -> HoldingValuation:
    return HoldingValuation(
        instrument_id=data["instrument_id"],
        units=Decimal(data["units"]),
        cost_basis=Decimal(data["cost_basis"]),
        average_cost=Decimal(data["average_cost"]),
        price_per_unit=Decimal(data["price_per_unit"]),
        value_at_date=Decimal(data["value_at_date"]),
        unrealized_gain=Decimal(data["unrealized_gain"]),
        unrealized_return_pct=Decimal(data["unrealized_return_pct"]),
        percentage_of_portfolio=Decimal(data["percentage_of_portfolio"]),
        price_source=PriceSource(data["price_source"]),
    )


def snapshot_to_dict(snapshot: PortfolioSnapshot) -> Document:
    return {
        "id": snapshot.id,
        "user_id": snapshot.user_id,
        "taken_at": snapshot.taken_at.isoformat(),
        "kind": snapshot.kind.value,
        "total_value": str(snapshot.total_value),
        "total_invested": str(snapshot.total_invested),
        "total_return": str(snapshot.total_return),
        "total_return_pct": str(snapshot.total_return_pct),
        "holdings": [_holding_valuation_to_dict(h) for h in snapshot.holdings],
    }


def snapshot_from_dict(data: Document) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        id=data["id"],
        user_id=data["user_id"],
        taken_at=datetime.fromisoformat(data["taken_at"]),
        kind=SnapshotKind(data["kind"]),
        total_value=Decimal(data["total_value"]),
        total_invested=Decimal(data["total_invested"]),
        total_return=Decimal(data["total_return"]),
        total_return_pct=Decimal(data["total_return_pct"]),
        holdings=tuple(_holding_valuation_from_dict(h) for h in data.get("holdings", [])),
    )
