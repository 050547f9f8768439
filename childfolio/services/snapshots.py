"""Point-in-time captures of the portfolio for historical reporting."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

import pandas as pd
from loguru import logger

from ..models import PortfolioSnapshot, SnapshotKind
from ..repositories import DocumentStore, snapshot_from_dict, snapshot_to_dict
from ..versioning import unwrap, wrap
from .aggregation import HoldingsAggregator
from .pricing import PriceLookup
from .portfolio import resolve_exchange_rate
from .valuation import ValuationEngine

SNAPSHOTS = "snapshots"


class SnapshotGenerator:
    """Takes and lists immutable portfolio snapshots.

    Each snapshot comes from a fresh aggregation and valuation pass, never
    from an earlier snapshot. The store is only ever appended to.
    """

    def __init__(
        self,
        aggregator: HoldingsAggregator,
        engine: ValuationEngine,
        store: DocumentStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._aggregator = aggregator
        self._engine = engine
        self._store = store
        self._clock = clock

    def take_snapshot(
        self,
        user_id: str,
        kind: SnapshotKind,
        prices: PriceLookup,
        exchange_rate: Optional[Decimal] = None,
        taken_at: Optional[datetime] = None,
    ) -> PortfolioSnapshot:
        taken_at = taken_at or self._clock()
        valuation = self._engine.valuate(
            self._aggregator.holdings(user_id),
            prices,
            resolve_exchange_rate(prices, exchange_rate),
            as_of=taken_at,
        )
        snapshot = PortfolioSnapshot(
            id=uuid.uuid4().hex,
            user_id=user_id,
            taken_at=taken_at,
            kind=SnapshotKind(kind),
            total_value=valuation.current_value,
            total_invested=valuation.total_invested,
            total_return=valuation.total_return,
            total_return_pct=valuation.total_return_pct,
            holdings=tuple(valuation.holdings),
        )
        self._store.put(user_id, SNAPSHOTS, snapshot.id, wrap("snapshot", snapshot_to_dict(snapshot)))
        logger.info(
            "Took {} snapshot {} for {}: value {} invested {}",
            snapshot.kind.value,
            snapshot.id,
            user_id,
            snapshot.total_value,
            snapshot.total_invested,
        )
        return snapshot

    def list_snapshots(
        self,
        user_id: str,
        kind: Optional[SnapshotKind] = None,
        year: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[PortfolioSnapshot]:
        """Snapshots newest first, optionally filtered by kind and calendar year."""
        snapshots = [snapshot_from_dict(unwrap(doc, "snapshot")) for doc in self._store.list(user_id, SNAPSHOTS)]
        if kind is not None:
            snapshots = [s for s in snapshots if s.kind is SnapshotKind(kind)]
        if year is not None:
            snapshots = [s for s in snapshots if s.taken_at.year == year]
        snapshots.sort(key=lambda s: s.taken_at, reverse=True)
        return snapshots[:limit] if limit is not None else snapshots

    def latest(self, user_id: str) -> Optional[PortfolioSnapshot]:
        snapshots = self.list_snapshots(user_id, limit=1)
        return snapshots[0] if snapshots else None

    def take_due_periodic(
        self,
        user_id: str,
        prices: PriceLookup,
        exchange_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> List[PortfolioSnapshot]:
        """Take the monthly and yearly snapshots still missing for the current period."""
        now = now or self._clock()
        existing = self.list_snapshots(user_id, year=now.year)
        taken: List[PortfolioSnapshot] = []

        if not any(s.kind is SnapshotKind.MONTHLY and s.taken_at.month == now.month for s in existing):
            taken.append(self.take_snapshot(user_id, SnapshotKind.MONTHLY, prices, exchange_rate, taken_at=now))
        if not any(s.kind is SnapshotKind.YEARLY for s in existing):
            taken.append(self.take_snapshot(user_id, SnapshotKind.YEARLY, prices, exchange_rate, taken_at=now))
        return taken


def snapshots_frame(snapshots: Iterable[PortfolioSnapshot]) -> pd.DataFrame:
    """Timeline of snapshot totals indexed by ``taken_at``, oldest first."""
    columns = ["taken_at", "kind", "total_value", "total_invested", "total_return", "total_return_pct"]
    rows = [
        {
            "taken_at": s.taken_at,
            "kind": s.kind.value,
            "total_value": float(s.total_value),
            "total_invested": float(s.total_invested),
            "total_return": float(s.total_return),
            "total_return_pct": float(s.total_return_pct),
        }
        for s in snapshots
    ]
    df = pd.DataFrame(rows, columns=columns)
    return df.set_index("taken_at").sort_index()
