"""Annual report figures derived from the ledger.

There is no price history, so start and end values are book values: the
average-cost basis of the holdings at the boundaries of the year.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

import pandas as pd

from ..models import ZERO, Transaction, TransactionKind
from ..registry import InstrumentRegistry
from .aggregation import aggregate


@dataclass(frozen=True)
class YearSummary:
    year: int
    start_value: Decimal
    end_value: Decimal
    total_contributed: Decimal
    contribution_count: int
    average_contribution: Decimal
    largest_contribution: Decimal
    largest_contribution_at: Optional[datetime]
    sale_proceeds: Decimal
    realized_gain: Decimal
    dividends: Decimal


@dataclass(frozen=True)
class InstrumentYearBreakdown:
    instrument_id: str
    ticker: str
    display_name: str
    start_units: Decimal
    end_units: Decimal
    units_added: Decimal
    start_value: Decimal
    end_value: Decimal
    total_contributed: Decimal
    transaction_count: int
    percentage_of_portfolio: Decimal


def available_years(transactions: Iterable[Transaction]) -> List[int]:
    """Calendar years with at least one transaction, newest first."""
    return sorted({tx.occurred_at.year for tx in transactions}, reverse=True)


def _split(transactions: Iterable[Transaction], year: int):
    transactions = list(transactions)
    before = [tx for tx in transactions if tx.occurred_at.year < year]
    through = [tx for tx in transactions if tx.occurred_at.year <= year]
    during = [tx for tx in transactions if tx.occurred_at.year == year]
    return before, through, during


def _book_value(transactions: List[Transaction]) -> Decimal:
    return sum((h.cost_basis for h in aggregate(transactions).values()), ZERO)


def year_summary(transactions: Iterable[Transaction], year: int) -> YearSummary:
    before, through, during = _split(transactions, year)
    start_value = _book_value(before)
    end_value = _book_value(through)

    buys = [tx for tx in during if tx.kind is TransactionKind.BUY]
    sells = [tx for tx in during if tx.kind is TransactionKind.SELL]
    contributed = sum((tx.total_amount for tx in buys), ZERO)
    largest = max(buys, key=lambda tx: tx.total_amount, default=None)

    proceeds = sum((tx.units * tx.price_per_unit - tx.fees for tx in sells), ZERO)
    # Cost released by this year's sells.
    sold_cost = start_value + contributed - end_value

    return YearSummary(
        year=year,
        start_value=start_value,
        end_value=end_value,
        total_contributed=contributed,
        contribution_count=len(buys),
        average_contribution=contributed / len(buys) if buys else ZERO,
        largest_contribution=largest.total_amount if largest else ZERO,
        largest_contribution_at=largest.occurred_at if largest else None,
        sale_proceeds=proceeds,
        realized_gain=proceeds - sold_cost if sells else ZERO,
        dividends=sum((tx.total_amount for tx in during if tx.kind is TransactionKind.DIVIDEND), ZERO),
    )


def year_breakdown(
    transactions: Iterable[Transaction],
    year: int,
    registry: Optional[InstrumentRegistry] = None,
) -> List[InstrumentYearBreakdown]:
    """Per-instrument movement during ``year``, largest end value first."""
    before, through, during = _split(transactions, year)
    start = aggregate(before)
    end = aggregate(through)
    total_end = sum((h.cost_basis for h in end.values()), ZERO)

    rows = []
    for instrument_id in sorted({tx.instrument_id for tx in through}):
        instrument = registry.get(instrument_id) if registry is not None else None
        start_holding = start.get(instrument_id)
        end_holding = end.get(instrument_id)
        start_units = start_holding.units if start_holding else ZERO
        end_units = end_holding.units if end_holding else ZERO
        end_value = end_holding.cost_basis if end_holding else ZERO
        mine = [tx for tx in during if tx.instrument_id == instrument_id]
        rows.append(
            InstrumentYearBreakdown(
                instrument_id=instrument_id,
                ticker=instrument.ticker if instrument else instrument_id.upper(),
                display_name=instrument.display_name if instrument else instrument_id,
                start_units=start_units,
                end_units=end_units,
                units_added=end_units - start_units,
                start_value=start_holding.cost_basis if start_holding else ZERO,
                end_value=end_value,
                total_contributed=sum((tx.total_amount for tx in mine if tx.kind is TransactionKind.BUY), ZERO),
                transaction_count=len(mine),
                percentage_of_portfolio=end_value / total_end * 100 if total_end > 0 else ZERO,
            )
        )
    rows.sort(key=lambda row: row.end_value, reverse=True)
    return rows


def breakdown_frame(rows: Iterable[InstrumentYearBreakdown]) -> pd.DataFrame:
    """Breakdown rows as a DataFrame indexed by instrument id."""
    columns = [
        "instrument_id",
        "ticker",
        "start_units",
        "end_units",
        "units_added",
        "start_value",
        "end_value",
        "total_contributed",
        "transaction_count",
        "percentage_of_portfolio",
    ]
    df = pd.DataFrame(
        [
            {
                "instrument_id": row.instrument_id,
                "ticker": row.ticker,
                "start_units": float(row.start_units),
                "end_units": float(row.end_units),
                "units_added": float(row.units_added),
                "start_value": float(row.start_value),
                "end_value": float(row.end_value),
                "total_contributed": float(row.total_contributed),
                "transaction_count": row.transaction_count,
                "percentage_of_portfolio": float(row.percentage_of_portfolio),
            }
            for row in rows
        ],
        columns=columns,
    )
    return df.set_index("instrument_id")
