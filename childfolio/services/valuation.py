"""Valuation of holdings against current prices."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Tuple

from ..config import BASE_CURRENCY
from ..models import (
    ZERO,
    Holding,
    HoldingValuation,
    PortfolioValuation,
    PriceSource,
)
from ..registry import InstrumentRegistry
from .pricing import PriceLookup


def diversification_score(values: Iterable[Decimal]) -> float:
    """Herfindahl-based evenness, 0 (fully concentrated) to 100 (spread evenly).

    Returns 0.0 when there is nothing to spread: no value, or fewer than two holdings.
    """
    values = [v for v in values if v > 0]
    total = sum(values, ZERO)
    if total <= 0 or len(values) < 2:
        return 0.0
    concentration = sum((v / total) ** 2 for v in values)
    return round(float(100 * (1 - concentration)), 2)


def _pct(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return part / whole * 100


class ValuationEngine:
    """Combines holdings with prices into a PortfolioValuation.

    Prices resolve through a fixed chain: cached quote, then the instrument's
    reference price, then zero. An unknown price is reported through
    ``PriceSource.UNAVAILABLE`` and never raises.
    """

    def __init__(self, registry: InstrumentRegistry, base_currency: str = BASE_CURRENCY) -> None:
        self._registry = registry
        self._base_currency = base_currency

    @property
    def registry(self) -> InstrumentRegistry:
        return self._registry

    def resolve_price(
        self,
        instrument_id: str,
        prices: PriceLookup,
        exchange_rate: Optional[Decimal],
    ) -> Tuple[Decimal, PriceSource]:
        quote = prices.quote_for(instrument_id)
        if quote is not None and quote.price_in_base_currency > 0:
            return quote.price_in_base_currency, PriceSource.QUOTE

        reference = self._registry.reference_price_in_base(instrument_id, exchange_rate, self._base_currency)
        if reference is not None:
            return reference, PriceSource.REFERENCE

        return ZERO, PriceSource.UNAVAILABLE

    def valuate(
        self,
        holdings: Mapping[str, Holding],
        prices: PriceLookup,
        exchange_rate: Optional[Decimal],
        as_of: datetime,
        dividends: Decimal = ZERO,
    ) -> PortfolioValuation:
        priced = []
        for instrument_id in sorted(holdings):
            holding = holdings[instrument_id]
            price, source = self.resolve_price(instrument_id, prices, exchange_rate)
            priced.append((holding, price, source, holding.units * price))

        total_value = sum((value for *_, value in priced), ZERO)
        total_invested = sum((h.cost_basis for h, *_ in priced), ZERO)

        valuations = [
            HoldingValuation(
                instrument_id=holding.instrument_id,
                units=holding.units,
                cost_basis=holding.cost_basis,
                average_cost=holding.average_cost,
                price_per_unit=price,
                value_at_date=value,
                unrealized_gain=value - holding.cost_basis,
                unrealized_return_pct=_pct(value - holding.cost_basis, holding.cost_basis),
                percentage_of_portfolio=_pct(value, total_value),
                price_source=source,
            )
            for holding, price, source, value in priced
        ]

        return PortfolioValuation(
            total_invested=total_invested,
            current_value=total_value,
            diversification_score=diversification_score(v.value_at_date for v in valuations),
            holdings=valuations,
            as_of=as_of,
            exchange_rate=exchange_rate,
            total_dividends=dividends,
        )
