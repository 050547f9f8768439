"""Catalog of tradable instruments and their fallback reference prices."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from loguru import logger

from .config import BASE_CURRENCY, DEFAULT_INSTRUMENTS
from .errors import ValidationError
from .models import Instrument, to_decimal


class InstrumentRegistry:
    """Holds the bounded instrument universe, keyed by instrument id.

    Instruments are immutable; refreshing a reference price swaps the entry
    for an updated copy.
    """

    def __init__(self, instruments: Iterable[Instrument] | None = None) -> None:
        source = DEFAULT_INSTRUMENTS if instruments is None else instruments
        self._instruments: Dict[str, Instrument] = {item.id: item for item in source}

    def __contains__(self, instrument_id: object) -> bool:
        return instrument_id in self._instruments

    def __iter__(self) -> Iterator[Instrument]:
        return iter(self._instruments.values())

    def __len__(self) -> int:
        return len(self._instruments)

    def ids(self) -> List[str]:
        return list(self._instruments)

    def get(self, instrument_id: str) -> Optional[Instrument]:
        return self._instruments.get(instrument_id)

    def require(self, instrument_id: str) -> Instrument:
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            raise ValidationError(f"Unknown instrument: {instrument_id}", field="instrument_id")
        return instrument

    def update_reference_price(self, instrument_id: str, price: Decimal, at: datetime) -> Instrument:
        price = to_decimal(price)
        if price <= 0:
            raise ValidationError(
                f"Reference price for {instrument_id} must be positive, got {price}",
                field="reference_price",
            )
        updated = self.require(instrument_id).with_reference_price(price, at)
        self._instruments[instrument_id] = updated
        logger.debug("Reference price for {} set to {}", instrument_id, price)
        return updated

    def reference_price_in_base(
        self,
        instrument_id: str,
        exchange_rate: Optional[Decimal],
        base_currency: str = BASE_CURRENCY,
    ) -> Optional[Decimal]:
        """Reference price converted into ``base_currency``, or None when not usable."""
        instrument = self._instruments.get(instrument_id)
        if instrument is None or instrument.reference_price <= 0:
            return None
        if instrument.base_currency == base_currency:
            return instrument.reference_price
        if exchange_rate is None or exchange_rate <= 0:
            return None
        return instrument.reference_price * exchange_rate
