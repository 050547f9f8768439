"""Static configuration for the instrument catalog, currencies and settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .models import CurrencyPairConfig, Instrument

BASE_CURRENCY = "COP"
FOREIGN_CURRENCY = "USD"
DEFAULT_EXCHANGE_RATE = Decimal("4200")
DEFAULT_REFRESH_CUTOFF_HOUR = 6

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"

DEFAULT_INSTRUMENTS = (
    Instrument("icolcap", "ICOLCAP", "iShares COLCAP", "COP", Decimal("12500"), category="colombian_equity"),
    Instrument("ivv", "IVV", "iShares Core S&P 500", "USD", Decimal("540"), quote_symbol="IVV"),
    Instrument("vti", "VTI", "Vanguard Total Stock Market", "USD", Decimal("280"), quote_symbol="VTI"),
    Instrument("vxus", "VXUS", "Vanguard Total International Stock", "USD", Decimal("62"), quote_symbol="VXUS"),
    Instrument("bnd", "BND", "Vanguard Total Bond Market", "USD", Decimal("72"), quote_symbol="BND", category="bonds"),
    Instrument("vym", "VYM", "Vanguard High Dividend Yield", "USD", Decimal("125"), quote_symbol="VYM", category="dividend"),
)

CURRENCY_TO_PAIR = {
    "COP": CurrencyPairConfig(currency="COP", symbol=None, invert=False),
    "USD": CurrencyPairConfig(currency="USD", symbol="USDCOP=X", invert=False),
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings. Built explicitly or from ``CHILDFOLIO_*`` environment variables."""

    finnhub_api_key: Optional[str] = None
    refresh_cutoff_hour: int = DEFAULT_REFRESH_CUTOFF_HOUR
    data_dir: Path = Path("~/.childfolio-data")
    log_level: str = "WARNING"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())
        if not 0 <= self.refresh_cutoff_hour <= 23:
            raise ConfigurationError(
                f"refresh_cutoff_hour must be between 0 and 23, got {self.refresh_cutoff_hour}"
            )

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store"

    @property
    def log_path(self) -> Optional[Path]:
        """Log file location; relative names live under ``data_dir``."""
        if not self.log_file:
            return None
        path = Path(self.log_file).expanduser()
        return path if path.is_absolute() else self.data_dir / path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        raw_hour = env.get("CHILDFOLIO_REFRESH_CUTOFF_HOUR", str(DEFAULT_REFRESH_CUTOFF_HOUR))
        try:
            cutoff_hour = int(raw_hour)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid CHILDFOLIO_REFRESH_CUTOFF_HOUR: {raw_hour!r}") from exc

        return cls(
            finnhub_api_key=env.get("CHILDFOLIO_FINNHUB_API_KEY") or None,
            refresh_cutoff_hour=cutoff_hour,
            data_dir=Path(env.get("CHILDFOLIO_DATA_DIR", "~/.childfolio-data")),
            log_level=env.get("CHILDFOLIO_LOG_LEVEL", "WARNING").upper(),
            log_file=env.get("CHILDFOLIO_LOG_FILE") or None,
        )
