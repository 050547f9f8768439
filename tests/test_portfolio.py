from datetime import datetime
from decimal import Decimal

import pytest
from conftest import dividend, draft

from childfolio import DEFAULT_EXCHANGE_RATE, ExchangeRate, PriceQuote, QuoteCache
from childfolio.services.portfolio import resolve_exchange_rate


def test_resolve_exchange_rate_prefers_explicit_rate():
    cache = QuoteCache(exchange_rate=ExchangeRate("COP", "USD", Decimal("4100")))
    assert resolve_exchange_rate(cache, Decimal("3900")) == Decimal("3900")
    assert resolve_exchange_rate(cache, None) == Decimal("4100")
    assert resolve_exchange_rate(QuoteCache(), None) == DEFAULT_EXCHANGE_RATE


class TestSummary:
    def test_empty_portfolio(self, service):
        summary = service.summary("parent", QuoteCache())
        assert summary.current_value == 0
        assert summary.transaction_count == 0
        assert summary.first_transaction_at is None
        assert summary.last_contribution_at is None
        assert summary.monthly_contribution == 0

    def test_icolcap_scenario(self, ledger, service, clock):
        ledger.append("parent", draft("icolcap", "buy", 10, 12500, datetime(2024, 1, 10)))
        ledger.append("parent", draft("icolcap", "buy", 5, 13000, datetime(2024, 2, 10)))
        ledger.append("parent", draft("icolcap", "sell", 3, 14000, datetime(2024, 3, 10)))
        prices = QuoteCache({"icolcap": PriceQuote("icolcap", Decimal("14000"), clock.now)})

        summary = service.summary("parent", prices)

        assert summary.current_value == Decimal("168000")
        assert float(summary.total_return) == pytest.approx(16000)
        assert summary.transaction_count == 3
        assert summary.first_transaction_at == datetime(2024, 1, 10)
        assert summary.last_transaction_at == datetime(2024, 3, 10)
        assert summary.last_contribution_at == datetime(2024, 2, 10)
        assert summary.as_of == clock.now

    def test_monthly_contribution_counts_recent_buys_only(self, ledger, service):
        ledger.append("parent", draft("icolcap", "buy", 1, 12500, datetime(2024, 5, 1)))
        ledger.append("parent", draft("icolcap", "buy", 2, 12500, datetime(2024, 6, 1)))
        ledger.append("parent", draft("icolcap", "sell", 1, 13000, datetime(2024, 6, 10)))

        summary = service.summary("parent", QuoteCache())

        assert summary.monthly_contribution == Decimal("25000")

    def test_dividends_are_reported_but_not_valued(self, ledger, service):
        ledger.append("parent", draft("icolcap", "buy", 2, 12500, datetime(2024, 1, 1)))
        ledger.append("parent", dividend("icolcap", "1800", datetime(2024, 4, 1)))

        summary = service.summary("parent", QuoteCache())

        assert summary.total_dividends == Decimal("1800")
        assert summary.current_value == Decimal("25000")
        assert summary.total_invested == Decimal("25000")

    def test_foreign_holding_uses_cached_rate(self, ledger, service):
        ledger.append("parent", draft("ivv", "buy", 1, 2000000, datetime(2024, 1, 1)))
        prices = QuoteCache(exchange_rate=ExchangeRate("COP", "USD", Decimal("4000")))

        summary = service.summary("parent", prices)

        assert summary.exchange_rate == Decimal("4000")
        assert summary.current_value == Decimal("540") * Decimal("4000")


class TestAnnualReport:
    def test_years_summary_and_breakdown(self, ledger, service):
        ledger.append("parent", draft("icolcap", "buy", 10, 12000, datetime(2023, 3, 1)))
        ledger.append("parent", draft("vti", "buy", 2, 1100000, datetime(2024, 2, 1)))

        assert service.available_years("parent") == [2024, 2023]

        summary = service.year_summary("parent", 2024)
        assert summary.start_value == Decimal("120000")
        assert summary.end_value == Decimal("2320000")
        assert summary.total_contributed == Decimal("2200000")

        rows = service.year_breakdown("parent", 2024)
        assert [row.ticker for row in rows] == ["VTI", "ICOLCAP"]
        assert rows[0].display_name == "Vanguard Total Stock Market"

    def test_no_history(self, service):
        assert service.available_years("nobody") == []
        assert service.year_breakdown("nobody", 2024) == []
