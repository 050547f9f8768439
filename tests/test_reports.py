"""Tests for childfolio.services.reports."""

from datetime import datetime
from decimal import Decimal

import pytest
from conftest import dividend, draft

from childfolio.services.reports import available_years, breakdown_frame, year_breakdown, year_summary


@pytest.fixture
def history(ledger):
    ledger.append("parent", draft("icolcap", "buy", 10, 12000, datetime(2023, 3, 1)))
    ledger.append("parent", draft("ivv", "buy", 1, 2000000, datetime(2023, 9, 1)))
    ledger.append("parent", dividend("icolcap", "1500", datetime(2023, 12, 1)))
    ledger.append("parent", draft("icolcap", "buy", 10, 14000, datetime(2024, 1, 15)))
    ledger.append("parent", draft("icolcap", "sell", 5, 15000, datetime(2024, 3, 1), fees=Decimal("500")))
    ledger.append("parent", draft("bnd", "buy", 2, 300000, datetime(2024, 4, 1)))
    ledger.append("parent", dividend("ivv", "8000", datetime(2024, 5, 1)))
    return ledger.list("parent")


def test_available_years_newest_first(history):
    assert available_years(history) == [2024, 2023]
    assert available_years([]) == []


class TestYearSummary:
    def test_first_year(self, history):
        summary = year_summary(history, 2023)
        assert summary.start_value == 0
        assert summary.end_value == Decimal("2120000")
        assert summary.total_contributed == Decimal("2120000")
        assert summary.contribution_count == 2
        assert summary.average_contribution == Decimal("1060000")
        assert summary.largest_contribution == Decimal("2000000")
        assert summary.largest_contribution_at == datetime(2023, 9, 1)
        assert summary.realized_gain == 0
        assert summary.dividends == Decimal("1500")

    def test_year_with_a_sale(self, history):
        summary = year_summary(history, 2024)
        assert summary.start_value == Decimal("2120000")
        assert summary.end_value == Decimal("2795000")
        assert summary.total_contributed == Decimal("740000")
        assert summary.contribution_count == 2
        assert summary.average_contribution == Decimal("370000")
        assert summary.largest_contribution_at == datetime(2024, 4, 1)
        # 5 units at an average cost of 13000 sold for 75000 less 500 in fees.
        assert summary.sale_proceeds == Decimal("74500")
        assert summary.realized_gain == Decimal("9500")
        assert summary.dividends == Decimal("8000")

    def test_year_without_activity(self, history):
        summary = year_summary(history, 2022)
        assert summary.end_value == 0
        assert summary.contribution_count == 0
        assert summary.average_contribution == 0
        assert summary.largest_contribution == 0
        assert summary.largest_contribution_at is None

    def test_quiet_year_carries_the_book_value(self, history):
        summary = year_summary(history, 2025)
        assert summary.start_value == summary.end_value == Decimal("2795000")
        assert summary.total_contributed == 0


class TestYearBreakdown:
    def test_rows_ordered_by_end_value(self, history, registry):
        rows = year_breakdown(history, 2024, registry)
        assert [row.instrument_id for row in rows] == ["ivv", "bnd", "icolcap"]

    def test_unit_and_value_movement(self, history, registry):
        rows = {row.instrument_id: row for row in year_breakdown(history, 2024, registry)}

        icolcap = rows["icolcap"]
        assert (icolcap.start_units, icolcap.end_units, icolcap.units_added) == (10, 15, 5)
        assert icolcap.start_value == Decimal("120000")
        assert icolcap.end_value == Decimal("195000")
        assert icolcap.total_contributed == Decimal("140000")
        assert icolcap.transaction_count == 2

        bnd = rows["bnd"]
        assert bnd.start_units == 0
        assert bnd.units_added == 2
        assert bnd.total_contributed == Decimal("600000")

        # Only a dividend moved this year.
        assert rows["ivv"].units_added == 0
        assert rows["ivv"].transaction_count == 1

    def test_percentages_cover_the_portfolio(self, history, registry):
        rows = year_breakdown(history, 2024, registry)
        assert sum(float(row.percentage_of_portfolio) for row in rows) == pytest.approx(100)
        assert float(rows[0].percentage_of_portfolio) == pytest.approx(2000000 / 2795000 * 100)

    def test_names_come_from_the_registry(self, history, registry):
        named = {row.instrument_id: row for row in year_breakdown(history, 2024, registry)}
        assert named["ivv"].ticker == "IVV"
        assert named["ivv"].display_name == "iShares Core S&P 500"

        bare = {row.instrument_id: row for row in year_breakdown(history, 2024)}
        assert bare["ivv"].ticker == "IVV"
        assert bare["ivv"].display_name == "ivv"

    def test_empty_year(self, history):
        assert year_breakdown(history, 2022) == []

    def test_frame(self, history, registry):
        frame = breakdown_frame(year_breakdown(history, 2024, registry))
        assert list(frame.index) == ["ivv", "bnd", "icolcap"]
        assert frame.loc["icolcap", "units_added"] == 5
        assert frame.loc["bnd", "transaction_count"] == 1
