"""Tests for childfolio.services.aggregation."""

from datetime import datetime
from decimal import Decimal

import pytest
from conftest import draft

from childfolio import InsufficientUnitsError, LedgerIntegrityError, Transaction, TransactionKind, TransactionLedger
from childfolio.services.aggregation import aggregate, sort_transactions, total_dividends

D1 = datetime(2024, 1, 10)
D2 = datetime(2024, 2, 10)
D3 = datetime(2024, 3, 10)


def tx(kind, units, price, occurred_at, sequence=1, instrument_id="icolcap", fees="0", total=None, tx_id=None):
    units = Decimal(str(units))
    price = Decimal(str(price))
    fees = Decimal(fees)
    return Transaction(
        id=tx_id or f"tx-{sequence}",
        user_id="parent",
        instrument_id=instrument_id,
        kind=TransactionKind(kind),
        units=units,
        price_per_unit=price,
        total_amount=Decimal(str(total)) if total is not None else units * price + fees,
        currency="COP",
        occurred_at=occurred_at,
        sequence=sequence,
        created_at=occurred_at,
        fees=fees,
    )


class TestAverageCost:
    def test_two_buys_blend_cost(self):
        holdings = aggregate([tx("buy", 10, 100, D1, 1), tx("buy", 10, 200, D2, 2)])
        holding = holdings["icolcap"]
        assert holding.units == 20
        assert holding.average_cost == 150

    def test_sell_reduces_cost_proportionally(self):
        holdings = aggregate(
            [tx("buy", 10, 100, D1, 1), tx("buy", 10, 200, D2, 2), tx("sell", 5, 210, D3, 3)]
        )
        holding = holdings["icolcap"]
        assert holding.units == 15
        assert holding.cost_basis == Decimal("2250")
        assert holding.average_cost == 150

    def test_fees_are_part_of_cost_basis(self):
        holdings = aggregate([tx("buy", 4, 250, D1, 1, fees="12.50")])
        assert holdings["icolcap"].cost_basis == Decimal("1012.50")

    def test_icolcap_scenario(self):
        holdings = aggregate(
            [tx("buy", 10, 12500, D1, 1), tx("buy", 5, 13000, D2, 2), tx("sell", 3, 14000, D3, 3)]
        )
        holding = holdings["icolcap"]
        assert holding.units == 12
        assert float(holding.cost_basis) == pytest.approx(152000)
        assert float(holding.average_cost) == pytest.approx(12666.67, abs=0.01)


class TestConservation:
    def test_cost_basis_equals_sum_of_buys(self):
        amounts = ["0.10", "0.20", "1234.57", "99999.99", "0.01", "7.77"]
        txs = [tx("buy", 1, amount, D1, i) for i, amount in enumerate(amounts, start=1)]
        holdings = aggregate(txs)
        assert holdings["icolcap"].cost_basis == sum(Decimal(a) for a in amounts)

    def test_instruments_are_kept_apart(self):
        holdings = aggregate(
            [
                tx("buy", 2, 100, D1, 1, instrument_id="ivv"),
                tx("buy", 3, 50, D1, 2, instrument_id="bnd"),
            ]
        )
        assert holdings["ivv"].cost_basis == 200
        assert holdings["bnd"].cost_basis == 150


class TestNoNegativeUnits:
    def test_oversell_raises(self):
        with pytest.raises(InsufficientUnitsError) as exc_info:
            aggregate([tx("buy", 2, 100, D1, 1), tx("sell", 3, 100, D2, 2)])
        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2

    def test_sell_before_buy_raises_even_if_listed_later(self):
        with pytest.raises(InsufficientUnitsError):
            aggregate([tx("buy", 5, 100, D2, 2), tx("sell", 1, 100, D1, 1)])

    def test_oversell_leaves_input_untouched(self):
        txs = [tx("buy", 2, 100, D1, 1), tx("sell", 3, 100, D2, 2)]
        snapshot = list(txs)
        with pytest.raises(InsufficientUnitsError):
            aggregate(txs)
        assert txs == snapshot

    def test_selling_everything_drops_the_holding(self):
        holdings = aggregate([tx("buy", 2, 100, D1, 1), tx("sell", 2, 150, D2, 2)])
        assert holdings == {}

    def test_negative_units_is_an_integrity_error(self):
        with pytest.raises(LedgerIntegrityError):
            aggregate([tx("buy", -1, 100, D1, 1, total="100")])


class TestDividends:
    def test_dividend_does_not_touch_position(self):
        base = [tx("buy", 10, 100, D1, 1)]
        with_dividend = base + [tx("dividend", 0, 0, D2, 2, total="345.67")]
        assert aggregate(with_dividend)["icolcap"].units == aggregate(base)["icolcap"].units
        assert aggregate(with_dividend)["icolcap"].cost_basis == aggregate(base)["icolcap"].cost_basis

    def test_total_dividends(self):
        txs = [
            tx("buy", 10, 100, D1, 1),
            tx("dividend", 0, 0, D2, 2, total="10.50"),
            tx("dividend", 0, 0, D3, 3, total="4.50", instrument_id="vym"),
        ]
        assert total_dividends(txs) == Decimal("15.00")
        assert total_dividends(txs, instrument_id="vym") == Decimal("4.50")


class TestOrdering:
    def test_same_instant_uses_sequence(self):
        first = tx("buy", 1, 100, D1, 2, tx_id="b")
        second = tx("sell", 1, 100, D1, 3, tx_id="a")
        assert sort_transactions([second, first]) == [first, second]
        assert aggregate([second, first]) == {}

    def test_same_instant_and_sequence_uses_id(self):
        a = tx("buy", 1, 100, D1, 1, tx_id="a")
        b = tx("buy", 1, 100, D1, 1, tx_id="b")
        assert sort_transactions([b, a]) == [a, b]


class TestHoldingsAggregatorCache:
    def test_reuses_result_until_ledger_changes(self, ledger, aggregator, clock):
        ledger.append("parent", draft("icolcap", "buy", 10, 12500, datetime(2024, 1, 1)))
        aggregator.holdings("parent")
        aggregator.holdings("parent")
        assert aggregator.computations == 1

        ledger.append("parent", draft("icolcap", "buy", 1, 12000, datetime(2024, 2, 1)))
        assert aggregator.holdings("parent")["icolcap"].units == 11
        assert aggregator.computations == 2

    def test_returned_holdings_are_copies(self, ledger, aggregator):
        ledger.append("parent", draft("icolcap", "buy", 10, 12500, datetime(2024, 1, 1)))
        aggregator.holdings("parent")["icolcap"].units = Decimal("999")
        assert aggregator.holdings("parent")["icolcap"].units == 10

    def test_invalidate_forces_recompute(self, ledger, aggregator):
        aggregator.holdings("parent")
        aggregator.invalidate("parent")
        aggregator.holdings("parent")
        assert aggregator.computations == 2

    def test_sees_writes_from_another_ledger_on_the_same_store(self, store, registry, clock, ledger, aggregator):
        ledger.append("parent", draft("icolcap", "buy", 10, 12500, datetime(2024, 1, 1)))
        assert aggregator.holdings("parent")["icolcap"].units == 10

        other_device = TransactionLedger(store, registry=registry, clock=clock)
        other_device.append("parent", draft("icolcap", "buy", 5, 12500, datetime(2024, 2, 1)))

        assert aggregator.holdings("parent")["icolcap"].units == 15
