"""Lot allocation, tax reporting and harvest candidates."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from folio.accounting.enums import CostBasisMethod
from folio.accounting.ledger import LotSelection
from folio.accounting.lots import GainRecord, LotState, apportion_commission, plan_allocation, realize
from folio.accounting.tax import build_tax_report, harvest_opportunities
from folio.core.errors import InsufficientLots, InvalidAllocation


def make_lot(symbol: str, acquired_on: date, quantity: str, cost_per_share: str, position: int) -> LotState:
    qty = Decimal(quantity)
    cps = Decimal(cost_per_share)
    return LotState(
        id=uuid4(),
        symbol=symbol,
        acquired_on=acquired_on,
        original_quantity=qty,
        remaining_quantity=qty,
        cost_basis=qty * cps,
        cost_per_share=cps,
        transaction_id=uuid4(),
        position=position,
    )


def xyz_lots() -> list[LotState]:
    return [
        make_lot("XYZ", date(2024, 1, 2), "10", "200", 1),
        make_lot("XYZ", date(2024, 2, 2), "10", "100", 2),
    ]


def test_fifo_plan_leaves_lots_untouched():
    lots = xyz_lots()
    plan = plan_allocation(lots, "XYZ", Decimal("15"), CostBasisMethod.FIFO)

    assert [(line.lot_id, line.quantity) for line in plan] == [
        (lots[0].id, Decimal("10")),
        (lots[1].id, Decimal("5")),
    ]
    assert plan[1].cost_basis == Decimal("500")
    assert lots[0].remaining_quantity == Decimal("10")


def test_specific_lot_without_selections_falls_back_to_fifo():
    lots = xyz_lots()
    [line] = plan_allocation(lots, "XYZ", Decimal("3"), CostBasisMethod.SPECIFIC_LOT)

    assert line.lot_id == lots[0].id


def test_plan_rejects_more_than_open_quantity():
    with pytest.raises(InsufficientLots) as excinfo:
        plan_allocation(xyz_lots(), "XYZ", Decimal("21"), CostBasisMethod.FIFO)

    assert excinfo.value.details["available"] == "20"


def test_specific_lot_rejects_unknown_lot():
    selection = LotSelection(lot_id=uuid4(), quantity=Decimal("1"))

    with pytest.raises(InvalidAllocation):
        plan_allocation(xyz_lots(), "XYZ", Decimal("1"), CostBasisMethod.SPECIFIC_LOT, [selection])


def test_specific_lot_rejects_more_than_the_lot_holds():
    lots = xyz_lots()
    selection = LotSelection(lot_id=lots[1].id, quantity=Decimal("11"))

    with pytest.raises(InvalidAllocation):
        plan_allocation(lots, "XYZ", Decimal("11"), CostBasisMethod.SPECIFIC_LOT, [selection])


def test_commission_shares_sum_to_the_commission():
    lots = [make_lot("ABC", date(2024, 1, 2), "1", "10", 1), make_lot("ABC", date(2024, 1, 3), "2", "10", 2)]
    plan = plan_allocation(lots, "ABC", Decimal("3"), CostBasisMethod.FIFO)

    shares = apportion_commission(plan, Decimal("1"))

    assert sum(shares) == Decimal("1")
    assert shares[0] == Decimal("0.3333333333")


def test_realize_consumes_lots_and_reports_gain():
    lots = xyz_lots()
    sell_id = uuid4()
    plan = plan_allocation(lots, "XYZ", Decimal("10"), CostBasisMethod.LIFO)

    [record] = realize(
        lots,
        plan,
        sell_transaction_id=sell_id,
        disposed_on=date(2024, 6, 1),
        price=Decimal("120"),
        commission=Decimal("0"),
    )

    assert record.lot_id == lots[1].id
    assert record.gain == Decimal("200")
    assert not lots[1].is_open


def gain(disposed_on: date, amount: str, long_term: bool) -> GainRecord:
    return GainRecord(
        id=uuid4(),
        sell_transaction_id=uuid4(),
        lot_id=uuid4(),
        symbol="AAPL",
        acquired_on=date(2020, 1, 2),
        disposed_on=disposed_on,
        quantity=Decimal("1"),
        cost_basis=Decimal("100"),
        proceeds=Decimal("100") + Decimal(amount),
        gain=Decimal(amount),
        long_term=long_term,
    )


def test_tax_report_groups_by_holding_period_within_year():
    gains = [
        gain(date(2024, 3, 1), "50", False),
        gain(date(2024, 9, 1), "-20", True),
        gain(date(2024, 10, 1), "5", False),
        gain(date(2023, 12, 31), "999", False),
    ]
    report = build_tax_report(gains, 2024)

    assert report.total_short_term == Decimal("55")
    assert report.total_long_term == Decimal("-20")
    assert report.total == Decimal("35")
    assert report.total_cost_basis == Decimal("300")
    assert [record.disposed_on for record in report.short_term] == [date(2024, 3, 1), date(2024, 10, 1)]


def test_harvest_reports_losing_lot_only():
    lots = xyz_lots()
    opportunities = harvest_opportunities(lots, {"XYZ": Decimal("120")}, as_of=date(2024, 6, 1))

    [opportunity] = opportunities
    assert opportunity.lot_id == lots[0].id
    assert opportunity.unrealized_loss == Decimal("-800")
    assert opportunity.loss_percent == Decimal("40")
    assert opportunity.long_term is False


def test_harvest_threshold_and_missing_prices():
    lots = xyz_lots() + [make_lot("ABC", date(2024, 1, 2), "5", "50", 3)]

    prices = {"XYZ": Decimal("120")}
    assert harvest_opportunities(lots, prices, as_of=date(2024, 6, 1), min_loss_percent=Decimal("41")) == []
    assert harvest_opportunities(lots, {}, as_of=date(2024, 6, 1)) == []
