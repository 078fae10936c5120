"""Return math: TWR chaining, IRR by bisection, annualization and benchmark comparison."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from folio.accounting.enums import TransactionType
from folio.accounting.ledger import LedgerEntry
from folio.accounting.performance import (
    CashFlow,
    CashFlowKind,
    annualize,
    annualized_return,
    as_percent,
    cash_flows_from_ledger,
    compare_to_benchmark,
    money_weighted_return,
    simple_return,
    time_weighted_return,
)
from folio.core.errors import NoConvergence, ValidationFailed

START = date(2024, 1, 1)
MID = date(2024, 7, 1)
END = date(2024, 12, 31)


def mid_window_deposit() -> list[CashFlow]:
    return [CashFlow(MID, Decimal("5000"), CashFlowKind.DEPOSIT)]


def test_twr_chains_sub_periods_around_a_deposit():
    result = time_weighted_return(
        start=START,
        end=END,
        start_value=Decimal("10000"),
        end_value=Decimal("18000"),
        flows=mid_window_deposit(),
        values_after_flow={MID: Decimal("17000")},
    )

    assert len(result.periods) == 2
    assert result.periods[0].rate == Decimal("0.2")
    assert as_percent(result.twr) == Decimal("27.06")
    assert result.annualized is not None


def test_twr_without_flows_is_the_simple_return():
    result = time_weighted_return(
        start=START,
        end=END,
        start_value=Decimal("100"),
        end_value=Decimal("110"),
        flows=[],
        values_after_flow={},
    )

    assert result.twr == Decimal("0.1")
    assert len(result.periods) == 1


def test_twr_skips_periods_that_start_empty():
    result = time_weighted_return(
        start=START,
        end=END,
        start_value=Decimal("0"),
        end_value=Decimal("1100"),
        flows=[CashFlow(MID, Decimal("1000"), CashFlowKind.DEPOSIT)],
        values_after_flow={MID: Decimal("1000")},
    )

    assert result.periods[0].rate == Decimal("0")
    assert result.twr == Decimal("0.1")


def test_twr_requires_valuation_on_flow_dates():
    with pytest.raises(ValidationFailed) as excinfo:
        time_weighted_return(
            start=START,
            end=END,
            start_value=Decimal("10000"),
            end_value=Decimal("18000"),
            flows=mid_window_deposit(),
            values_after_flow={},
        )

    assert excinfo.value.code == "MISSING_VALUATION"


def test_reversed_window_is_rejected():
    with pytest.raises(ValidationFailed):
        money_weighted_return(
            start=END, end=START, start_value=Decimal("1"), end_value=Decimal("1"), flows=[]
        )


def test_mwr_weights_the_late_deposit():
    result = money_weighted_return(
        start=START,
        end=END,
        start_value=Decimal("10000"),
        end_value=Decimal("18000"),
        flows=mid_window_deposit(),
    )

    assert Decimal("0.23") < result.annual_rate < Decimal("0.25")
    assert result.total_cash_flow == Decimal("5000")
    assert result.iterations <= 200


def test_mwr_without_a_root_raises():
    with pytest.raises(NoConvergence):
        money_weighted_return(
            start=START,
            end=END,
            start_value=Decimal("100"),
            end_value=Decimal("-50"),
            flows=[],
        )


def test_mwr_of_an_empty_window_is_zero():
    result = money_weighted_return(
        start=START, end=END, start_value=Decimal("0"), end_value=Decimal("0"), flows=[]
    )

    assert result.annual_rate == Decimal("0")


def test_annualization():
    assert annualize(Decimal("0.1"), START, START) is None
    assert annualize(Decimal("-1"), START, END) is None
    two_years = annualized_return(Decimal("100"), Decimal("121"), date(2020, 1, 1), date(2021, 12, 31))
    assert two_years is not None
    assert abs(two_years - Decimal("0.1")) < Decimal("0.001")
    assert simple_return(Decimal("0"), Decimal("5")) is None


def test_benchmark_difference_of_annualized_returns():
    result = compare_to_benchmark(
        symbol="SPY",
        start=date(2023, 1, 1),
        end=date(2024, 1, 1),
        portfolio_twr=Decimal("0.2"),
        benchmark_start_price=Decimal("400"),
        benchmark_end_price=Decimal("440"),
    )

    assert result.benchmark_return == Decimal("0.1")
    assert result.alpha == result.outperformance
    assert abs(result.outperformance - Decimal("0.1")) < Decimal("0.001")


def test_benchmark_needs_a_start_price():
    with pytest.raises(ValidationFailed):
        compare_to_benchmark(
            symbol="SPY",
            start=START,
            end=END,
            portfolio_twr=Decimal("0"),
            benchmark_start_price=Decimal("0"),
            benchmark_end_price=Decimal("1"),
        )


def test_cash_flows_from_ledger_signs():
    def make(type: TransactionType, day: date, quantity: str, price: str, commission: str = "0") -> LedgerEntry:
        return LedgerEntry(
            id=uuid4(),
            type=type,
            symbol="AAPL",
            trade_date=day,
            quantity=Decimal(quantity),
            price=Decimal(price),
            commission=Decimal(commission),
        )

    entries = [
        make(TransactionType.BUY, date(2024, 2, 1), "10", "100", "1"),
        make(TransactionType.SELL, date(2024, 3, 1), "5", "110", "1"),
        make(TransactionType.DIVIDEND, date(2024, 4, 1), "5", "0.5"),
        make(TransactionType.DIVIDEND_REINVEST, date(2024, 4, 1), "0.1", "112"),
        make(TransactionType.BUY, date(2025, 1, 2), "1", "100"),
    ]
    flows = cash_flows_from_ledger(entries, START, END)

    assert [(flow.kind, flow.amount) for flow in flows] == [
        (CashFlowKind.DEPOSIT, Decimal("1001")),
        (CashFlowKind.WITHDRAWAL, Decimal("-549")),
        (CashFlowKind.DIVIDEND, Decimal("-2.5")),
    ]


def test_without_external_flows_twr_and_mwr_match_the_total_return():
    start_value, end_value = Decimal("10000"), Decimal("11250")
    twr = time_weighted_return(
        start=START, end=END, start_value=start_value, end_value=end_value, flows=[], values_after_flow={}
    )
    mwr = money_weighted_return(start=START, end=END, start_value=start_value, end_value=end_value, flows=[])

    total = simple_return(start_value, end_value)
    assert twr.twr == total
    assert abs(mwr.period_return - total) < Decimal("1e-6")
    assert as_percent(twr.twr) == as_percent(mwr.period_return) == Decimal("12.50")
