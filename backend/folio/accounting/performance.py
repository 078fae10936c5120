"""Return calculations: TWR sub-period chaining, IRR by bisection, annualization.

All inputs and outputs are ``Decimal``. Floating point is confined to the
IRR search and to fractional powers, and results are re-materialized into
decimals at scale 10.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

import numpy as np

from folio.accounting.enums import TransactionType
from folio.accounting.ledger import LedgerEntry
from folio.core.decimals import HUNDRED, ONE, ZERO, dsum, from_float, is_zero, q2, q10
from folio.core.errors import NoConvergence, ValidationFailed

DAYS_PER_YEAR = 365.25
IRR_DAY_COUNT = 365.0
IRR_LOWER_BOUND = -0.9999
IRR_UPPER_BOUND = 10.0
IRR_TOLERANCE = 1e-7
IRR_MAX_ITERATIONS = 200


class CashFlowKind(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"


@dataclass(frozen=True)
class CashFlow:
    """External flow; ``amount`` is positive when money enters the portfolio."""

    date: date
    amount: Decimal
    kind: CashFlowKind


def cash_flows_from_ledger(entries: Iterable[LedgerEntry], start: date, end: date) -> list[CashFlow]:
    """External flows inside ``[start, end]``.

    A BUY is a deposit of its total cost, a SELL a withdrawal of its net
    proceeds and a cash DIVIDEND is paid out of the portfolio. Splits,
    reinvestments and other corporate actions are not flows.
    """

    flows: list[CashFlow] = []
    for entry in entries:
        if entry.trade_date < start or entry.trade_date > end:
            continue
        if entry.type == TransactionType.BUY:
            flows.append(CashFlow(entry.trade_date, q10(entry.total_cost), CashFlowKind.DEPOSIT))
        elif entry.type == TransactionType.SELL:
            flows.append(CashFlow(entry.trade_date, -q10(entry.proceeds), CashFlowKind.WITHDRAWAL))
        elif entry.type == TransactionType.DIVIDEND and entry.price is not None:
            flows.append(CashFlow(entry.trade_date, -q10(entry.quantity * entry.price), CashFlowKind.DIVIDEND))
    flows.sort(key=lambda flow: flow.date)
    return flows


def net_flows_by_date(flows: Iterable[CashFlow]) -> dict[date, Decimal]:
    totals: dict[date, Decimal] = {}
    for flow in flows:
        totals[flow.date] = totals.get(flow.date, ZERO) + flow.amount
    return dict(sorted(totals.items()))


def span_years(start: date, end: date) -> float:
    return (end - start).days / DAYS_PER_YEAR


def annualize(total_return: Decimal, start: date, end: date) -> Decimal | None:
    """``(1 + r) ** (1 / years) - 1`` or ``None`` when undefined."""

    if (end - start).days < 1:
        return None
    growth = ONE + total_return
    if growth <= ZERO:
        return None
    years = span_years(start, end)
    return from_float(math.pow(float(growth), 1.0 / years) - 1.0)


def as_percent(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return q2(value * HUNDRED)


@dataclass(frozen=True)
class SubPeriod:
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    rate: Decimal


@dataclass
class TWRResult:
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    twr: Decimal
    annualized: Decimal | None
    periods: list[SubPeriod] = field(default_factory=list)


def time_weighted_return(
    *,
    start: date,
    end: date,
    start_value: Decimal,
    end_value: Decimal,
    flows: Sequence[CashFlow],
    values_after_flow: Mapping[date, Decimal],
) -> TWRResult:
    """Chain sub-period returns split at every external flow date.

    ``start_value`` is the value at the close of ``start`` (flows dated on
    ``start`` are already inside it). ``values_after_flow`` maps each flow
    date after ``start`` to the closing value including that day's flows;
    the value before the flow is that amount minus the day's net flow.
    """

    if end < start:
        raise ValidationFailed("start date must not be after end date", code="INVALID_DATE_RANGE")
    net = {d: amount for d, amount in net_flows_by_date(flows).items() if start < d <= end}
    periods: list[SubPeriod] = []
    growth = ONE
    period_start = start
    previous_after = start_value
    for flow_date, amount in net.items():
        after = end_value if flow_date == end else values_after_flow.get(flow_date)
        if after is None:
            raise ValidationFailed(f"No valuation for flow date {flow_date}", code="MISSING_VALUATION")
        before = after - amount
        rate = _period_rate(previous_after, before)
        periods.append(SubPeriod(period_start, flow_date, previous_after, before, rate))
        growth *= ONE + rate
        period_start = flow_date
        previous_after = after
    if period_start != end or not periods:
        rate = _period_rate(previous_after, end_value)
        periods.append(SubPeriod(period_start, end, previous_after, end_value, rate))
        growth *= ONE + rate
    twr = q10(growth - ONE)
    return TWRResult(
        start=start,
        end=end,
        start_value=start_value,
        end_value=end_value,
        twr=twr,
        annualized=annualize(twr, start, end),
        periods=periods,
    )


def _period_rate(value_start: Decimal, value_end: Decimal) -> Decimal:
    # A period that starts empty contributes no return.
    if value_start <= ZERO or is_zero(value_start):
        return ZERO
    return q10((value_end - value_start) / value_start)


@dataclass
class MWRResult:
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    annual_rate: Decimal
    period_return: Decimal
    iterations: int
    total_cash_flow: Decimal


def money_weighted_return(
    *,
    start: date,
    end: date,
    start_value: Decimal,
    end_value: Decimal,
    flows: Sequence[CashFlow],
    lower: float = IRR_LOWER_BOUND,
    upper: float = IRR_UPPER_BOUND,
    tolerance: float = IRR_TOLERANCE,
    max_iterations: int = IRR_MAX_ITERATIONS,
) -> MWRResult:
    """Solve ``sum(CF_k * (1 + r) ** ((end - t_k) / 365)) = V_end`` by bisection.

    The starting value counts as a contribution at ``start``; flows dated on
    ``start`` are assumed to be inside it. Raises ``NoConvergence`` when the
    bracket holds no root or the iteration cap is hit.
    """

    if end < start:
        raise ValidationFailed("start date must not be after end date", code="INVALID_DATE_RANGE")
    window = [flow for flow in flows if start < flow.date <= end]
    amounts = np.array([float(start_value)] + [float(flow.amount) for flow in window], dtype=float)
    exponents = np.array(
        [(end - start).days / IRR_DAY_COUNT] + [(end - flow.date).days / IRR_DAY_COUNT for flow in window],
        dtype=float,
    )
    target = float(end_value)
    total_flow = dsum(flow.amount for flow in window)

    def excess(rate: float) -> float:
        return float(np.dot(amounts, np.power(1.0 + rate, exponents))) - target

    def result(rate: float, iterations: int) -> MWRResult:
        period = math.pow(1.0 + rate, (end - start).days / IRR_DAY_COUNT) - 1.0
        return MWRResult(
            start=start,
            end=end,
            start_value=start_value,
            end_value=end_value,
            annual_rate=from_float(rate),
            period_return=from_float(period),
            iterations=iterations,
            total_cash_flow=total_flow,
        )

    if not np.any(amounts) and target == 0.0:
        return result(0.0, 0)

    low, high = lower, upper
    f_low, f_high = excess(low), excess(high)
    if f_low == 0.0:
        return result(low, 0)
    if f_high == 0.0:
        return result(high, 0)
    if (f_low > 0) == (f_high > 0):
        raise NoConvergence(
            "Money-weighted return has no root in the search interval",
            details={"lower": lower, "upper": upper},
        )
    for iteration in range(1, max_iterations + 1):
        mid = (low + high) / 2.0
        f_mid = excess(mid)
        if f_mid == 0.0 or (high - low) / 2.0 < tolerance:
            return result(mid, iteration)
        if (f_mid > 0) == (f_low > 0):
            low, f_low = mid, f_mid
        else:
            high = mid
    raise NoConvergence(
        f"Money-weighted return did not converge within {max_iterations} iterations",
        details={"iterations": max_iterations},
    )


def simple_return(start_value: Decimal, end_value: Decimal) -> Decimal | None:
    if start_value <= ZERO:
        return None
    return q10(end_value / start_value - ONE)


def annualized_return(start_value: Decimal, end_value: Decimal, start: date, end: date) -> Decimal | None:
    """``(V_end / V_start) ** (1 / years) - 1`` for a window of at least one day."""

    total = simple_return(start_value, end_value)
    if total is None:
        return None
    return annualize(total, start, end)


@dataclass
class BenchmarkResult:
    symbol: str
    portfolio_return: Decimal
    benchmark_return: Decimal
    portfolio_annualized: Decimal | None
    benchmark_annualized: Decimal | None
    outperformance: Decimal
    alpha: Decimal


def compare_to_benchmark(
    *,
    symbol: str,
    start: date,
    end: date,
    portfolio_twr: Decimal,
    benchmark_start_price: Decimal,
    benchmark_end_price: Decimal,
) -> BenchmarkResult:
    """Compare against buying the benchmark at ``start`` and holding it.

    Without external flows the benchmark's TWR is its price return.
    Outperformance and alpha are both the simple difference of annualized
    returns (of total returns when the window is too short to annualize).
    """

    if benchmark_start_price <= ZERO:
        raise ValidationFailed(f"Benchmark {symbol} has no usable start price", code="INVALID_BENCHMARK")
    benchmark_twr = q10(benchmark_end_price / benchmark_start_price - ONE)
    portfolio_annualized = annualize(portfolio_twr, start, end)
    benchmark_annualized = annualize(benchmark_twr, start, end)
    if portfolio_annualized is not None and benchmark_annualized is not None:
        difference = q10(portfolio_annualized - benchmark_annualized)
    else:
        difference = q10(portfolio_twr - benchmark_twr)
    return BenchmarkResult(
        symbol=symbol,
        portfolio_return=portfolio_twr,
        benchmark_return=benchmark_twr,
        portfolio_annualized=portfolio_annualized,
        benchmark_annualized=benchmark_annualized,
        outperformance=difference,
        alpha=difference,
    )


__all__ = [
    "BenchmarkResult",
    "CashFlow",
    "CashFlowKind",
    "MWRResult",
    "SubPeriod",
    "TWRResult",
    "annualize",
    "annualized_return",
    "as_percent",
    "cash_flows_from_ledger",
    "compare_to_benchmark",
    "money_weighted_return",
    "net_flows_by_date",
    "simple_return",
    "span_years",
    "time_weighted_return",
]
