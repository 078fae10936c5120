"""Parameter rules, descriptions and the proposal lifecycle."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from folio.accounting.actions import (
    ProposalEvent,
    describe,
    format_ratio,
    next_status,
    normalize_parameters,
)
from folio.accounting.enums import CorporateActionType, ProposalStatus
from folio.core.errors import Conflict, ValidationFailed


def test_lifecycle_transitions():
    approved = next_status(ProposalStatus.PENDING, ProposalEvent.APPROVE)
    assert approved == ProposalStatus.APPROVED
    assert next_status(approved, ProposalEvent.APPLY) == ProposalStatus.APPLIED
    assert next_status(approved, ProposalEvent.REJECT) == ProposalStatus.REJECTED
    assert next_status(ProposalStatus.PENDING, ProposalEvent.REJECT) == ProposalStatus.REJECTED


@pytest.mark.parametrize(
    ("status", "event"),
    [
        (ProposalStatus.PENDING, ProposalEvent.APPLY),
        (ProposalStatus.APPLIED, ProposalEvent.REJECT),
        (ProposalStatus.APPLIED, ProposalEvent.APPROVE),
        (ProposalStatus.REJECTED, ProposalEvent.APPROVE),
        (ProposalStatus.APPROVED, ProposalEvent.APPROVE),
    ],
)
def test_illegal_transitions_conflict(status, event):
    with pytest.raises(Conflict) as excinfo:
        next_status(status, event)

    assert excinfo.value.code == "ILLEGAL_TRANSITION"


def test_split_parameters_drop_unrelated_fields():
    params = normalize_parameters(
        symbol=" aapl ",
        type=CorporateActionType.SPLIT,
        ex_date=date(2024, 7, 1),
        ratio=Decimal("2"),
        amount=Decimal("1"),
        new_symbol="XYZ",
    )

    assert params.symbol == "AAPL"
    assert params.amount is None
    assert params.new_symbol is None
    assert params.dedupe_key == "AAPL|SPLIT|2024-07-01|2||"


def test_equal_parameters_share_a_dedupe_key():
    first = normalize_parameters(
        symbol="KO", type=CorporateActionType.DIVIDEND, ex_date=date(2024, 6, 14), amount=Decimal("0.485")
    )
    second = normalize_parameters(
        symbol="ko", type=CorporateActionType.DIVIDEND, ex_date=date(2024, 6, 14), amount=Decimal("0.4850")
    )

    assert first.dedupe_key == second.dedupe_key
    assert first.currency == "USD"


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"type": CorporateActionType.SPLIT}, "INVALID_RATIO"),
        ({"type": CorporateActionType.SPLIT, "ratio": Decimal("1")}, "INVALID_RATIO"),
        ({"type": CorporateActionType.DIVIDEND}, "INVALID_AMOUNT"),
        ({"type": CorporateActionType.MERGER, "ratio": Decimal("1")}, "INVALID_SYMBOL"),
        ({"type": CorporateActionType.TICKER_CHANGE, "new_symbol": "ABC"}, "INVALID_SYMBOL"),
        (
            {
                "type": CorporateActionType.SPINOFF,
                "ratio": Decimal("0.1"),
                "new_symbol": "KID",
                "basis_allocation": Decimal("1.5"),
            },
            "INVALID_ALLOCATION_RATIO",
        ),
    ],
)
def test_invalid_parameters(kwargs, code):
    with pytest.raises(ValidationFailed) as excinfo:
        normalize_parameters(symbol="ABC", ex_date=date(2024, 1, 2), **kwargs)

    assert excinfo.value.code == code


def test_format_ratio():
    assert format_ratio(Decimal("2")) == "2:1"
    assert format_ratio(Decimal("0.5")) == "1:2"
    assert format_ratio(Decimal("1.5")) == "3:2"


def test_describe_mentions_affected_shares():
    split = normalize_parameters(
        symbol="AAPL", type=CorporateActionType.SPLIT, ex_date=date(2024, 7, 1), ratio=Decimal("2")
    )
    dividend = normalize_parameters(
        symbol="KO", type=CorporateActionType.DIVIDEND, ex_date=date(2024, 6, 14), amount=Decimal("0.5")
    )

    assert describe(split) == "Stock split 2:1 on AAPL"
    assert describe(split, Decimal("15")) == "Stock split 2:1 on AAPL affects 15 shares"
    assert describe(dividend, Decimal("10")) == "Dividend of 0.5 USD per share on KO affects 10 shares (5.00 USD total)"
