from datetime import date
from decimal import Decimal

import pytest

from folio.accounting.enums import ImportFormat, TransactionType
from folio.core.errors import ValidationFailed
from folio.ingest.csv import parse_csv, parse_date, parse_decimal, parse_generic_csv, parse_transaction_type

SAMPLE = """Date,Type,Symbol,Quantity,Price,Commission,Currency,Notes
2024-01-02,Buy,aapl,10,$100.00,1.00,usd,first lot
01/15/2024,SOLD,AAPL.O,"1,000",150,,,
2024-02-01,Dividend,KO,25,0.46,0,USD,
not-a-date,BUY,MSFT,1,400,0,USD,
2024-03-01,HOLD,MSFT,1,400,0,USD,
2024-03-02,BUY,MSFT,0,400,0,USD,
2024-03-03,SELL,MSFT,2,,0,USD,
"""


def test_generic_csv_parses_valid_rows_and_reports_bad_ones():
    result = parse_generic_csv(SAMPLE)

    assert [record.line for record in result.records] == [2, 3, 4]
    first = result.records[0]
    assert first.type == TransactionType.BUY
    assert first.symbol == "AAPL"
    assert first.date == date(2024, 1, 2)
    assert first.price == Decimal("100.00")
    assert first.commission == Decimal("1.00")
    assert first.currency == "USD"
    assert first.notes == "first lot"
    assert first.raw_data["Symbol"] == "aapl"

    second = result.records[1]
    assert second.type == TransactionType.SELL
    assert second.symbol == "AAPL"
    assert second.quantity == Decimal("1000")
    assert second.commission == Decimal("0")

    assert [(error.line, error.field) for error in result.errors] == [
        (5, "date"),
        (6, "type"),
        (7, "quantity"),
        (8, "price"),
    ]


def test_header_aliases_are_accepted():
    text = "Trade Date,Action,Ticker,Shares,Unit Price\n2024-05-01,Purchase,VTI,3,250\n"

    [record] = parse_generic_csv(text).records

    assert record.symbol == "VTI"
    assert record.quantity == Decimal("3")


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Date,Type,Symbol\n2024-01-02,BUY,AAPL\n",
        "Date,Type,Symbol,Quantity\n",
    ],
)
def test_structural_problems_raise(text):
    with pytest.raises(ValidationFailed) as excinfo:
        parse_generic_csv(text)

    assert excinfo.value.code == "INVALID_CSV"


def test_field_parsers():
    assert parse_date("March 5, 2024") == date(2024, 3, 5)
    assert parse_decimal("(1,234.50)") == Decimal("-1234.50")
    assert parse_decimal("-") == Decimal("0")
    assert parse_transaction_type(" stock   split ") == TransactionType.SPLIT
    with pytest.raises(ValueError):
        parse_transaction_type("TRANSFER")


def summary(result):
    return [
        (record.type, record.symbol, record.date, record.quantity, record.price, record.commission)
        for record in result.records
    ]


def test_fidelity_actions_fees_and_negative_quantities():
    text = (
        "Run Date,Action,Symbol,Security Description,Quantity,Price,Commission,Fees\n"
        "01/15/2024,YOU BOUGHT,AAPL,Apple Inc,100,150.50,4.95,1.05\n"
        "01/16/2024,YOU SOLD,GOOGL,Alphabet Inc,50,2800.00,9.95,1.00\n"
        "01/17/2024,YOU BOUGHT,MSFT,Microsoft Corp,-10,400,,\n"
        "01/18/2024,INVALID_ACTION,AAPL,Apple Inc,1,1,,\n"
    )

    result = parse_csv(text, ImportFormat.FIDELITY)

    assert summary(result) == [
        (TransactionType.BUY, "AAPL", date(2024, 1, 15), Decimal("100"), Decimal("150.50"), Decimal("6.00")),
        (TransactionType.SELL, "GOOGL", date(2024, 1, 16), Decimal("50"), Decimal("2800.00"), Decimal("10.95")),
        (TransactionType.SELL, "MSFT", date(2024, 1, 17), Decimal("10"), Decimal("400"), Decimal("0")),
    ]
    assert result.records[0].notes == "Apple Inc"
    assert [(error.line, error.field) for error in result.errors] == [(5, "action")]


def test_interactive_brokers_codes_currency_and_description_fallback():
    text = (
        "DataDiscriminator,Code,Symbol,Quantity,T. Price,Comm/Fee,Currency,Date/Time,Description\n"
        'Trade,O,AAPL,100,150.50,-1.00,USD,"2024-01-15, 10:30:00",\n'
        "Trade,C,SAP,-50,120.00,-1.25,eur,2024-01-16,\n"
        "Trade,XX,MSFT,5,300,0,USD,2024-01-17,Buy\n"
        "Trade,ZZ,MSFT,5,300,0,USD,2024-01-18,Transfer\n"
    )

    result = parse_csv(text, "interactive_brokers")

    assert summary(result) == [
        (TransactionType.BUY, "AAPL", date(2024, 1, 15), Decimal("100"), Decimal("150.50"), Decimal("1.00")),
        (TransactionType.SELL, "SAP", date(2024, 1, 16), Decimal("50"), Decimal("120.00"), Decimal("1.25")),
        (TransactionType.BUY, "MSFT", date(2024, 1, 17), Decimal("5"), Decimal("300"), Decimal("0")),
    ]
    assert result.records[1].currency == "EUR"
    assert [(error.line, error.field) for error in result.errors] == [(5, "code")]


def test_td_ameritrade_reads_the_action_from_the_description():
    text = (
        "DATE,TRANSACTION ID,DESCRIPTION,QUANTITY,SYMBOL,PRICE,COMMISSION,AMOUNT,REG FEE\n"
        "01/15/2024,1001,Bought 100 AAPL @ 150.50,100,AAPL,150.50,0.00,-15050.00,0.01\n"
        "01/20/2024,1002,QUALIFIED DIVIDEND (AAPL),100,AAPL,0.24,,24.00,\n"
        "01/21/2024,1003,WIRE INCOMING,1,AAPL,1,,,\n"
    )

    result = parse_csv(text, ImportFormat.TD_AMERITRADE)

    assert summary(result) == [
        (TransactionType.BUY, "AAPL", date(2024, 1, 15), Decimal("100"), Decimal("150.50"), Decimal("0.01")),
        (TransactionType.DIVIDEND, "AAPL", date(2024, 1, 20), Decimal("100"), Decimal("0.24"), Decimal("0")),
    ]
    assert [(error.line, error.field) for error in result.errors] == [(4, "description")]


def test_etrade_and_schwab_exports():
    etrade = (
        "TransactionDate,TransactionType,SecurityType,Symbol,Quantity,Amount,Price,Commission,Description\n"
        "01/15/24,Bought,EQ,AAPL,100,-15054.95,150.50,4.95,APPLE INC\n"
        "01/16/24,Sold,EQ,AAPL,-40,6195.05,155.00,4.95,APPLE INC\n"
    )
    schwab = (
        "Date,Action,Symbol,Description,Quantity,Price,Fees & Comm,Amount\n"
        "02/01/2024,Reinvest Shares,VTI,VANGUARD TOTAL,0.5,$240.00,,-$120.00\n"
        "02/02/2024,Name Change,FB,META PLATFORMS,3,,,\n"
    )

    assert summary(parse_csv(etrade, ImportFormat.ETRADE)) == [
        (TransactionType.BUY, "AAPL", date(2024, 1, 15), Decimal("100"), Decimal("150.50"), Decimal("4.95")),
        (TransactionType.SELL, "AAPL", date(2024, 1, 16), Decimal("40"), Decimal("155.00"), Decimal("4.95")),
    ]
    assert summary(parse_csv(schwab, ImportFormat.SCHWAB)) == [
        (TransactionType.DIVIDEND_REINVEST, "VTI", date(2024, 2, 1), Decimal("0.5"), Decimal("240.00"), Decimal("0")),
        (TransactionType.TICKER_CHANGE, "FB", date(2024, 2, 2), Decimal("3"), None, Decimal("0")),
    ]


def test_robinhood_falls_back_to_the_description():
    text = (
        "Activity Date,Process Date,Settle Date,Instrument,Description,Trans Code,Quantity,Price,Amount\n"
        "1/15/2024,1/15/2024,1/17/2024,AAPL,Apple Inc,Buy,10,$150.00,($1500.00)\n"
        "1/20/2024,1/20/2024,1/20/2024,KO,Dividend,,10,$0.46,$4.60\n"
    )

    result = parse_csv(text, ImportFormat.ROBINHOOD)

    assert [(record.type, record.symbol) for record in result.records] == [
        (TransactionType.BUY, "AAPL"),
        (TransactionType.DIVIDEND, "KO"),
    ]
    assert result.errors == []


@pytest.mark.parametrize(
    ("format_tag", "text"),
    [
        (ImportFormat.ETRADE, "Symbol,Quantity\nAAPL,1\n"),
        (ImportFormat.FIDELITY, "Run Date,Symbol,Quantity\n01/15/2024,AAPL,1\n"),
        (ImportFormat.TD_AMERITRADE, "DATE,SYMBOL,QUANTITY\n01/15/2024,AAPL,1\n"),
        (ImportFormat.ROBINHOOD, "Activity Date,Instrument,Quantity\n1/15/2024,AAPL,1\n"),
    ],
)
def test_broker_layouts_require_their_key_columns(format_tag, text):
    with pytest.raises(ValidationFailed) as excinfo:
        parse_csv(text, format_tag)

    assert excinfo.value.code == "INVALID_CSV"
