from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient


async def _signup(client: AsyncClient, email: str) -> dict[str, str]:
    response = await client.post(
        "/users", json={"email": email, "name": email.split("@")[0], "password": "supersecret"}
    )
    assert response.status_code == 201
    return {"X-User-Id": response.json()["id"]}


async def _portfolio(client: AsyncClient, headers: dict[str, str], name: str = "Main") -> str:
    response = await client.post("/portfolios", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


async def _buy(client: AsyncClient, headers, portfolio_id: str, symbol: str, day: str, quantity: str, price: str):
    response = await client.post(
        f"/portfolios/{portfolio_id}/transactions",
        json={"type": "BUY", "symbol": symbol, "trade_date": day, "quantity": quantity, "price": price},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_split_is_proposed_once_and_applied_on_approval(api):
    split = {"symbol": "AAPL", "type": "SPLIT", "ex_date": "2024-07-01", "ratio": "2"}
    async with api() as client:
        headers = await _signup(client, "split@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _buy(client, headers, portfolio_id, "AAPL", "2024-01-02", "10", "100")
        await _buy(client, headers, portfolio_id, "AAPL", "2024-03-02", "10", "120")
        sale = await client.post(
            f"/portfolios/{portfolio_id}/transactions",
            json={"type": "SELL", "symbol": "AAPL", "trade_date": "2024-06-02", "quantity": "5", "price": "150"},
            headers=headers,
        )
        assert sale.status_code == 201

        first = await client.post("/corporate-actions/simulate", json=split, headers=headers)
        assert first.status_code == 201
        assert first.json()["created"] is True
        assert first.json()["proposals_created"] == 1

        again = await client.post("/corporate-actions/simulate", json=split, headers=headers)
        assert again.json()["created"] is False
        assert again.json()["proposals_created"] == 0
        assert again.json()["action"]["id"] == first.json()["action"]["id"]

        [proposal] = (await client.get(f"/portfolios/{portfolio_id}/actions/pending", headers=headers)).json()
        assert proposal["status"] == "PENDING"
        assert Decimal(proposal["shares_affected"]) == Decimal("15")
        assert proposal["description"] == "Stock split 2:1 on AAPL affects 15 shares"

        approved = await client.post(
            f"/portfolios/{portfolio_id}/actions/{proposal['id']}/approve", headers=headers
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["status"] == "APPLIED"
        assert approved.json()["corporate_action"]["applied"] is True

        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("30")
        assert Decimal(holding["cost_basis"]) == Decimal("1650")

        lots = (
            await client.get(f"/portfolios/{portfolio_id}/tax-lots", params={"open_only": True}, headers=headers)
        ).json()
        assert [(Decimal(lot["remaining_quantity"]), Decimal(lot["cost_per_share"])) for lot in lots] == [
            (Decimal("10"), Decimal("50")),
            (Decimal("20"), Decimal("60")),
        ]

        [split_row] = (
            await client.get(f"/portfolios/{portfolio_id}/transactions", params={"type": "SPLIT"}, headers=headers)
        ).json()
        assert split_row["trade_date"] == "2024-07-01"
        assert split_row["corporate_action_id"] == first.json()["action"]["id"]

        assert (await client.get(f"/portfolios/{portfolio_id}/actions/pending", headers=headers)).json() == []
        replay = await client.post(
            f"/portfolios/{portfolio_id}/actions/{proposal['id']}/approve", headers=headers
        )
        assert replay.status_code == 409
        assert replay.json()["code"] == "ILLEGAL_TRANSITION"

        split_url = f"/portfolios/{portfolio_id}/transactions/{split_row['id']}"
        removed = await client.delete(split_url, headers=headers)
        assert removed.status_code == 409
        assert removed.json()["code"] == "CORPORATE_ACTION_ENTRY"
        edited = await client.patch(split_url, json={"quantity": "1"}, headers=headers)
        assert edited.status_code == 409
        assert edited.json()["code"] == "CORPORATE_ACTION_ENTRY"
        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("30")


@pytest.mark.parametrize(
    ("action", "bought", "expected_holdings", "written"),
    [
        (
            {"symbol": "KO", "type": "DIVIDEND", "ex_date": "2024-03-01", "amount": "0.5"},
            ("KO", "10", "60"),
            {"KO": ("10", "600")},
            [("DIVIDEND", "KO", "10", "0.5")],
        ),
        (
            {"symbol": "FB", "type": "TICKER_CHANGE", "ex_date": "2024-03-01", "new_symbol": "META"},
            ("FB", "3", "270"),
            {"META": ("3", "810")},
            [("TICKER_CHANGE", "FB", "3", None)],
        ),
        (
            {"symbol": "OLD", "type": "MERGER", "ex_date": "2024-03-01", "ratio": "0.5", "new_symbol": "NEW"},
            ("OLD", "10", "50"),
            {"NEW": ("5", "500")},
            [("MERGER", "OLD", "10", None), ("MERGER", "NEW", "5", None)],
        ),
        (
            {
                "symbol": "PAR",
                "type": "SPINOFF",
                "ex_date": "2024-03-01",
                "ratio": "0.2",
                "new_symbol": "KID",
                "basis_allocation": "0.25",
            },
            ("PAR", "10", "100"),
            {"PAR": ("10", "750"), "KID": ("2", "250")},
            [("SPINOFF", "PAR", "10", None), ("SPINOFF", "KID", "2", None)],
        ),
    ],
)
async def test_approval_applies_each_action_type(api, action, bought, expected_holdings, written):
    async with api() as client:
        headers = await _signup(client, "apply@example.com")
        portfolio_id = await _portfolio(client, headers)
        symbol, quantity, price = bought
        await _buy(client, headers, portfolio_id, symbol, "2024-01-02", quantity, price)

        simulated = await client.post("/corporate-actions/simulate", json=action, headers=headers)
        assert simulated.status_code == 201, simulated.text
        assert simulated.json()["proposals_created"] == 1
        [proposal] = (await client.get(f"/portfolios/{portfolio_id}/actions/pending", headers=headers)).json()

        approved = await client.post(f"/portfolios/{portfolio_id}/actions/{proposal['id']}/approve", headers=headers)
        assert approved.status_code == 200, approved.text
        assert approved.json()["status"] == "APPLIED"
        assert approved.json()["last_error"] is None

        holdings = (await client.get(f"/portfolios/{portfolio_id}/holdings", headers=headers)).json()
        assert {
            row["symbol"]: (Decimal(row["quantity"]), Decimal(row["cost_basis"])) for row in holdings
        } == {key: (Decimal(q), Decimal(basis)) for key, (q, basis) in expected_holdings.items()}

        rows = (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json()
        synthesized = [row for row in rows if row["corporate_action_id"] is not None]
        assert [
            (
                row["type"],
                row["symbol"],
                Decimal(row["quantity"]),
                Decimal(row["price"]) if row["price"] is not None else None,
            )
            for row in synthesized
        ] == [
            (kind, sym, Decimal(q), Decimal(p) if p is not None else None) for kind, sym, q, p in written
        ]
        assert {row["trade_date"] for row in synthesized} == {action["ex_date"]}


async def test_deleting_and_reinserting_the_ledger_rebuilds_the_same_state(api):
    trades = [
        {"type": "BUY", "symbol": "AAPL", "trade_date": "2024-01-02", "quantity": "10", "price": "100"},
        {"type": "BUY", "symbol": "AAPL", "trade_date": "2024-03-02", "quantity": "10", "price": "120"},
        {"type": "SELL", "symbol": "AAPL", "trade_date": "2024-06-02", "quantity": "5", "price": "150"},
    ]

    async def state(client, headers, portfolio_id):
        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        lots = (
            await client.get(f"/portfolios/{portfolio_id}/tax-lots", params={"open_only": True}, headers=headers)
        ).json()
        gains = (await client.get(f"/portfolios/{portfolio_id}/realized-gains", headers=headers)).json()
        return (
            (Decimal(holding["quantity"]), Decimal(holding["cost_basis"])),
            [(lot["acquired_on"], Decimal(lot["remaining_quantity"]), Decimal(lot["cost_basis"])) for lot in lots],
            [(gain["acquired_on"], Decimal(gain["quantity"]), Decimal(gain["gain"])) for gain in gains],
        )

    async with api() as client:
        headers = await _signup(client, "replay@example.com")
        portfolio_id = await _portfolio(client, headers)
        for payload in trades:
            created = await client.post(f"/portfolios/{portfolio_id}/transactions", json=payload, headers=headers)
            assert created.status_code == 201, created.text
        before = await state(client, headers, portfolio_id)

        rows = (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json()
        for row in reversed(rows):
            deleted = await client.delete(f"/portfolios/{portfolio_id}/transactions/{row['id']}", headers=headers)
            assert deleted.status_code == 204, deleted.text
        assert (await client.get(f"/portfolios/{portfolio_id}/holdings", headers=headers)).json() == []

        for payload in trades:
            created = await client.post(f"/portfolios/{portfolio_id}/transactions", json=payload, headers=headers)
            assert created.status_code == 201, created.text

        assert await state(client, headers, portfolio_id) == before


async def test_rejected_proposal_writes_nothing(api):
    async with api() as client:
        headers = await _signup(client, "reject@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _buy(client, headers, portfolio_id, "KO", "2024-01-02", "10", "60")

        simulated = await client.post(
            "/corporate-actions/simulate",
            json={"symbol": "KO", "type": "DIVIDEND", "ex_date": "2024-03-01", "amount": "0.5"},
            headers=headers,
        )
        assert simulated.json()["proposals_created"] == 1
        [proposal] = (await client.get(f"/portfolios/{portfolio_id}/actions/pending", headers=headers)).json()

        rejected = await client.post(
            f"/portfolios/{portfolio_id}/actions/{proposal['id']}/reject",
            json={"notes": "  paid in cash elsewhere "},
            headers=headers,
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "REJECTED"
        assert rejected.json()["notes"] == "paid in cash elsewhere"

        transactions = (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json()
        assert [row["type"] for row in transactions] == ["BUY"]


async def test_registering_an_action_is_idempotent(api):
    payload = {"symbol": "fb", "type": "TICKER_CHANGE", "ex_date": "2022-06-09", "new_symbol": "meta"}
    async with api() as client:
        headers = await _signup(client, "catalogue@example.com")

        first = await client.post("/corporate-actions", json=payload, headers=headers)
        second = await client.post("/corporate-actions", json=payload, headers=headers)

        assert first.status_code == 200
        assert first.json()["created"] is True
        assert first.json()["action"]["symbol"] == "FB"
        assert first.json()["action"]["new_symbol"] == "META"
        assert second.json()["created"] is False
        assert len((await client.get("/corporate-actions", headers=headers)).json()) == 1

        invalid = await client.post(
            "/corporate-actions",
            json={"symbol": "AAPL", "type": "SPLIT", "ex_date": "2024-07-01"},
            headers=headers,
        )
        assert invalid.status_code == 422
        assert invalid.json()["code"] == "INVALID_RATIO"


async def test_import_with_invalid_rows_writes_nothing_unless_skipping(api):
    records = [
        {"type": "BUY", "symbol": "AAPL", "date": "2024-01-02", "quantity": "10", "price": "100"},
        {"type": "BUY", "symbol": "MSFT", "date": "2024-01-03", "quantity": "0", "price": "300"},
        {"type": "SELL", "symbol": "AAPL", "date": "2024-02-01", "quantity": "50", "price": "110"},
        {"type": "SELL", "symbol": "AAPL", "date": "2024-02-02", "quantity": "4", "price": "110"},
    ]
    async with api() as client:
        headers = await _signup(client, "import@example.com")
        portfolio_id = await _portfolio(client, headers)

        rejected = await client.post(
            f"/portfolios/{portfolio_id}/imports", json={"records": records}, headers=headers
        )
        assert rejected.status_code == 200
        body = rejected.json()
        assert body["batch_id"] is None
        assert (body["total"], body["success"], body["failed"], body["skipped"]) == (4, 0, 1, 0)
        assert [(error["line"], error["field"]) for error in body["errors"]] == [(2, "quantity")]
        assert (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json() == []

        preview = await client.post(
            f"/portfolios/{portfolio_id}/imports",
            json={"records": records, "skip_invalid": True, "dry_run": True},
            headers=headers,
        )
        assert preview.json()["dry_run"] is True
        assert preview.json()["batch_id"] is None
        assert preview.json()["success"] == 2
        assert [error["line"] for error in preview.json()["errors"]] == [2, 3]
        assert (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json() == []

        imported = await client.post(
            f"/portfolios/{portfolio_id}/imports",
            json={"records": records, "skip_invalid": True, "notes": "broker export"},
            headers=headers,
        )
        result = imported.json()
        assert (result["success"], result["skipped"], result["failed"]) == (2, 2, 0)
        batch_id = result["batch_id"]
        assert batch_id is not None

        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("6")

        [batch] = (await client.get(f"/portfolios/{portfolio_id}/imports", headers=headers)).json()
        assert batch["id"] == batch_id
        assert batch["transaction_count"] == 2
        assert batch["notes"] == "broker export"

        deleted = await client.delete(f"/portfolios/{portfolio_id}/imports/{batch_id}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json() == {"batch_id": batch_id, "transactions_deleted": 2}
        assert (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json() == []
        gone = await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)
        assert gone.status_code == 404


async def test_csv_import_and_foreign_batches(api):
    content = "Date,Type,Symbol,Quantity,Price\n2024-01-02,Buy,vti,3,250\n2024-01-05,Buy,VTI,2,$255.00\n"
    async with api() as client:
        owner = await _signup(client, "csv@example.com")
        stranger = await _signup(client, "stranger@example.com")
        portfolio_id = await _portfolio(client, owner)

        response = await client.post(
            f"/portfolios/{portfolio_id}/imports/csv", json={"content": content}, headers=owner
        )
        assert response.status_code == 200
        assert response.json()["success"] == 2
        batch_id = response.json()["batch_id"]

        batch = (await client.get(f"/portfolios/{portfolio_id}/imports/{batch_id}", headers=owner)).json()
        assert batch["format_tag"] == "generic"
        assert batch["transaction_count"] == 2
        rows = (
            await client.get(f"/portfolios/{portfolio_id}/transactions", params={"batch_id": batch_id}, headers=owner)
        ).json()
        assert {row["symbol"] for row in rows} == {"VTI"}

        hidden = await client.get(f"/portfolios/{portfolio_id}/imports/{batch_id}", headers=stranger)
        assert hidden.status_code == 404
        assert hidden.json()["code"] == "PORTFOLIO_NOT_FOUND"
        foreign_delete = await client.delete(f"/portfolios/{portfolio_id}/imports/{batch_id}", headers=stranger)
        assert foreign_delete.status_code == 404

        schwab = (
            "Date,Action,Symbol,Description,Quantity,Price,Fees & Comm,Amount\n"
            '01/16/2024,Buy,VTI,VANGUARD TOTAL STOCK MKT ETF,1,$260.00,$0.65,"-$260.65"\n'
        )
        broker = await client.post(
            f"/portfolios/{portfolio_id}/imports/csv",
            json={"content": schwab, "format_tag": "schwab"},
            headers=owner,
        )
        assert broker.status_code == 200, broker.text
        assert broker.json()["success"] == 1
        schwab_batch = (
            await client.get(f"/portfolios/{portfolio_id}/imports/{broker.json()['batch_id']}", headers=owner)
        ).json()
        assert schwab_batch["format_tag"] == "schwab"
        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/VTI", headers=owner)).json()
        assert Decimal(holding["quantity"]) == Decimal("6")

        unknown = await client.post(
            f"/portfolios/{portfolio_id}/imports/csv",
            json={"content": content, "format_tag": "quicken"},
            headers=owner,
        )
        assert unknown.status_code == 422


async def test_metrics_split_returns_at_the_mid_year_deposit(api, provider):
    provider.set_closes(
        "AAPL", {date(2024, 1, 1): "100", date(2024, 7, 1): "120", date(2024, 12, 31): "120"}
    )
    provider.set_closes("MSFT", {date(2024, 7, 1): "100", date(2024, 12, 31): "120"})
    provider.set_closes("SPY", {date(2024, 1, 1): "400", date(2024, 12, 31): "460"})
    window = {"start": "2024-01-01", "end": "2024-12-31"}
    async with api() as client:
        headers = await _signup(client, "metrics@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _buy(client, headers, portfolio_id, "AAPL", "2024-01-01", "100", "100")
        await _buy(client, headers, portfolio_id, "MSFT", "2024-07-01", "50", "100")

        twr = (await client.get(f"/portfolios/{portfolio_id}/performance/twr", params=window, headers=headers)).json()
        assert Decimal(twr["start_value"]) == Decimal("10000")
        assert Decimal(twr["end_value"]) == Decimal("18000")
        assert Decimal(twr["twr_percent"]) == Decimal("27.06")
        assert len(twr["periods"]) == 2

        mwr = (await client.get(f"/portfolios/{portfolio_id}/performance/mwr", params=window, headers=headers)).json()
        assert Decimal("0.23") < Decimal(mwr["annual_rate"]) < Decimal("0.25")
        assert Decimal(mwr["total_cash_flow"]) == Decimal("5000")

        metrics = (await client.get(f"/portfolios/{portfolio_id}/performance", params=window, headers=headers)).json()
        assert metrics["sub_periods"] == 2
        assert metrics["mwr_error"] is None
        assert Decimal("0.23") < Decimal(metrics["mwr"]) < Decimal("0.25")
        assert Decimal(metrics["twr"]) == Decimal(twr["twr"])

        benchmark = (
            await client.get(
                f"/portfolios/{portfolio_id}/performance/benchmark",
                params={**window, "symbol": "spy"},
                headers=headers,
            )
        ).json()
        assert benchmark["symbol"] == "SPY"
        assert Decimal(benchmark["benchmark_return"]) == Decimal("0.15")

        missing = await client.get(
            f"/portfolios/{portfolio_id}/performance/benchmark",
            params={**window, "symbol": "QQQ"},
            headers=headers,
        )
        assert missing.status_code == 503
        assert missing.json()["code"] == "BENCHMARK_PRICE_UNAVAILABLE"

        backwards = await client.get(
            f"/portfolios/{portfolio_id}/performance/twr",
            params={"start": "2024-12-31", "end": "2024-01-01"},
            headers=headers,
        )
        assert backwards.status_code == 422


async def test_snapshots_are_written_once_per_day(api, provider):
    provider.set_closes("AAPL", {date(2024, 6, 3): "150"})
    async with api() as client:
        headers = await _signup(client, "snapshot@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _buy(client, headers, portfolio_id, "AAPL", "2024-01-02", "10", "100")

        first = await client.post(f"/portfolios/{portfolio_id}/snapshots", json={"date": "2024-06-03"}, headers=headers)
        assert first.status_code == 201
        assert first.json()["created"] is True
        snapshot = first.json()["snapshot"]
        assert Decimal(snapshot["total_value"]) == Decimal("1500")
        assert Decimal(snapshot["total_cost_basis"]) == Decimal("1000")
        assert Decimal(snapshot["total_return"]) == Decimal("500")

        again = await client.post(f"/portfolios/{portfolio_id}/snapshots", json={"date": "2024-06-03"}, headers=headers)
        assert again.json()["created"] is False
        assert again.json()["snapshot"]["id"] == snapshot["id"]

        latest = await client.get(f"/portfolios/{portfolio_id}/snapshots/latest", headers=headers)
        assert latest.json()["id"] == snapshot["id"]

        future = await client.post(f"/portfolios/{portfolio_id}/snapshots", json={"date": "2999-01-01"}, headers=headers)
        assert future.status_code == 422
        assert future.json()["code"] == "INVALID_DATE"


async def test_jobs_can_be_listed_and_run(api):
    async with api() as client:
        headers = await _signup(client, "jobs@example.com")

        jobs = (await client.get("/jobs", headers=headers)).json()
        assert {job["name"] for job in jobs} == {
            "corporate_action_detection",
            "price_refresh",
            "performance_snapshots",
            "cleanup",
        }

        status = await client.post("/jobs/cleanup/run", headers=headers)
        assert status.status_code == 200
        assert status.json()["runs"] == 1
        assert status.json()["last_error"] is None
        assert status.json()["last_result"]["snapshots_deleted"] == 0

        unknown = await client.post("/jobs/nope/run", headers=headers)
        assert unknown.status_code == 404
        assert unknown.json()["code"] == "JOB_NOT_FOUND"
