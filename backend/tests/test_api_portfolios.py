from decimal import Decimal

from httpx import AsyncClient


async def _signup(client: AsyncClient, email: str) -> dict[str, str]:
    response = await client.post(
        "/users", json={"email": email, "name": email.split("@")[0], "password": "supersecret"}
    )
    assert response.status_code == 201
    return {"X-User-Id": response.json()["id"]}


async def _portfolio(client: AsyncClient, headers: dict[str, str], name: str = "Main", **extra) -> str:
    response = await client.post("/portfolios", json={"name": name, **extra}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


async def _trade(client: AsyncClient, headers, portfolio_id: str, **payload):
    return await client.post(f"/portfolios/{portfolio_id}/transactions", json=payload, headers=headers)


async def _scenario_one(client: AsyncClient, headers, portfolio_id: str) -> None:
    for payload in (
        {"type": "BUY", "symbol": "AAPL", "trade_date": "2024-01-02", "quantity": "10", "price": "100"},
        {"type": "BUY", "symbol": "aapl", "trade_date": "2024-03-02", "quantity": "10", "price": "120"},
        {"type": "SELL", "symbol": "AAPL", "trade_date": "2024-06-02", "quantity": "5", "price": "150"},
    ):
        response = await _trade(client, headers, portfolio_id, **payload)
        assert response.status_code == 201, response.text


async def test_identity_header_is_required(api):
    async with api() as client:
        missing = await client.get("/portfolios")
        assert missing.status_code == 401
        assert missing.json()["code"] == "MISSING_IDENTITY"
        assert (await client.get("/portfolios", headers={"X-User-Id": "not-a-uuid"})).status_code == 401
        unknown = await client.get("/portfolios", headers={"X-User-Id": "00000000-0000-0000-0000-000000000001"})
        assert unknown.json()["code"] == "UNKNOWN_IDENTITY"
        headers = await _signup(client, "ada@example.com")
        me = await client.get("/users/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["email"] == "ada@example.com"


async def test_portfolio_crud_and_ownership(api):
    async with api() as client:
        owner = await _signup(client, "owner@example.com")
        other = await _signup(client, "other@example.com")
        portfolio_id = await _portfolio(client, owner, cost_basis_method="LIFO")

        duplicate = await client.post("/portfolios", json={"name": "Main"}, headers=owner)
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "DUPLICATE_NAME"

        foreign = await client.get(f"/portfolios/{portfolio_id}", headers=other)
        assert foreign.status_code == 403
        assert foreign.json()["kind"] == "FORBIDDEN"

        renamed = await client.patch(
            f"/portfolios/{portfolio_id}", json={"name": "Retirement"}, headers=owner
        )
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "Retirement"
        assert renamed.json()["cost_basis_method"] == "LIFO"

        listed = await client.get("/portfolios", headers=other)
        assert listed.json() == []

        deleted = await client.delete(f"/portfolios/{portfolio_id}", headers=owner)
        assert deleted.status_code == 204
        missing = await client.get(f"/portfolios/{portfolio_id}", headers=owner)
        assert missing.status_code == 404


async def test_fifo_sale_projects_holdings_lots_and_gains(api):
    async with api() as client:
        headers = await _signup(client, "fifo@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _scenario_one(client, headers, portfolio_id)

        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("15")
        assert Decimal(holding["cost_basis"]) == Decimal("1650")

        lots = (
            await client.get(f"/portfolios/{portfolio_id}/tax-lots", params={"open_only": True}, headers=headers)
        ).json()
        assert [(lot["acquired_on"], Decimal(lot["remaining_quantity"]), Decimal(lot["cost_per_share"])) for lot in lots] == [
            ("2024-01-02", Decimal("5"), Decimal("100")),
            ("2024-03-02", Decimal("10"), Decimal("120")),
        ]

        [gain] = (await client.get(f"/portfolios/{portfolio_id}/realized-gains", headers=headers)).json()
        assert Decimal(gain["cost_basis"]) == Decimal("500")
        assert Decimal(gain["proceeds"]) == Decimal("750")
        assert Decimal(gain["gain"]) == Decimal("250")
        assert gain["long_term"] is False

        report = (await client.get(f"/portfolios/{portfolio_id}/tax-report/2024", headers=headers)).json()
        assert Decimal(report["total_short_term"]) == Decimal("250")
        assert report["long_term"] == []


async def test_oversell_is_rejected_and_leaves_ledger_untouched(api):
    async with api() as client:
        headers = await _signup(client, "oversell@example.com")
        portfolio_id = await _portfolio(client, headers)
        bought = await _trade(
            client, headers, portfolio_id, type="BUY", symbol="AAPL", trade_date="2024-01-02", quantity="10", price="100"
        )
        assert bought.status_code == 201

        response = await _trade(
            client, headers, portfolio_id, type="SELL", symbol="AAPL", trade_date="2024-02-02", quantity="11", price="110"
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INSUFFICIENT_SHARES"
        assert body["kind"] == "INSUFFICIENT_SHARES"
        assert body["detail"]

        transactions = (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json()
        assert len(transactions) == 1
        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("10")


async def test_backdated_edit_that_breaks_a_later_sale_is_rejected(api):
    async with api() as client:
        headers = await _signup(client, "edit@example.com")
        portfolio_id = await _portfolio(client, headers)
        await _scenario_one(client, headers, portfolio_id)
        transactions = (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json()
        first_buy = transactions[0]

        shrink = await client.patch(
            f"/portfolios/{portfolio_id}/transactions/{first_buy['id']}",
            json={"quantity": "1"},
            headers=headers,
        )
        assert shrink.status_code == 200
        holding = (await client.get(f"/portfolios/{portfolio_id}/holdings/AAPL", headers=headers)).json()
        assert Decimal(holding["quantity"]) == Decimal("6")

        delete_second = await client.delete(
            f"/portfolios/{portfolio_id}/transactions/{transactions[1]['id']}", headers=headers
        )
        assert delete_second.status_code == 409
        still_there = await client.get(
            f"/portfolios/{portfolio_id}/transactions/{transactions[1]['id']}", headers=headers
        )
        assert still_there.status_code == 200


async def test_validation_errors_share_the_error_shape(api):
    async with api() as client:
        headers = await _signup(client, "shape@example.com")
        portfolio_id = await _portfolio(client, headers)

        future = await _trade(
            client, headers, portfolio_id, type="BUY", symbol="AAPL", trade_date="2999-01-01", quantity="1", price="1"
        )
        assert future.status_code == 422
        assert future.json() == {
            "detail": "trade date cannot be in the future",
            "code": "INVALID_DATE",
            "kind": "VALIDATION_ERROR",
        }

        no_price = await _trade(
            client, headers, portfolio_id, type="BUY", symbol="AAPL", trade_date="2024-01-02", quantity="1"
        )
        assert no_price.status_code == 422
        assert no_price.json()["code"] == "INVALID_PRICE"

        huge = await _trade(
            client, headers, portfolio_id, type="BUY", symbol="AAPL", trade_date="2024-01-02", quantity="1e20", price="1"
        )
        assert huge.status_code == 422
        assert huge.json()["code"] == "INVALID_QUANTITY"

        huge_total = await _trade(
            client, headers, portfolio_id, type="BUY", symbol="AAPL", trade_date="2024-01-02", quantity="1e10", price="1e9"
        )
        assert huge_total.status_code == 422
        assert huge_total.json()["code"] == "INVALID_PRICE"
        assert (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=headers)).json() == []


async def test_specific_lot_harvest_flow(api, provider):
    provider.set_quote("XYZ", "120")
    async with api() as client:
        headers = await _signup(client, "harvest@example.com")
        portfolio_id = await _portfolio(client, headers)
        for day, price in (("2024-01-02", "200"), ("2024-02-02", "100")):
            response = await _trade(
                client, headers, portfolio_id, type="BUY", symbol="XYZ", trade_date=day, quantity="10", price=price
            )
            assert response.status_code == 201

        [opportunity] = (
            await client.get(f"/portfolios/{portfolio_id}/tax-lots/harvest", headers=headers)
        ).json()
        assert Decimal(opportunity["unrealized_loss"]) == Decimal("-800")
        assert Decimal(opportunity["loss_percent"]) == Decimal("40")

        preview = await client.post(
            f"/portfolios/{portfolio_id}/tax-lots/allocate",
            json={"symbol": "XYZ", "quantity": "10", "method": "FIFO", "price": "120"},
            headers=headers,
        )
        assert preview.status_code == 200
        assert preview.json()["lines"][0]["lot_id"] == opportunity["lot_id"]

        sale = await _trade(
            client,
            headers,
            portfolio_id,
            type="SELL",
            symbol="XYZ",
            trade_date="2024-06-03",
            quantity="10",
            price="120",
            lot_method="SPECIFIC_LOT",
            lot_selections=[{"lot_id": opportunity["lot_id"], "quantity": "10"}],
        )
        assert sale.status_code == 201, sale.text

        [gain] = (await client.get(f"/portfolios/{portfolio_id}/realized-gains", headers=headers)).json()
        assert gain["lot_id"] == opportunity["lot_id"]
        assert Decimal(gain["gain"]) == Decimal("-800")
        assert gain["long_term"] is False


async def test_health_reports_collaborators(api):
    async with api() as client:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "sqlite"
        assert response.json()["scheduler_running"] is False
