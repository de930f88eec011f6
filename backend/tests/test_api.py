from datetime import datetime
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from cannastock.deps import get_db
from cannastock.main import app
from cannastock.models import Movement, SerialStatus, TransactionType
from cannastock.services.movements import create_movement, generate_movements


@pytest_asyncio.fixture
async def client(async_session_maker):
    async def override_get_db():
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_and_ready(client):
    assert (await client.get("/health")).json() == {"status": "ok"}
    assert (await client.get("/ready")).json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_batch_number_endpoints(client):
    resp = await client.post(
        "/identifiers/batch-numbers",
        json={"site_id": 1, "batch_type": 10, "batch_date": "2025-12-10", "requested_by": "lab-1"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["batch_number"] == "011025500001"
    assert body["week"] == 50
    assert body["week_start"] == "2025-12-08"

    exists = (await client.get("/identifiers/batch-numbers/011025500001/exists")).json()
    assert exists == {"batch_number": "011025500001", "valid": True, "exists": True}

    current = await client.get(
        "/identifiers/batch-numbers/current-sequence",
        params={"site_id": 1, "batch_type": 10, "batch_date": "2025-12-10"},
    )
    assert current.json()["current_sequence"] == 1

    bad = await client.get("/identifiers/batch-numbers/0110")
    assert bad.status_code == 400
    assert "batch number" in bad.json()["detail"]


@pytest.mark.asyncio
async def test_serial_number_endpoints(client):
    resp = await client.post(
        "/identifiers/serial-numbers",
        json={
            "site_id": 1,
            "strain_code": 101,
            "batch_number": "011025500001",
            "production_date": "2025-12-10",
            "weight_grams": "3.5",
            "count": 2,
            "requested_by": "packer-1",
        },
    )
    assert resp.status_code == 201
    serials = resp.json()
    assert [s["unit_sequence"] for s in serials] == [1, 2]
    assert serials[0]["short_serial"] == "0125121000001"

    components = (await client.get(f"/identifiers/serial-numbers/{serials[0]['full_serial']}/components")).json()
    assert components["strain_type"] == "sativa"
    assert Decimal(str(components["weight_grams"])) == Decimal("3.5")

    found = await client.get(f"/identifiers/serial-numbers/{serials[1]['short_serial']}")
    assert found.json()["full_serial"] == serials[1]["full_serial"]
    assert (await client.get("/identifiers/serial-numbers/0125121099999")).status_code == 404

    too_heavy = await client.post(
        "/identifiers/serial-numbers",
        json={"site_id": 1, "strain_code": 101, "batch_number": "011025500001", "weight_grams": "1000", "requested_by": "p"},
    )
    assert too_heavy.status_code == 400


@pytest.mark.asyncio
async def test_linked_serial_endpoints(client):
    resp = await client.post(
        "/identifiers/linked-serial-numbers",
        json={"site_id": 1, "serial_type": 30, "batch_number": "011025500001", "count": 2, "requested_by": "p"},
    )
    assert resp.json()["serial_numbers"] == ["3025500001000001", "3025500001000002"]

    parent = await client.get(
        "/identifiers/linked-serial-numbers/3025500001000002/parent-batch",
        params={"site_id": 1, "batch_type": 10},
    )
    assert parent.json()["batch_number"] == "011025500001"


@pytest.mark.asyncio
async def test_stock_and_movement_endpoints(client, session, product, add_lines):
    await add_lines(TransactionType.grv, 10, product, 8)
    await generate_movements(
        session, TransactionType.grv, 10, requested_by="receiver", transaction_date=datetime(2025, 12, 1)
    )

    stock = (await client.get(f"/stock/{product.id}")).json()
    assert Decimal(str(stock["quantity"])) == 8
    assert (await client.get("/stock/999")).status_code == 404

    movements = (await client.get(f"/movements/transaction/{int(TransactionType.grv)}/10")).json()
    assert len(movements) == 1
    assert movements[0]["direction"] == "In"

    empty_reason = await client.post(
        f"/movements/transaction/{int(TransactionType.grv)}/10/reverse", json={"reason": "", "reversed_by": "m"}
    )
    assert empty_reason.status_code == 422

    reverse = await client.post(
        f"/movements/transaction/{int(TransactionType.grv)}/10/reverse",
        json={"reason": "Supplier recalled", "reversed_by": "manager"},
    )
    assert reverse.json() == {"reversed": 1}
    again = await client.post(
        f"/movements/transaction/{int(TransactionType.grv)}/10/reverse",
        json={"reason": "Supplier recalled", "reversed_by": "manager"},
    )
    assert again.json() == {"reversed": 0}

    assert (await client.get("/movements", params={"product_id": product.id})).json() == []
    history = (await client.get("/movements", params={"product_id": product.id, "include_reversed": True})).json()
    assert history[0]["movement_reason"].endswith("[REVERSED: Supplier recalled]")

    audit = (await client.get("/audit", params={"actor": "manager"})).json()
    assert [a["action"] for a in audit] == ["movements_reverse"]


@pytest.mark.asyncio
async def test_report_endpoints(client, product):
    alerts = (await client.get("/stock/alerts", params={"today": "2025-12-10"})).json()
    assert alerts[0]["alert_type"] == "out_of_stock"
    valuation = (await client.get("/stock/valuation")).json()
    assert valuation["product_count"] == 1
    assert valuation["products_in_stock"] == 0


@pytest.mark.asyncio
async def test_serial_lifecycle_endpoints(client, product, store):
    product_id, store_id = product.id, store.id
    created = (
        await client.post(
            "/identifiers/serial-numbers",
            json={"site_id": 1, "strain_code": 101, "batch_number": "011025500001", "count": 2, "requested_by": "p"},
        )
    ).json()
    first, second = created[0]["full_serial"], created[1]["short_serial"]

    early_sale = await client.post(
        f"/identifiers/serial-numbers/{first}/sell", json={"sold_transaction_id": 55, "sold_by": "cashier-1"}
    )
    assert early_sale.status_code == 409

    assigned = await client.post(
        f"/identifiers/serial-numbers/{first}/assign",
        json={"product_id": product_id, "location_id": store_id, "assigned_by": "packer-1"},
    )
    assert assigned.json()["status"] == SerialStatus.assigned
    assert assigned.json()["location_id"] == store_id

    sold = await client.post(
        f"/identifiers/serial-numbers/{first}/sell",
        json={"sold_transaction_id": 55, "sold_at": "2025-12-10T14:00:00+02:00", "sold_by": "cashier-1"},
    )
    assert sold.json()["status"] == SerialStatus.sold
    assert sold.json()["sold_transaction_id"] == 55

    destroyed = await client.post(
        f"/identifiers/serial-numbers/{second}/destroy",
        json={"reason": "Mould found", "witness": "qa-2", "destroyed_by": "qa-1"},
    )
    assert destroyed.json()["status"] == SerialStatus.destroyed
    again = await client.post(
        f"/identifiers/serial-numbers/{second}/assign", json={"product_id": product_id, "assigned_by": "packer-1"}
    )
    assert again.status_code == 409

    missing = await client.post(
        "/identifiers/serial-numbers/0125121099999/destroy", json={"reason": "Lost", "destroyed_by": "qa-1"}
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_transfer_endpoints(client, session, product, vault, store):
    product_id, vault_id, store_id = product.id, vault.id, store.id
    await create_movement(
        session,
        Movement(
            product_id=product_id,
            quantity=Decimal("20"),
            transaction_type=TransactionType.grv,
            movement_reason="Opening stock",
            location_id=vault_id,
        ),
        created_by="receiver",
    )
    body = {
        "from_location_id": vault_id,
        "to_location_id": store_id,
        "lines": [{"product_id": product_id, "quantity": "6", "batch_number": "011025500001"}],
        "actor": "vault-clerk",
    }

    dispatched = await client.post("/transfers/950/dispatch", json=body)
    assert dispatched.status_code == 201
    assert [m["direction"] for m in dispatched.json()] == ["Out"]

    same_place = await client.post("/transfers/951/dispatch", json={**body, "to_location_id": vault_id})
    assert same_place.status_code == 400
    no_lines = await client.post("/transfers/952/dispatch", json={**body, "lines": []})
    assert no_lines.status_code == 422

    received = await client.post("/transfers/950/receive", json={**body, "actor": "store-clerk"})
    assert received.status_code == 201
    assert [m["direction"] for m in (await client.get("/transfers/950")).json()] == ["Out", "In"]
    at_store = (await client.get(f"/stock/{product_id}", params={"location_id": store_id})).json()
    assert Decimal(str(at_store["quantity"])) == 6

    cancelled = await client.post("/transfers/950/cancel", json={"reason": "Wrong store", "cancelled_by": "manager"})
    assert cancelled.json() == {"reversed": 2}
    assert (await client.get("/transfers/950")).json() == []
