from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from cannastock.errors import NotFoundError
from cannastock.models import Product, TransactionType
from cannastock.services.movements import generate_movements
from cannastock.services.stock_reports import (
    get_all_stock_on_hand,
    get_inventory_valuation,
    get_movement_history_with_balance,
    get_stock_alerts,
    get_stock_on_hand,
    get_stock_on_hand_bulk,
    get_stock_on_hand_by_batch,
    is_in_stock,
)

TODAY = date(2025, 12, 10)


async def _receive(session, add_lines, header_id, product, qty, when=None, batch_number=None):
    await add_lines(TransactionType.grv, header_id, product, qty, batch_number=batch_number)
    await generate_movements(session, TransactionType.grv, header_id, requested_by="receiver", transaction_date=when)


async def _sell(session, add_lines, header_id, product, qty, when=None, batch_number=None):
    await add_lines(TransactionType.sale, header_id, product, qty, batch_number=batch_number)
    await generate_movements(session, TransactionType.sale, header_id, requested_by="pos", transaction_date=when)


@pytest.mark.asyncio
async def test_stock_on_hand_with_value(session, product, add_lines):
    await _receive(session, add_lines, 1, product, 10, when=datetime(2025, 12, 1))
    await _sell(session, add_lines, 2, product, 3, when=datetime(2025, 12, 2))

    soh = await get_stock_on_hand(session, product.id)
    assert soh.quantity == Decimal("7")
    assert soh.value_at_cost == Decimal("315.00")
    assert soh.below_reorder_level is False
    assert soh.last_movement_date == datetime(2025, 12, 2)

    with pytest.raises(NotFoundError):
        await get_stock_on_hand(session, 999)


@pytest.mark.asyncio
async def test_stock_on_hand_as_of_reports_last_movement_before_it(session, product, add_lines):
    await _receive(session, add_lines, 1, product, 10, when=datetime(2025, 12, 1))
    await _sell(session, add_lines, 2, product, 3, when=datetime(2025, 12, 5))

    soh = await get_stock_on_hand(session, product.id, as_of=datetime(2025, 12, 3))
    assert soh.quantity == Decimal("10")
    assert soh.last_movement_date == datetime(2025, 12, 1)

    before_any = await get_stock_on_hand(session, product.id, as_of=datetime(2025, 11, 30))
    assert before_any.quantity == 0
    assert before_any.last_movement_date is None


@pytest.mark.asyncio
async def test_history_window_with_offset(session, product, add_lines):
    await _receive(session, add_lines, 1, product, 10, when=datetime(2025, 12, 1, 22, 0))
    await _sell(session, add_lines, 2, product, 4, when=datetime(2025, 12, 2, 12, 0))
    minus_three = timezone(timedelta(hours=-3))

    # 2025-12-01 20:00 at -03:00 is 23:00 UTC, after the receipt
    history = await get_movement_history_with_balance(
        session, product.id, start=datetime(2025, 12, 1, 20, 0, tzinfo=minus_three)
    )
    assert [entry.running_balance for entry in history] == [Decimal("6")]


@pytest.mark.asyncio
async def test_bulk_and_all_stock(session, product, add_lines):
    idle = Product(sku="PRE-101", name="Pre-roll 1g", cost_price=Decimal("12"), reorder_level=Decimal("0"))
    session.add(idle)
    await session.commit()
    await _receive(session, add_lines, 1, product, 4)

    bulk = await get_stock_on_hand_bulk(session, [product.id, idle.id])
    assert {row.sku: row.quantity for row in bulk} == {"FLW-101": Decimal("4"), "PRE-101": Decimal("0")}
    assert bulk[0].below_reorder_level is True

    assert [row.sku for row in await get_all_stock_on_hand(session)] == ["FLW-101"]
    assert len(await get_all_stock_on_hand(session, include_zero=True)) == 2


@pytest.mark.asyncio
async def test_batches_positive_only(session, product, add_lines):
    product.expiry_date = date(2026, 6, 30)
    await session.commit()
    await _receive(session, add_lines, 1, product, 5, batch_number="011025500002")
    await _receive(session, add_lines, 2, product, 5, batch_number="011025500001")
    await _sell(session, add_lines, 3, product, 5, batch_number="011025500002")

    batches = await get_stock_on_hand_by_batch(session, product.id)
    assert [(b.batch_number, b.quantity) for b in batches] == [("011025500001", Decimal("5"))]
    assert batches[0].expiry_date == date(2026, 6, 30)
    assert batches[0].thc_percentage == Decimal("18.50")


@pytest.mark.asyncio
async def test_history_running_balance(session, product, add_lines):
    await _receive(session, add_lines, 1, product, 10, when=datetime(2025, 12, 1))
    await _sell(session, add_lines, 2, product, 3, when=datetime(2025, 12, 5))
    await _sell(session, add_lines, 3, product, 2, when=datetime(2025, 12, 8))

    entries = await get_movement_history_with_balance(session, product.id)
    assert [e.running_balance for e in entries] == [Decimal("10"), Decimal("7"), Decimal("5")]
    assert entries[1].reference == "sale #2"

    window = await get_movement_history_with_balance(session, product.id, start=datetime(2025, 12, 5))
    assert [e.running_balance for e in window] == [Decimal("7"), Decimal("5")]


@pytest.mark.asyncio
async def test_reorder_alerts(session, product, add_lines):
    empty = Product(sku="OIL-401", name="CBD Oil 30ml", reorder_level=Decimal("2"))
    session.add(empty)
    await session.commit()
    await _receive(session, add_lines, 1, product, 4)

    alerts = await get_stock_alerts(session, today=TODAY)
    by_sku = {a.sku: a for a in alerts}
    assert by_sku["OIL-401"].alert_type == "out_of_stock"
    assert by_sku["OIL-401"].severity == "critical"
    assert by_sku["FLW-101"].alert_type == "low_stock"
    assert by_sku["FLW-101"].severity == "warning"
    assert by_sku["FLW-101"].suggested_reorder_qty == Decimal("6")
    assert alerts[0].sku == "OIL-401"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "days, alert_type, severity",
    [(-1, "expired", "critical"), (5, "expiring", "critical"), (12, "expiring", "warning"), (25, "expiring", "info")],
)
async def test_expiry_alerts(session, product, add_lines, days, alert_type, severity):
    product.reorder_level = Decimal("0")
    product.expiry_date = TODAY + timedelta(days=days)
    await session.commit()
    await _receive(session, add_lines, 1, product, 3)

    alerts = await get_stock_alerts(session, today=TODAY)
    assert [(a.alert_type, a.severity) for a in alerts] == [(alert_type, severity)]
    assert alerts[0].days_to_expiry == days


@pytest.mark.asyncio
async def test_no_expiry_alert_without_stock(session, product):
    product.reorder_level = Decimal("0")
    product.expiry_date = TODAY + timedelta(days=3)
    await session.commit()
    assert await get_stock_alerts(session, today=TODAY) == []


@pytest.mark.asyncio
async def test_valuation_and_in_stock(session, product, add_lines):
    short = Product(sku="PRE-101", name="Pre-roll 1g", cost_price=Decimal("12"), selling_price=Decimal("35"))
    session.add(short)
    await session.commit()
    await _receive(session, add_lines, 1, product, 2)
    await _sell(session, add_lines, 2, short, 1)

    valuation = await get_inventory_valuation(session)
    assert valuation.product_count == 2
    assert valuation.products_in_stock == 1
    assert valuation.total_quantity == Decimal("2")
    assert valuation.total_value_at_cost == Decimal("90.00")
    assert valuation.total_value_at_retail == Decimal("240.00")

    assert await is_in_stock(session, product.id)
    assert await is_in_stock(session, product.id, required=2)
    assert not await is_in_stock(session, product.id, required=3)
    assert not await is_in_stock(session, short.id)
