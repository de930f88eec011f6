import logging
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..errors import NotFoundError
from ..models import MovementDirection, Product
from ..schemas import (
    BatchStockOnHand,
    InventoryValuation,
    MovementHistoryEntry,
    StockAlert,
    StockOnHand,
)
from .movements import get_movement_history
from .soh import (
    calculate_soh,
    calculate_soh_batch,
    calculate_soh_by_batch,
    last_movement_dates,
)

settings = get_settings()
logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}


@contextmanager
def _timed(operation: str, **context):
    started = time.perf_counter()
    yield
    elapsed_ms = (time.perf_counter() - started) * 1000
    if elapsed_ms > settings.soh_slow_threshold_ms:
        logger.warning("Slow stock report %s %s took %.0fms", operation, context, elapsed_ms)


async def _get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product", product_id)
    return product


async def _active_products(db: AsyncSession) -> list[Product]:
    res = await db.execute(select(Product).where(Product.is_active == True).order_by(Product.sku))  # noqa: E712
    return list(res.scalars().all())


def _stock_row(
    product: Product, quantity: Decimal, location_id: Optional[int], last: Optional[datetime]
) -> StockOnHand:
    cost_price = product.cost_price or Decimal(0)
    reorder_level = product.reorder_level or Decimal(0)
    return StockOnHand(
        product_id=product.id,
        sku=product.sku,
        name=product.name,
        location_id=location_id,
        quantity=quantity,
        cost_price=cost_price,
        value_at_cost=quantity * cost_price,
        reorder_level=reorder_level,
        below_reorder_level=reorder_level > 0 and quantity <= reorder_level,
        last_movement_date=last,
    )


async def get_stock_on_hand(
    db: AsyncSession,
    product_id: int,
    location_id: Optional[int] = None,
    as_of: Optional[datetime] = None,
) -> StockOnHand:
    with _timed("stock_on_hand", product_id=product_id):
        product = await _get_product(db, product_id)
        quantity = await calculate_soh(db, product_id, as_of=as_of, location_id=location_id)
        last = await last_movement_dates(db, [product_id], as_of=as_of)
    return _stock_row(product, quantity, location_id, last.get(product_id))


async def get_stock_on_hand_bulk(
    db: AsyncSession,
    product_ids: Iterable[int],
    location_id: Optional[int] = None,
) -> list[StockOnHand]:
    ids = sorted(set(product_ids))
    if not ids:
        return []
    with _timed("stock_on_hand_bulk", products=len(ids)):
        res = await db.execute(select(Product).where(Product.id.in_(ids)).order_by(Product.sku))
        products = res.scalars().all()
        quantities = await calculate_soh_batch(db, ids, location_id=location_id)
        last = await last_movement_dates(db, ids)
    return [_stock_row(p, quantities[p.id], location_id, last.get(p.id)) for p in products]


async def get_all_stock_on_hand(
    db: AsyncSession,
    include_zero: bool = False,
    location_id: Optional[int] = None,
) -> list[StockOnHand]:
    with _timed("all_stock_on_hand"):
        products = await _active_products(db)
        ids = [p.id for p in products]
        quantities = await calculate_soh_batch(db, ids, location_id=location_id)
        last = await last_movement_dates(db, ids)
    rows = [_stock_row(p, quantities[p.id], location_id, last.get(p.id)) for p in products]
    if not include_zero:
        rows = [row for row in rows if row.quantity != 0]
    return rows


async def get_stock_on_hand_by_batch(
    db: AsyncSession,
    product_id: int,
    location_id: Optional[int] = None,
) -> list[BatchStockOnHand]:
    """Batches with stock left, oldest batch number first."""
    with _timed("stock_on_hand_by_batch", product_id=product_id):
        product = await _get_product(db, product_id)
        batches = await calculate_soh_by_batch(db, product_id, location_id=location_id)
    rows = [
        BatchStockOnHand(
            product_id=product.id,
            sku=product.sku,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=product.expiry_date,
            thc_percentage=product.thc_percentage,
            cbd_percentage=product.cbd_percentage,
        )
        for batch_number, quantity in batches.items()
        if quantity > 0
    ]
    rows.sort(key=lambda row: (row.expiry_date or date.max, row.batch_number))
    return rows


async def get_movement_history_with_balance(
    db: AsyncSession,
    product_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    location_id: Optional[int] = None,
) -> list[MovementHistoryEntry]:
    """Movements oldest first, each with the balance after it. The balance opens at SOH before start."""
    with _timed("movement_history", product_id=product_id):
        await _get_product(db, product_id)
        opening = Decimal(0)
        if start is not None:
            opening = await calculate_soh(
                db, product_id, as_of=start - timedelta(microseconds=1), location_id=location_id
            )
        movements = await get_movement_history(db, product_id, start=start, end=end, location_id=location_id)

    balance = opening
    entries = []
    for movement in reversed(movements):
        if movement.direction == MovementDirection.inbound:
            balance += movement.quantity
        else:
            balance -= movement.quantity
        if movement.header_id is not None:
            reference = f"{movement.transaction_type.name} #{movement.header_id}"
        else:
            reference = movement.movement_reason
        entries.append(
            MovementHistoryEntry(
                id=movement.id,
                transaction_date=movement.transaction_date,
                movement_type=movement.movement_type,
                direction=movement.direction,
                quantity=movement.quantity,
                batch_number=movement.batch_number,
                reference=reference,
                running_balance=balance,
            )
        )
    return entries


def _expiry_alert(product: Product, quantity: Decimal, today: date) -> Optional[StockAlert]:
    if not product.expiry_date or quantity <= 0:
        return None
    days = (product.expiry_date - today).days
    if days < 0:
        return StockAlert(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            alert_type="expired",
            severity="critical",
            message=f"{product.sku} expired {-days} day(s) ago with {quantity} on hand",
            quantity=quantity,
            expiry_date=product.expiry_date,
            days_to_expiry=days,
        )
    if days > settings.expiry_warning_days:
        return None
    if days <= 7:
        severity = "critical"
    elif days <= 14:
        severity = "warning"
    else:
        severity = "info"
    return StockAlert(
        product_id=product.id,
        sku=product.sku,
        name=product.name,
        alert_type="expiring",
        severity=severity,
        message=f"{product.sku} expires in {days} day(s) with {quantity} on hand",
        quantity=quantity,
        expiry_date=product.expiry_date,
        days_to_expiry=days,
    )


async def get_stock_alerts(db: AsyncSession, today: Optional[date] = None) -> list[StockAlert]:
    today = today or date.today()
    with _timed("stock_alerts"):
        products = await _active_products(db)
        quantities = await calculate_soh_batch(db, [p.id for p in products])

    alerts = []
    for product in products:
        quantity = quantities[product.id]
        reorder_level = product.reorder_level or Decimal(0)
        if reorder_level > 0 and quantity <= 0:
            alerts.append(
                StockAlert(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name,
                    alert_type="out_of_stock",
                    severity="critical",
                    message=f"{product.sku} is out of stock",
                    quantity=quantity,
                    reorder_level=reorder_level,
                    suggested_reorder_qty=reorder_level * 2 - quantity,
                )
            )
        elif 0 < quantity <= reorder_level:
            alerts.append(
                StockAlert(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name,
                    alert_type="low_stock",
                    severity="warning",
                    message=f"{product.sku} is at {quantity}, reorder level {reorder_level}",
                    quantity=quantity,
                    reorder_level=reorder_level,
                    suggested_reorder_qty=reorder_level * 2 - quantity,
                )
            )
        expiry = _expiry_alert(product, quantity, today)
        if expiry:
            alerts.append(expiry)

    alerts.sort(key=lambda a: (SEVERITY_ORDER[a.severity], a.sku, a.alert_type))
    logger.debug("%s stock alerts for %s products", len(alerts), len(products))
    return alerts


async def get_inventory_valuation(db: AsyncSession, as_of: Optional[datetime] = None) -> InventoryValuation:
    """Value of positive stock. Negative balances do not offset other products."""
    with _timed("inventory_valuation"):
        products = await _active_products(db)
        quantities = await calculate_soh_batch(db, [p.id for p in products], as_of=as_of)

    total_quantity = Decimal(0)
    at_cost = Decimal(0)
    at_retail = Decimal(0)
    in_stock = 0
    for product in products:
        quantity = quantities[product.id]
        if quantity <= 0:
            continue
        in_stock += 1
        total_quantity += quantity
        at_cost += quantity * (product.cost_price or Decimal(0))
        at_retail += quantity * (product.selling_price or Decimal(0))
    return InventoryValuation(
        as_of=as_of,
        product_count=len(products),
        products_in_stock=in_stock,
        total_quantity=total_quantity,
        total_value_at_cost=at_cost,
        total_value_at_retail=at_retail,
    )


async def is_in_stock(
    db: AsyncSession,
    product_id: int,
    required: Decimal = Decimal(1),
    location_id: Optional[int] = None,
) -> bool:
    quantity = await calculate_soh(db, product_id, location_id=location_id)
    return quantity >= Decimal(str(required))
