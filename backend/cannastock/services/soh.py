"""
Stock on hand derived from the movement ledger.

SOH = sum(quantity of live In movements) - sum(quantity of live Out movements),
restricted to transaction_date <= as_of when given. Nothing is cached; every
call aggregates the ledger, so historical and current queries share one formula.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import as_naive_utc
from ..models import Movement, MovementDirection

logger = logging.getLogger(__name__)


def _signed_quantity():
    return case(
        (Movement.direction == MovementDirection.inbound, Movement.quantity),
        else_=-Movement.quantity,
    )


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _filtered(stmt, as_of: Optional[datetime], location_id: Optional[int]):
    stmt = stmt.where(Movement.is_deleted == False)  # noqa: E712
    if as_of is not None:
        stmt = stmt.where(Movement.transaction_date <= as_naive_utc(as_of))
    if location_id is not None:
        stmt = stmt.where(Movement.location_id == location_id)
    return stmt


async def calculate_soh(
    db: AsyncSession,
    product_id: int,
    as_of: Optional[datetime] = None,
    location_id: Optional[int] = None,
) -> Decimal:
    stmt = select(func.sum(_signed_quantity())).where(Movement.product_id == product_id)
    res = await db.execute(_filtered(stmt, as_of, location_id))
    soh = _to_decimal(res.scalar_one())
    logger.debug("SOH product %s as of %s location %s = %s", product_id, as_of, location_id, soh)
    return soh


async def calculate_batch_soh(
    db: AsyncSession,
    batch_number: str,
    product_id: Optional[int] = None,
    as_of: Optional[datetime] = None,
    location_id: Optional[int] = None,
) -> Decimal:
    stmt = select(func.sum(_signed_quantity())).where(Movement.batch_number == batch_number)
    if product_id is not None:
        stmt = stmt.where(Movement.product_id == product_id)
    res = await db.execute(_filtered(stmt, as_of, location_id))
    soh = _to_decimal(res.scalar_one())
    logger.debug("SOH batch %s product %s as of %s = %s", batch_number, product_id, as_of, soh)
    return soh


async def calculate_soh_batch(
    db: AsyncSession,
    product_ids: Iterable[int],
    as_of: Optional[datetime] = None,
    location_id: Optional[int] = None,
) -> dict[int, Decimal]:
    """SOH for many products in one query. Every requested id is present, 0 when it has no movements."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    stmt = (
        select(Movement.product_id, func.sum(_signed_quantity()))
        .where(Movement.product_id.in_(ids))
        .group_by(Movement.product_id)
    )
    res = await db.execute(_filtered(stmt, as_of, location_id))
    result = {product_id: Decimal(0) for product_id in ids}
    for product_id, soh in res.all():
        result[product_id] = _to_decimal(soh)
    logger.debug("SOH for %s products as of %s", len(ids), as_of)
    return result


async def calculate_soh_by_batch(
    db: AsyncSession,
    product_id: int,
    as_of: Optional[datetime] = None,
    location_id: Optional[int] = None,
) -> dict[str, Decimal]:
    """SOH per batch number of one product. Movements without a batch number are left out."""
    stmt = (
        select(Movement.batch_number, func.sum(_signed_quantity()))
        .where(Movement.product_id == product_id, Movement.batch_number.is_not(None))
        .group_by(Movement.batch_number)
    )
    res = await db.execute(_filtered(stmt, as_of, location_id))
    return {batch_number: _to_decimal(soh) for batch_number, soh in res.all()}


async def last_movement_dates(
    db: AsyncSession,
    product_ids: Iterable[int],
    as_of: Optional[datetime] = None,
) -> dict[int, datetime]:
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    stmt = (
        select(Movement.product_id, func.max(Movement.transaction_date))
        .where(Movement.product_id.in_(ids))
        .group_by(Movement.product_id)
    )
    res = await db.execute(_filtered(stmt, as_of, None))
    return {product_id: last for product_id, last in res.all()}
