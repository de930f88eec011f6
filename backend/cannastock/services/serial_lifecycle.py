import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import as_naive_utc, tx
from ..errors import AuditFieldMissingError, InvalidSerialTransitionError, NotFoundError
from ..models import Location, Product, SerialNumber, SerialStatus
from .audit import log_action

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SerialStatus.created: {SerialStatus.assigned, SerialStatus.destroyed},
    SerialStatus.assigned: {SerialStatus.sold, SerialStatus.destroyed},
    SerialStatus.sold: {SerialStatus.destroyed},
    SerialStatus.destroyed: set(),
}


def can_transition(current: SerialStatus, target: SerialStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


async def get_serial(db: AsyncSession, serial_number: str) -> SerialNumber:
    """Looks a unit up by its full or short serial."""
    res = await db.execute(
        select(SerialNumber).where(
            or_(SerialNumber.full_serial == serial_number, SerialNumber.short_serial == serial_number)
        )
    )
    serial = res.scalar_one_or_none()
    if not serial:
        raise NotFoundError("Serial number", serial_number)
    return serial


async def list_batch_serials(db: AsyncSession, batch_number: str) -> list[SerialNumber]:
    res = await db.execute(
        select(SerialNumber).where(SerialNumber.batch_number == batch_number).order_by(SerialNumber.unit_sequence)
    )
    return list(res.scalars().all())


async def _transition(
    db: AsyncSession,
    serial: SerialNumber,
    target: SerialStatus,
    actor: str,
    payload: Optional[dict] = None,
) -> SerialNumber:
    if not actor:
        raise AuditFieldMissingError("actor")
    current = SerialStatus(serial.status)
    if not can_transition(current, target):
        raise InvalidSerialTransitionError(serial.full_serial, current, target)
    serial.status = target
    serial.status_changed_at = datetime.utcnow()
    serial.status_changed_by = actor
    await log_action(
        db,
        actor,
        f"serial_{target.name}",
        "serial_number",
        serial.id,
        {"from": current.name, "to": target.name, **(payload or {})},
        entity_key=serial.full_serial,
    )
    logger.info("Serial %s %s -> %s by %s", serial.full_serial, current.name, target.name, actor)
    return serial


async def assign_serial(
    db: AsyncSession,
    serial_number: str,
    product_id: int,
    location_id: Optional[int] = None,
    *,
    assigned_by: str,
) -> SerialNumber:
    async with tx(db):
        serial = await get_serial(db, serial_number)
        product = await db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        if location_id is not None and not await db.get(Location, location_id):
            raise NotFoundError("Location", location_id)
        serial.product_id = product.id
        serial.product_sku = product.sku
        serial.product_name = product.name
        serial.location_id = location_id
        await _transition(
            db, serial, SerialStatus.assigned, assigned_by, {"product_id": product.id, "location_id": location_id}
        )
    return serial


async def mark_serial_sold(
    db: AsyncSession,
    serial_number: str,
    sold_transaction_id: int,
    *,
    sold_by: str,
    sold_at: Optional[datetime] = None,
) -> SerialNumber:
    if not sold_transaction_id:
        raise ValueError("sold_transaction_id is required to mark a serial sold")
    async with tx(db):
        serial = await get_serial(db, serial_number)
        serial.sold_transaction_id = sold_transaction_id
        serial.sold_at = as_naive_utc(sold_at) or datetime.utcnow()
        await _transition(db, serial, SerialStatus.sold, sold_by, {"sold_transaction_id": sold_transaction_id})
    return serial


async def destroy_serial(
    db: AsyncSession,
    serial_number: str,
    reason: str,
    witness: Optional[str] = None,
    *,
    destroyed_by: str,
) -> SerialNumber:
    if not reason or not reason.strip():
        raise AuditFieldMissingError("destruction_reason")
    async with tx(db):
        serial = await get_serial(db, serial_number)
        serial.destruction_reason = reason
        serial.destruction_witness = witness
        await _transition(db, serial, SerialStatus.destroyed, destroyed_by, {"reason": reason, "witness": witness})
    return serial
