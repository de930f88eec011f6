"""
Stock transfers between locations.

Dispatch books Transfer Out movements at the source, receipt books Transfer
In movements at the destination. Both use the transfer id as header id and
the 1-based line number as detail id, so a transfer side cannot be booked
twice while its movements are live.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AuditFieldMissingError, NotFoundError
from ..models import Location, Movement, TransactionType
from ..schemas import TransferLine
from .movements import create_movements, get_movement_type_name, get_movement_direction, reverse_transactions

logger = logging.getLogger(__name__)


async def _get_location(db: AsyncSession, location_id: int) -> Location:
    location = await db.get(Location, location_id)
    if not location:
        raise NotFoundError("Location", location_id)
    return location


async def _book(
    db: AsyncSession,
    transaction_type: TransactionType,
    transfer_id: int,
    location: Location,
    lines: list[TransferLine],
    actor: str,
    reason: str,
) -> list[Movement]:
    if not lines:
        raise ValueError(f"Transfer {transfer_id} has no lines")
    movements = [
        Movement(
            product_id=line.product_id,
            movement_type=get_movement_type_name(transaction_type),
            direction=get_movement_direction(transaction_type),
            quantity=line.quantity,
            mass=line.weight_grams or 0,
            value=line.value,
            batch_number=line.batch_number,
            serial_number=line.serial_number,
            transaction_type=transaction_type,
            header_id=transfer_id,
            detail_id=line_no,
            movement_reason=reason,
            location_id=location.id,
            location_name=location.name,
            user_id=actor,
        )
        for line_no, line in enumerate(lines, start=1)
    ]
    return await create_movements(db, movements, created_by=actor)


async def dispatch_transfer(
    db: AsyncSession,
    transfer_id: int,
    from_location_id: int,
    to_location_id: int,
    lines: list[TransferLine],
    *,
    dispatched_by: str,
) -> list[Movement]:
    if not dispatched_by:
        raise AuditFieldMissingError("dispatched_by")
    source = await _get_location(db, from_location_id)
    destination = await _get_location(db, to_location_id)
    if source.id == destination.id:
        raise ValueError("Source and destination locations must differ")
    reason = f"Stock transfer #{transfer_id} to {destination.name}"
    movements = await _book(db, TransactionType.transfer_out, transfer_id, source, lines, dispatched_by, reason)
    logger.info("Transfer #%s dispatched from %s: %s lines", transfer_id, source.code, len(movements))
    return movements


async def receive_transfer(
    db: AsyncSession,
    transfer_id: int,
    from_location_id: int,
    to_location_id: int,
    lines: list[TransferLine],
    *,
    received_by: str,
) -> list[Movement]:
    if not received_by:
        raise AuditFieldMissingError("received_by")
    source = await _get_location(db, from_location_id)
    destination = await _get_location(db, to_location_id)
    reason = f"Stock transfer #{transfer_id} from {source.name}"
    movements = await _book(db, TransactionType.transfer_in, transfer_id, destination, lines, received_by, reason)
    logger.info("Transfer #%s received at %s: %s lines", transfer_id, destination.code, len(movements))
    return movements


async def cancel_transfer(
    db: AsyncSession,
    transfer_id: int,
    reason: str,
    *,
    cancelled_by: str,
) -> int:
    """Reverses both sides of a transfer together. Returns the number of movements reversed."""
    count = await reverse_transactions(
        db,
        [(TransactionType.transfer_out, transfer_id), (TransactionType.transfer_in, transfer_id)],
        reason,
        reversed_by=cancelled_by,
    )
    logger.info("Transfer #%s cancelled by %s: %s movements reversed", transfer_id, cancelled_by, count)
    return count
