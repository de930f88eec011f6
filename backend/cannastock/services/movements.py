import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import as_naive_utc, tx
from ..errors import AuditFieldMissingError, MovementsAlreadyGeneratedError, NotFoundError
from ..models import Location, Movement, MovementDirection, Product, TransactionDetail, TransactionType
from .audit import log_action
from .retry import backoff_delay, is_transient_error

settings = get_settings()
logger = logging.getLogger(__name__)

IN = MovementDirection.inbound
OUT = MovementDirection.outbound


class MovementRule(NamedTuple):
    direction: Optional[MovementDirection]
    label: str
    affects_stock: bool = True


MOVEMENT_RULES = {
    TransactionType.sale: MovementRule(OUT, "Retail Sale"),
    TransactionType.refund: MovementRule(IN, "Customer Refund"),
    TransactionType.account_payment: MovementRule(None, "Account Payment", affects_stock=False),
    TransactionType.layby: MovementRule(OUT, "Layby"),
    TransactionType.quote: MovementRule(None, "Quote", affects_stock=False),
    TransactionType.grv: MovementRule(IN, "Goods Received"),
    TransactionType.rts: MovementRule(OUT, "Return to Supplier"),
    TransactionType.wholesale_sale: MovementRule(OUT, "Wholesale Sale"),
    TransactionType.wholesale_refund: MovementRule(IN, "Wholesale Refund"),
    TransactionType.production_input: MovementRule(OUT, "Production Input"),
    TransactionType.production_output: MovementRule(IN, "Production Output"),
    TransactionType.transfer_out: MovementRule(OUT, "Stock Transfer Out"),
    TransactionType.transfer_in: MovementRule(IN, "Stock Transfer In"),
    TransactionType.adjustment_in: MovementRule(IN, "Stock Adjustment (In)"),
    TransactionType.adjustment_out: MovementRule(OUT, "Stock Adjustment (Out)"),
    # Direction follows the sign of the counted variance.
    TransactionType.stocktake_variance: MovementRule(IN, "Stocktake Variance"),
}

_unmapped = set(TransactionType) - set(MOVEMENT_RULES)
if _unmapped:
    raise RuntimeError(f"Transaction types without a movement rule: {sorted(t.name for t in _unmapped)}")


def affects_stock(transaction_type: TransactionType) -> bool:
    return MOVEMENT_RULES[TransactionType(transaction_type)].affects_stock


def get_movement_direction(transaction_type: TransactionType) -> Optional[MovementDirection]:
    return MOVEMENT_RULES[TransactionType(transaction_type)].direction


def get_movement_type_name(transaction_type: TransactionType) -> str:
    return MOVEMENT_RULES[TransactionType(transaction_type)].label


def _direction_and_quantity(transaction_type: TransactionType, quantity: Decimal):
    if transaction_type == TransactionType.stocktake_variance:
        if quantity < 0:
            return OUT, -quantity
        return IN, quantity
    return MOVEMENT_RULES[transaction_type].direction, quantity


def _live(stmt):
    return stmt.where(Movement.is_deleted == False)  # noqa: E712


async def _count_live_for_header(db: AsyncSession, transaction_type: TransactionType, header_id: int) -> int:
    stmt = select(func.count(Movement.id)).where(
        Movement.transaction_type == transaction_type,
        Movement.header_id == header_id,
    )
    res = await db.execute(_live(stmt))
    return res.scalar_one()


async def _save_with_retry(
    db: AsyncSession,
    rows: list[dict],
    transaction_type: TransactionType,
    header_id: Optional[int],
) -> list[Movement]:
    attempts = max(1, settings.movement_save_max_attempts)
    attempt = 0
    while True:
        # fresh instances each attempt; a rolled back flush expunges the previous ones
        movements = [Movement(**values) for values in rows]
        try:
            async with tx(db):
                db.add_all(movements)
                await db.flush()
            return movements
        except Exception as exc:
            attempt += 1
            if not is_transient_error(exc):
                logger.error(
                    "Saving %s movements for %s #%s failed",
                    len(rows),
                    transaction_type.name,
                    header_id,
                    exc_info=True,
                )
                raise
            if attempt >= attempts:
                logger.error(
                    "Saving movements for %s #%s failed after %s attempts",
                    transaction_type.name,
                    header_id,
                    attempts,
                    exc_info=True,
                )
                raise
            delay = backoff_delay(attempt - 1)
            logger.warning(
                "Transient error saving movements for %s #%s (attempt %s/%s), retrying in %.2fs: %s",
                transaction_type.name,
                header_id,
                attempt,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)


async def generate_movements(
    db: AsyncSession,
    transaction_type: TransactionType,
    header_id: int,
    *,
    requested_by: str,
    location_id: Optional[int] = None,
    location_name: Optional[str] = None,
    transaction_date: Optional[datetime] = None,
) -> int:
    """
    Writes one movement per live detail line of (transaction_type, header_id).
    Returns the number of movements created, 0 for types that do not move stock.
    """
    transaction_type = TransactionType(transaction_type)
    rule = MOVEMENT_RULES[transaction_type]
    if not rule.affects_stock:
        logger.debug("%s does not affect stock, no movements for #%s", transaction_type.name, header_id)
        return 0
    if not requested_by:
        raise AuditFieldMissingError("requested_by")

    started = time.perf_counter()
    res = await db.execute(
        select(TransactionDetail)
        .where(
            TransactionDetail.header_id == header_id,
            TransactionDetail.transaction_type == transaction_type,
            TransactionDetail.is_deleted == False,  # noqa: E712
        )
        .order_by(TransactionDetail.id)
    )
    details = res.scalars().all()
    if not details:
        logger.warning("No detail lines for %s #%s, nothing to generate", transaction_type.name, header_id)
        return 0

    existing = await _count_live_for_header(db, transaction_type, header_id)
    if existing:
        raise MovementsAlreadyGeneratedError(transaction_type, header_id, existing)

    if len(details) > settings.movement_large_batch_threshold:
        logger.warning(
            "Large movement batch: %s lines for %s #%s", len(details), transaction_type.name, header_id
        )

    when = as_naive_utc(transaction_date) or datetime.utcnow()
    now = datetime.utcnow()
    reason = f"{rule.label} transaction #{header_id}"
    rows = []
    for detail in details:
        direction, quantity = _direction_and_quantity(transaction_type, detail.quantity)
        rows.append(
            dict(
                product_id=detail.product_id,
                product_sku=detail.product_sku,
                product_name=detail.product_name,
                movement_type=rule.label,
                direction=direction,
                quantity=quantity,
                mass=detail.weight_grams or 0,
                value=detail.line_total or 0,
                batch_number=detail.batch_number,
                serial_number=detail.serial_number,
                transaction_type=transaction_type,
                header_id=header_id,
                detail_id=detail.id,
                movement_reason=reason,
                transaction_date=when,
                user_id=detail.created_by,
                location_id=location_id,
                location_name=location_name,
                created_at=now,
                created_by=requested_by,
            )
        )

    movements = await _save_with_retry(db, rows, transaction_type, header_id)

    elapsed_ms = (time.perf_counter() - started) * 1000
    if elapsed_ms > settings.movement_slow_threshold_ms:
        logger.warning(
            "Slow movement generation: %s movements for %s #%s took %.0fms",
            len(movements),
            transaction_type.name,
            header_id,
            elapsed_ms,
        )
    logger.info(
        "Generated %s movements for %s #%s in %.0fms", len(movements), transaction_type.name, header_id, elapsed_ms
    )
    return len(movements)


async def _prepare_movement(db: AsyncSession, movement: Movement, created_by: str) -> None:
    if not movement.product_id or movement.product_id <= 0:
        raise ValueError("product_id must be greater than 0")
    if movement.quantity is None or movement.quantity <= 0:
        raise ValueError("quantity must be greater than 0")
    if not movement.movement_reason or not movement.movement_reason.strip():
        raise AuditFieldMissingError("movement_reason")
    if movement.transaction_type is None:
        raise ValueError("transaction_type is required")

    transaction_type = TransactionType(movement.transaction_type)
    if not affects_stock(transaction_type):
        raise ValueError(f"{transaction_type.name} does not affect stock and cannot be booked as a movement")
    movement.transaction_type = transaction_type
    if not movement.product_sku or not movement.product_name:
        product = await db.get(Product, movement.product_id)
        if not product:
            raise NotFoundError("Product", movement.product_id)
        movement.product_sku = movement.product_sku or product.sku
        movement.product_name = movement.product_name or product.name
    if movement.location_id and not movement.location_name:
        location = await db.get(Location, movement.location_id)
        if not location:
            raise NotFoundError("Location", movement.location_id)
        movement.location_name = location.name
    if movement.direction is None:
        movement.direction = get_movement_direction(transaction_type)
    if not movement.movement_type:
        movement.movement_type = get_movement_type_name(transaction_type)
    if movement.transaction_date is None:
        movement.transaction_date = datetime.utcnow()
    else:
        movement.transaction_date = as_naive_utc(movement.transaction_date)
    if movement.mass is None:
        movement.mass = 0
    if movement.value is None:
        movement.value = 0
    movement.user_id = movement.user_id or created_by
    movement.created_by = created_by
    movement.created_at = datetime.utcnow()
    movement.is_deleted = False


async def create_movements(db: AsyncSession, movements: list[Movement], *, created_by: str) -> list[Movement]:
    """Inserts movements that do not come from detail lines, all in one transaction."""
    if not created_by:
        raise AuditFieldMissingError("created_by")
    for movement in movements:
        await _prepare_movement(db, movement, created_by)
    async with tx(db):
        db.add_all(movements)
        await db.flush()
    for movement in movements:
        logger.info(
            "Created movement %s: %s %s x%s (%s)",
            movement.id,
            movement.direction.value,
            movement.product_sku,
            movement.quantity,
            movement.movement_reason,
        )
    return movements


async def create_movement(db: AsyncSession, movement: Movement, *, created_by: str) -> Movement:
    created = await create_movements(db, [movement], created_by=created_by)
    return created[0]


async def reverse_movements(
    db: AsyncSession,
    transaction_type: TransactionType,
    header_id: int,
    reason: str,
    *,
    reversed_by: str,
) -> int:
    """Soft deletes the live movements of a transaction. Returns 0 when there is nothing to reverse."""
    return await reverse_transactions(db, [(transaction_type, header_id)], reason, reversed_by=reversed_by)


async def reverse_transactions(
    db: AsyncSession,
    transactions: list[tuple[TransactionType, int]],
    reason: str,
    *,
    reversed_by: str,
) -> int:
    """
    Reverses several transactions in one database transaction, so either all
    of them are reversed or none is. Returns the total number of movements reversed.
    """
    if not reason or not reason.strip():
        raise AuditFieldMissingError("reason")
    if not reversed_by:
        raise AuditFieldMissingError("reversed_by")
    keys = [(TransactionType(transaction_type), header_id) for transaction_type, header_id in transactions]

    counts = {}
    async with tx(db):
        now = datetime.utcnow()
        for transaction_type, header_id in keys:
            res = await db.execute(
                _live(
                    select(Movement).where(
                        Movement.transaction_type == transaction_type,
                        Movement.header_id == header_id,
                    )
                )
                .order_by(Movement.id)
                .with_for_update()
            )
            movements = res.scalars().all()
            counts[(transaction_type, header_id)] = len(movements)
            if not movements:
                continue
            for movement in movements:
                movement.is_deleted = True
                movement.deleted_at = now
                movement.deleted_by = reversed_by
                movement.movement_reason = f"{movement.movement_reason} [REVERSED: {reason}]"
            await log_action(
                db,
                reversed_by,
                "movements_reverse",
                "transaction",
                header_id,
                {"transaction_type": transaction_type.name, "count": len(movements), "reason": reason},
            )

    for (transaction_type, header_id), count in counts.items():
        if not count:
            logger.warning("No movements to reverse for %s #%s", transaction_type.name, header_id)
            continue
        logger.info(
            "Reversed %s movements for %s #%s by %s: %s",
            count,
            transaction_type.name,
            header_id,
            reversed_by,
            reason,
        )
    return sum(counts.values())


def _newest_first(stmt):
    return stmt.order_by(Movement.transaction_date.desc(), Movement.id.desc())


async def get_movement_history(
    db: AsyncSession,
    product_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    location_id: Optional[int] = None,
    include_reversed: bool = False,
    limit: Optional[int] = None,
) -> list[Movement]:
    start = as_naive_utc(start)
    end = as_naive_utc(end)
    stmt = select(Movement)
    if product_id is not None:
        stmt = stmt.where(Movement.product_id == product_id)
    if start:
        stmt = stmt.where(Movement.transaction_date >= start)
    if end:
        stmt = stmt.where(Movement.transaction_date <= end)
    if location_id is not None:
        stmt = stmt.where(Movement.location_id == location_id)
    if not include_reversed:
        stmt = _live(stmt)
    stmt = _newest_first(stmt)
    if limit:
        stmt = stmt.limit(limit)
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def get_movements_by_batch(db: AsyncSession, batch_number: str, include_reversed: bool = False) -> list[Movement]:
    stmt = select(Movement).where(Movement.batch_number == batch_number)
    if not include_reversed:
        stmt = _live(stmt)
    res = await db.execute(_newest_first(stmt))
    return list(res.scalars().all())


async def get_movements_by_serial(db: AsyncSession, serial_number: str, include_reversed: bool = False) -> list[Movement]:
    stmt = select(Movement).where(Movement.serial_number == serial_number)
    if not include_reversed:
        stmt = _live(stmt)
    res = await db.execute(_newest_first(stmt))
    return list(res.scalars().all())


async def get_movements_by_transaction(
    db: AsyncSession,
    transaction_type: TransactionType,
    header_id: int,
    include_reversed: bool = False,
) -> list[Movement]:
    """Movements of one transaction in insertion order."""
    stmt = select(Movement).where(
        Movement.transaction_type == TransactionType(transaction_type),
        Movement.header_id == header_id,
    )
    if not include_reversed:
        stmt = _live(stmt)
    res = await db.execute(stmt.order_by(Movement.id))
    return list(res.scalars().all())
