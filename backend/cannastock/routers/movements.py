from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db
from ..models import TransactionType
from ..schemas import MovementOut, ReverseRequest
from ..services import movements as movement_service

router = APIRouter()


@router.get("", response_model=list[MovementOut])
async def list_movements(
    db: AsyncSession = Depends(get_db),
    product_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    location_id: Optional[int] = Query(None),
    include_reversed: bool = Query(False),
    limit: int = Query(200, ge=1, le=5000),
):
    return await movement_service.get_movement_history(
        db,
        product_id=product_id,
        start=start,
        end=end,
        location_id=location_id,
        include_reversed=include_reversed,
        limit=limit,
    )


@router.get("/batch/{batch_number}", response_model=list[MovementOut])
async def movements_by_batch(
    batch_number: str, db: AsyncSession = Depends(get_db), include_reversed: bool = Query(False)
):
    return await movement_service.get_movements_by_batch(db, batch_number, include_reversed=include_reversed)


@router.get("/serial/{serial_number}", response_model=list[MovementOut])
async def movements_by_serial(
    serial_number: str, db: AsyncSession = Depends(get_db), include_reversed: bool = Query(False)
):
    return await movement_service.get_movements_by_serial(db, serial_number, include_reversed=include_reversed)


@router.get("/transaction/{transaction_type}/{header_id}", response_model=list[MovementOut])
async def movements_by_transaction(
    transaction_type: TransactionType,
    header_id: int,
    db: AsyncSession = Depends(get_db),
    include_reversed: bool = Query(False),
):
    return await movement_service.get_movements_by_transaction(
        db, transaction_type, header_id, include_reversed=include_reversed
    )


@router.post("/transaction/{transaction_type}/{header_id}/reverse")
async def reverse_transaction(
    transaction_type: TransactionType,
    header_id: int,
    payload: ReverseRequest,
    db: AsyncSession = Depends(get_db),
):
    count = await movement_service.reverse_movements(
        db, transaction_type, header_id, payload.reason, reversed_by=payload.reversed_by
    )
    return {"reversed": count}
