from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db
from ..models import BatchType
from ..schemas import (
    BatchExistsOut,
    BatchNumberOut,
    BatchNumberRequest,
    LinkedSerialOut,
    LinkedSerialRequest,
    SerialAssignRequest,
    SerialComponentsOut,
    SerialDestroyRequest,
    SerialNumberOut,
    SerialNumberRequest,
    SerialSaleRequest,
)
from ..services import batch_numbers, serial_lifecycle, serial_numbers

router = APIRouter()


def _batch_out(batch_number: str) -> BatchNumberOut:
    parts = batch_numbers.parse_batch_number(batch_number)
    return BatchNumberOut(
        batch_number=batch_number,
        site_id=parts.site_id,
        batch_type=parts.batch_type,
        year=parts.year,
        week=parts.week,
        sequence=parts.sequence,
        week_start=parts.week_start,
    )


@router.post("/batch-numbers", response_model=BatchNumberOut, status_code=status.HTTP_201_CREATED)
async def create_batch_number(payload: BatchNumberRequest, db: AsyncSession = Depends(get_db)):
    batch_number = await batch_numbers.generate_batch_number(
        db, payload.site_id, payload.batch_type, payload.batch_date, requested_by=payload.requested_by
    )
    return _batch_out(batch_number)


@router.get("/batch-numbers/current-sequence")
async def batch_current_sequence(
    site_id: int = Query(..., ge=1, le=99),
    batch_type: BatchType = Query(...),
    batch_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    current = await batch_numbers.get_current_sequence(db, site_id, batch_type, batch_date)
    return {"site_id": site_id, "batch_type": batch_type, "current_sequence": current}


@router.get("/batch-numbers/{batch_number}", response_model=BatchNumberOut)
async def parse_batch_number(batch_number: str):
    return _batch_out(batch_number)


@router.get("/batch-numbers/{batch_number}/exists", response_model=BatchExistsOut)
async def batch_number_exists(batch_number: str, db: AsyncSession = Depends(get_db)):
    return BatchExistsOut(
        batch_number=batch_number,
        valid=batch_numbers.validate_batch_number(batch_number),
        exists=await batch_numbers.batch_number_exists(db, batch_number),
    )


@router.post("/serial-numbers", response_model=list[SerialNumberOut], status_code=status.HTTP_201_CREATED)
async def create_serial_numbers(payload: SerialNumberRequest, db: AsyncSession = Depends(get_db)):
    results = await serial_numbers.generate_bulk_serial_numbers(
        db,
        payload.count,
        payload.site_id,
        payload.strain_code,
        payload.batch_number,
        payload.production_date,
        payload.weight_grams,
        payload.pack_qty,
        requested_by=payload.requested_by,
    )
    return [result.record for result in results]


@router.post("/linked-serial-numbers", response_model=LinkedSerialOut, status_code=status.HTTP_201_CREATED)
async def create_linked_serial_numbers(payload: LinkedSerialRequest, db: AsyncSession = Depends(get_db)):
    serials = await serial_numbers.generate_bulk_linked_serial_numbers(
        db,
        payload.count,
        payload.site_id,
        payload.serial_type,
        payload.batch_number,
        requested_by=payload.requested_by,
    )
    return LinkedSerialOut(serial_numbers=serials)


@router.get("/serial-numbers/{serial_number}/components", response_model=SerialComponentsOut)
async def parse_serial_number(serial_number: str):
    parts = serial_numbers.parse_full_serial(serial_number)
    return SerialComponentsOut(
        serial_number=serial_number,
        site_id=parts.site_id,
        strain_code=parts.strain_code,
        strain_type=parts.strain_type,
        batch_type=parts.batch_type,
        production_date=parts.production_date,
        batch_sequence=parts.batch_sequence,
        unit_sequence=parts.unit_sequence,
        weight_grams=parts.weight_grams,
        pack_qty=parts.pack_qty,
    )


@router.get("/serial-numbers/{serial_number}", response_model=SerialNumberOut)
async def get_serial_number(serial_number: str, db: AsyncSession = Depends(get_db)):
    return await serial_lifecycle.get_serial(db, serial_number)


@router.post("/serial-numbers/{serial_number}/assign", response_model=SerialNumberOut)
async def assign_serial_number(serial_number: str, payload: SerialAssignRequest, db: AsyncSession = Depends(get_db)):
    return await serial_lifecycle.assign_serial(
        db, serial_number, payload.product_id, payload.location_id, assigned_by=payload.assigned_by
    )


@router.post("/serial-numbers/{serial_number}/sell", response_model=SerialNumberOut)
async def sell_serial_number(serial_number: str, payload: SerialSaleRequest, db: AsyncSession = Depends(get_db)):
    return await serial_lifecycle.mark_serial_sold(
        db, serial_number, payload.sold_transaction_id, sold_by=payload.sold_by, sold_at=payload.sold_at
    )


@router.post("/serial-numbers/{serial_number}/destroy", response_model=SerialNumberOut)
async def destroy_serial_number(serial_number: str, payload: SerialDestroyRequest, db: AsyncSession = Depends(get_db)):
    return await serial_lifecycle.destroy_serial(
        db, serial_number, payload.reason, payload.witness, destroyed_by=payload.destroyed_by
    )


@router.get("/linked-serial-numbers/{serial_number}/parent-batch")
async def linked_serial_parent_batch(
    serial_number: str,
    site_id: int = Query(..., ge=1, le=99),
    batch_type: BatchType = Query(...),
):
    return {
        "serial_number": serial_number,
        "batch_number": serial_numbers.derive_parent_batch_number(serial_number, site_id, batch_type),
    }
