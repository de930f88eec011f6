from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db
from ..models import TransactionType
from ..schemas import MovementOut, TransferCancelRequest, TransferRequest
from ..services import movements as movement_service
from ..services import transfers as transfer_service

router = APIRouter()


@router.get("/{transfer_id}", response_model=list[MovementOut])
async def transfer_movements(transfer_id: int, db: AsyncSession = Depends(get_db)):
    dispatched = await movement_service.get_movements_by_transaction(db, TransactionType.transfer_out, transfer_id)
    received = await movement_service.get_movements_by_transaction(db, TransactionType.transfer_in, transfer_id)
    return dispatched + received


@router.post("/{transfer_id}/dispatch", response_model=list[MovementOut], status_code=status.HTTP_201_CREATED)
async def dispatch(transfer_id: int, payload: TransferRequest, db: AsyncSession = Depends(get_db)):
    return await transfer_service.dispatch_transfer(
        db,
        transfer_id,
        payload.from_location_id,
        payload.to_location_id,
        payload.lines,
        dispatched_by=payload.actor,
    )


@router.post("/{transfer_id}/receive", response_model=list[MovementOut], status_code=status.HTTP_201_CREATED)
async def receive(transfer_id: int, payload: TransferRequest, db: AsyncSession = Depends(get_db)):
    return await transfer_service.receive_transfer(
        db,
        transfer_id,
        payload.from_location_id,
        payload.to_location_id,
        payload.lines,
        received_by=payload.actor,
    )


@router.post("/{transfer_id}/cancel")
async def cancel(transfer_id: int, payload: TransferCancelRequest, db: AsyncSession = Depends(get_db)):
    count = await transfer_service.cancel_transfer(db, transfer_id, payload.reason, cancelled_by=payload.cancelled_by)
    return {"reversed": count}
