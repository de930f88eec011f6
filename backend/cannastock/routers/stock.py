from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db
from ..schemas import BatchStockOnHand, InventoryValuation, MovementHistoryEntry, StockAlert, StockOnHand
from ..services import stock_reports

router = APIRouter()


@router.get("", response_model=list[StockOnHand])
async def list_stock(
    db: AsyncSession = Depends(get_db),
    include_zero: bool = Query(False),
    location_id: Optional[int] = Query(None),
):
    return await stock_reports.get_all_stock_on_hand(db, include_zero=include_zero, location_id=location_id)


@router.get("/alerts", response_model=list[StockAlert])
async def stock_alerts(db: AsyncSession = Depends(get_db), today: Optional[date] = Query(None)):
    return await stock_reports.get_stock_alerts(db, today=today)


@router.get("/valuation", response_model=InventoryValuation)
async def valuation(db: AsyncSession = Depends(get_db), as_of: Optional[datetime] = Query(None)):
    return await stock_reports.get_inventory_valuation(db, as_of=as_of)


@router.get("/{product_id}", response_model=StockOnHand)
async def product_stock(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    location_id: Optional[int] = Query(None),
    as_of: Optional[datetime] = Query(None),
):
    return await stock_reports.get_stock_on_hand(db, product_id, location_id=location_id, as_of=as_of)


@router.get("/{product_id}/batches", response_model=list[BatchStockOnHand])
async def product_batches(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    location_id: Optional[int] = Query(None),
):
    return await stock_reports.get_stock_on_hand_by_batch(db, product_id, location_id=location_id)


@router.get("/{product_id}/history", response_model=list[MovementHistoryEntry])
async def product_history(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    location_id: Optional[int] = Query(None),
):
    return await stock_reports.get_movement_history_with_balance(
        db, product_id, start=start, end=end, location_id=location_id
    )
