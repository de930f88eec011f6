from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db
from ..models import AuditLog
from ..schemas import AuditLogOut

router = APIRouter()


@router.get("", response_model=list[AuditLogOut])
async def list_audit(
    db: AsyncSession = Depends(get_db),
    entity_type: Optional[str] = Query(None),
    entity_key: Optional[str] = Query(None),
    actor: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_key:
        stmt = stmt.where(AuditLog.entity_key == entity_key)
    if actor:
        stmt = stmt.where(AuditLog.actor == actor)
    res = await db.execute(stmt)
    return res.scalars().all()
