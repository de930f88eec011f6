from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from ..models import AuditLog


async def log_action(
    db: AsyncSession,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    payload: Optional[dict] = None,
    entity_key: Optional[str] = None,
):
    """Adds an audit row to the caller's transaction. The caller commits."""
    entry = AuditLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_key=entity_key,
        payload_json=payload,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry
