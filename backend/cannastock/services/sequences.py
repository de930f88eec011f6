"""
Persisted counters behind batch and serial numbers.

A row per key is created lazily with INSERT .. ON CONFLICT DO NOTHING, then
incremented by a single conditional UPDATE .. RETURNING. The UPDATE takes the
row lock, so concurrent generators for one key are serialized by the database
and never see the same value. Callers run this inside tx(db): a rollback
undoes the increment and leaves a gap, never a duplicate.
"""
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import SequenceExhaustedError

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Sequence store does not support dialect '{dialect}'") from None


async def next_sequence(
    db: AsyncSession,
    model,
    key: dict,
    *,
    max_sequence: int,
    requested_by: str,
    label: str,
) -> int:
    now = datetime.utcnow()
    insert = _insert_for(db)
    await db.execute(
        insert(model)
        .values(
            **key,
            current_sequence=0,
            max_sequence=max_sequence,
            created_at=now,
            created_by=requested_by,
        )
        .on_conflict_do_nothing(index_elements=list(key))
    )
    conditions = [getattr(model, name) == value for name, value in key.items()]
    res = await db.execute(
        update(model)
        .where(*conditions, model.current_sequence < model.max_sequence)
        .values(
            current_sequence=model.current_sequence + 1,
            last_generated_at=now,
            last_generated_by=requested_by,
            modified_at=now,
            modified_by=requested_by,
        )
        .returning(model.current_sequence)
        .execution_options(synchronize_session=False)
    )
    value = res.scalar_one_or_none()
    if value is None:
        logger.error("%s sequence exhausted for %s", label, key)
        raise SequenceExhaustedError(label, key, max_sequence)
    logger.debug("%s sequence %s -> %s", label, key, value)
    return value


async def current_sequence(db: AsyncSession, model, key: dict) -> int:
    conditions = [getattr(model, name) == value for name, value in key.items()]
    res = await db.execute(select(model.current_sequence).where(*conditions))
    value = res.scalar_one_or_none()
    return value or 0
