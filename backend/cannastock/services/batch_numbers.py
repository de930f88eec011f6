"""
Batch numbers: 12 digits, SSTTYYWWNNNN.

SS   site id, 01-99
TT   batch type code (BatchType)
YY   ISO year, last two digits (2020-2099)
WW   ISO week, 01-53
NNNN sequence within (site, type, ISO week), 0001-9999

Example: site 1, production, 2025-12-10 (ISO week 50), first batch of the
week -> 011025500001.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import tx
from ..errors import AuditFieldMissingError, InvalidIdentifierError
from ..models import BatchNumberSequence, BatchType
from .sequences import current_sequence, next_sequence

settings = get_settings()
logger = logging.getLogger(__name__)

BATCH_NUMBER_LENGTH = 12
MIN_YEAR = 2020
MAX_YEAR = 2099
MAX_BATCH_SEQUENCE = 9999


@dataclass(frozen=True)
class BatchNumberParts:
    site_id: int
    batch_type: BatchType
    year: int
    week: int
    sequence: int

    @property
    def week_start(self) -> date:
        return date.fromisocalendar(self.year, self.week, 1)


def check_site_id(site_id: int) -> None:
    if not 1 <= site_id <= 99:
        raise ValueError(f"Site id must be between 1 and 99, got {site_id}")


def iso_week_bucket(d: date) -> Tuple[int, int, date]:
    """Returns (ISO year, ISO week, Monday of that week)."""
    iso_year, week, _ = d.isocalendar()
    return iso_year, week, date.fromisocalendar(iso_year, week, 1)


def format_batch_number(parts: BatchNumberParts) -> str:
    check_site_id(parts.site_id)
    batch_type = BatchType(parts.batch_type)
    if not MIN_YEAR <= parts.year <= MAX_YEAR:
        raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {parts.year}")
    # raises ValueError for week 53 in a 52-week year
    date.fromisocalendar(parts.year, parts.week, 1)
    if not 1 <= parts.sequence <= MAX_BATCH_SEQUENCE:
        raise ValueError(f"Batch sequence must be between 1 and {MAX_BATCH_SEQUENCE}, got {parts.sequence}")
    return (
        f"{parts.site_id:02d}{int(batch_type):02d}{parts.year % 100:02d}"
        f"{parts.week:02d}{parts.sequence:04d}"
    )


def parse_batch_number(batch_number: str) -> BatchNumberParts:
    def fail(reason: str):
        raise InvalidIdentifierError("batch number", batch_number, reason)

    if batch_number is None:
        fail("value is empty")
    value = batch_number
    if len(value) != BATCH_NUMBER_LENGTH:
        fail(f"expected {BATCH_NUMBER_LENGTH} digits, got {len(value)} characters")
    if not value.isascii() or not value.isdigit():
        fail("must be numeric")

    site_id = int(value[0:2])
    type_code = int(value[2:4])
    year = 2000 + int(value[4:6])
    week = int(value[6:8])
    sequence = int(value[8:12])

    if not 1 <= site_id <= 99:
        fail(f"site id {site_id} out of range 1-99")
    try:
        batch_type = BatchType(type_code)
    except ValueError:
        fail(f"unknown batch type code {type_code:02d}")
    if year < MIN_YEAR:
        fail(f"year {year} out of range {MIN_YEAR}-{MAX_YEAR}")
    try:
        date.fromisocalendar(year, week, 1)
    except ValueError:
        fail(f"week {week:02d} does not exist in {year}")
    if sequence == 0:
        fail("sequence must not be zero")

    return BatchNumberParts(site_id=site_id, batch_type=batch_type, year=year, week=week, sequence=sequence)


def validate_batch_number(batch_number: str) -> bool:
    try:
        parse_batch_number(batch_number)
    except InvalidIdentifierError:
        return False
    return True


def _sequence_key(site_id: int, batch_type: BatchType, week_start: date) -> dict:
    return {"site_id": site_id, "batch_type": int(batch_type), "sequence_date": week_start}


async def generate_batch_number(
    db: AsyncSession,
    site_id: int,
    batch_type: BatchType,
    batch_date: Optional[date] = None,
    *,
    requested_by: str,
) -> str:
    check_site_id(site_id)
    batch_type = BatchType(batch_type)
    if not requested_by:
        raise AuditFieldMissingError("requested_by")
    batch_date = batch_date or date.today()
    year, week, week_start = iso_week_bucket(batch_date)
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValueError(f"Batch date {batch_date} outside supported years {MIN_YEAR}-{MAX_YEAR}")

    async with tx(db):
        sequence = await next_sequence(
            db,
            BatchNumberSequence,
            _sequence_key(site_id, batch_type, week_start),
            max_sequence=min(settings.batch_sequence_max, MAX_BATCH_SEQUENCE),
            requested_by=requested_by,
            label="batch number",
        )

    batch_number = format_batch_number(
        BatchNumberParts(site_id=site_id, batch_type=batch_type, year=year, week=week, sequence=sequence)
    )
    logger.info(
        "Generated batch number %s (site %s, type %s, week %s-%02d) for %s",
        batch_number,
        site_id,
        batch_type.name,
        year,
        week,
        requested_by,
    )
    return batch_number


async def get_current_sequence(
    db: AsyncSession, site_id: int, batch_type: BatchType, batch_date: Optional[date] = None
) -> int:
    """Last issued sequence for the week containing batch_date, 0 if none."""
    check_site_id(site_id)
    _, _, week_start = iso_week_bucket(batch_date or date.today())
    return await current_sequence(db, BatchNumberSequence, _sequence_key(site_id, BatchType(batch_type), week_start))


async def batch_number_exists(db: AsyncSession, batch_number: str) -> bool:
    """True if the sequence encoded in batch_number was ever issued for its key."""
    try:
        parts = parse_batch_number(batch_number)
    except InvalidIdentifierError:
        return False
    issued = await current_sequence(
        db, BatchNumberSequence, _sequence_key(parts.site_id, parts.batch_type, parts.week_start)
    )
    return parts.sequence <= issued
