"""
Unit serial numbers.

Full serial, 30 digits (issued for every unit, Luhn protected):
    SS    site id                      2
    SSS   strain code (100-999)        3
    TT    batch type of parent batch   2
    YYYYMMDD production date           8
    BBBB  parent batch sequence        4
    UUUUU unit sequence in the batch   5
    WWWW  weight, tenths of a gram     4
    P     pack quantity (0-9)          1
    C     Luhn check digit             1

Short serial, 13 digits (barcode label): SS YYMMDD NNNNN, where NNNNN is a
per-site daily counter.

Batch-linked serial, 16 digits, no check digit: TT YY WW BBBB SSSSSS, where
TT is the serial type, YYWW and BBBB come from the parent batch number and
SSSSSS counts serials of that type issued against the batch.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import tx
from ..errors import AuditFieldMissingError, InvalidIdentifierError
from ..models import BatchType, SerialNumber, SerialNumberSequence, SerialStatus, SerialType, StrainType
from .audit import log_action
from .batch_numbers import (
    BatchNumberParts,
    check_site_id,
    format_batch_number,
    parse_batch_number,
)
from .luhn import compute_luhn_check_digit, is_valid_luhn
from .sequences import next_sequence

settings = get_settings()
logger = logging.getLogger(__name__)

FULL_SERIAL_LENGTH = 30
SHORT_SERIAL_LENGTH = 13
LINKED_SERIAL_LENGTH = 16
MAX_UNIT_SEQUENCE = 99999
MAX_DAILY_SEQUENCE = 99999
MAX_LINKED_SEQUENCE = 999999
MAX_WEIGHT_TENTHS = 9999
MAX_BULK_COUNT = 10000
MIN_YEAR = 2000
MAX_YEAR = 2099

SEQUENCE_UNIT = "unit"
SEQUENCE_DAILY = "daily"
SEQUENCE_LINKED = "linked"

_STRAIN_TYPES = {
    1: StrainType.sativa,
    2: StrainType.indica,
    3: StrainType.hybrid,
    4: StrainType.cbd,
}


@dataclass(frozen=True)
class FullSerialParts:
    site_id: int
    strain_code: int
    batch_type: BatchType
    production_date: date
    batch_sequence: int
    unit_sequence: int
    weight_tenths: int
    pack_qty: int

    @property
    def weight_grams(self) -> Decimal:
        return Decimal(self.weight_tenths) / 10

    @property
    def strain_type(self) -> StrainType:
        return get_strain_type(self.strain_code)


@dataclass(frozen=True)
class ShortSerialParts:
    site_id: int
    production_date: date
    sequence: int


@dataclass(frozen=True)
class LinkedSerialParts:
    serial_type: SerialType
    year: int
    week: int
    batch_sequence: int
    sequence: int


@dataclass
class GeneratedSerial:
    record: SerialNumber
    full: FullSerialParts
    short: ShortSerialParts

    @property
    def full_serial(self) -> str:
        return self.record.full_serial

    @property
    def short_serial(self) -> str:
        return self.record.short_serial


def get_strain_type(strain_code: int) -> StrainType:
    return _STRAIN_TYPES.get(strain_code // 100, StrainType.unknown)


def weight_to_tenths(weight_grams: Union[Decimal, float, int, str, None]) -> int:
    """Truncates to tenths of a gram. 1000 g and above does not fit the field."""
    if weight_grams is None:
        return 0
    try:
        weight = Decimal(str(weight_grams))
    except InvalidOperation:
        raise ValueError(f"Weight must be a number, got {weight_grams!r}") from None
    if not weight.is_finite():
        raise ValueError(f"Weight must be finite, got {weight}")
    if weight < 0:
        raise ValueError(f"Weight must not be negative, got {weight}")
    tenths = int((weight * 10).to_integral_value(rounding=ROUND_DOWN))
    if tenths > MAX_WEIGHT_TENTHS:
        raise ValueError(f"Weight must be below 1000 g, got {weight}")
    return tenths


def _check_strain_code(strain_code: int) -> None:
    if not 100 <= strain_code <= 999:
        raise ValueError(f"Strain code must be between 100 and 999, got {strain_code}")


def _check_year(year: int) -> None:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {year}")


def _check_pack_qty(pack_qty: int) -> None:
    if not 0 <= pack_qty <= 9:
        raise ValueError(f"Pack quantity must be between 0 and 9, got {pack_qty}")


def format_full_serial(parts: FullSerialParts) -> str:
    check_site_id(parts.site_id)
    _check_strain_code(parts.strain_code)
    batch_type = BatchType(parts.batch_type)
    if not 1 <= parts.batch_sequence <= 9999:
        raise ValueError(f"Batch sequence must be between 1 and 9999, got {parts.batch_sequence}")
    if not 1 <= parts.unit_sequence <= MAX_UNIT_SEQUENCE:
        raise ValueError(f"Unit sequence must be between 1 and {MAX_UNIT_SEQUENCE}, got {parts.unit_sequence}")
    if not 0 <= parts.weight_tenths <= MAX_WEIGHT_TENTHS:
        raise ValueError(f"Weight must be between 0 and {MAX_WEIGHT_TENTHS} tenths, got {parts.weight_tenths}")
    _check_pack_qty(parts.pack_qty)
    _check_year(parts.production_date.year)
    produced = parts.production_date
    base = (
        f"{parts.site_id:02d}"
        f"{parts.strain_code:03d}"
        f"{int(batch_type):02d}"
        f"{produced.year:04d}{produced.month:02d}{produced.day:02d}"
        f"{parts.batch_sequence:04d}"
        f"{parts.unit_sequence:05d}"
        f"{parts.weight_tenths:04d}"
        f"{parts.pack_qty:01d}"
    )
    return base + compute_luhn_check_digit(base)


def _digits(kind: str, value: Optional[str], length: int) -> str:
    if value is None:
        raise InvalidIdentifierError(kind, value, "value is empty")
    if len(value) != length:
        raise InvalidIdentifierError(kind, value, f"expected {length} digits, got {len(value)} characters")
    if not value.isascii() or not value.isdigit():
        raise InvalidIdentifierError(kind, value, "must be numeric")
    return value


def _date(kind: str, value: str, year: int, month: int, day: int) -> date:
    try:
        return date(year, month, day)
    except ValueError:
        raise InvalidIdentifierError(kind, value, f"invalid date {year:04d}-{month:02d}-{day:02d}") from None


def parse_full_serial(serial_number: str) -> FullSerialParts:
    kind = "serial number"
    value = _digits(kind, serial_number, FULL_SERIAL_LENGTH)
    if not is_valid_luhn(value):
        raise InvalidIdentifierError(kind, value, "check digit mismatch")

    site_id = int(value[0:2])
    strain_code = int(value[2:5])
    type_code = int(value[5:7])
    production_date = _date(kind, value, int(value[7:11]), int(value[11:13]), int(value[13:15]))
    batch_sequence = int(value[15:19])
    unit_sequence = int(value[19:24])
    weight_tenths = int(value[24:28])
    pack_qty = int(value[28])

    if not MIN_YEAR <= production_date.year <= MAX_YEAR:
        raise InvalidIdentifierError(
            kind, value, f"production year {production_date.year} out of range {MIN_YEAR}-{MAX_YEAR}"
        )
    if not 1 <= site_id <= 99:
        raise InvalidIdentifierError(kind, value, f"site id {site_id} out of range 1-99")
    if strain_code < 100:
        raise InvalidIdentifierError(kind, value, f"strain code {strain_code} out of range 100-999")
    try:
        batch_type = BatchType(type_code)
    except ValueError:
        raise InvalidIdentifierError(kind, value, f"unknown batch type code {type_code:02d}") from None
    if batch_sequence == 0:
        raise InvalidIdentifierError(kind, value, "batch sequence must not be zero")
    if unit_sequence == 0:
        raise InvalidIdentifierError(kind, value, "unit sequence must not be zero")

    return FullSerialParts(
        site_id=site_id,
        strain_code=strain_code,
        batch_type=batch_type,
        production_date=production_date,
        batch_sequence=batch_sequence,
        unit_sequence=unit_sequence,
        weight_tenths=weight_tenths,
        pack_qty=pack_qty,
    )


def validate_full_serial(serial_number: str) -> bool:
    try:
        parse_full_serial(serial_number)
    except InvalidIdentifierError:
        return False
    return True


def format_short_serial(parts: ShortSerialParts) -> str:
    check_site_id(parts.site_id)
    _check_year(parts.production_date.year)
    if not 1 <= parts.sequence <= MAX_DAILY_SEQUENCE:
        raise ValueError(f"Daily sequence must be between 1 and {MAX_DAILY_SEQUENCE}, got {parts.sequence}")
    return f"{parts.site_id:02d}{parts.production_date:%y%m%d}{parts.sequence:05d}"


def parse_short_serial(serial_number: str) -> ShortSerialParts:
    kind = "short serial number"
    value = _digits(kind, serial_number, SHORT_SERIAL_LENGTH)
    site_id = int(value[0:2])
    production_date = _date(kind, value, 2000 + int(value[2:4]), int(value[4:6]), int(value[6:8]))
    sequence = int(value[8:13])
    if not 1 <= site_id <= 99:
        raise InvalidIdentifierError(kind, value, f"site id {site_id} out of range 1-99")
    if sequence == 0:
        raise InvalidIdentifierError(kind, value, "sequence must not be zero")
    return ShortSerialParts(site_id=site_id, production_date=production_date, sequence=sequence)


def validate_short_serial(serial_number: str) -> bool:
    try:
        parse_short_serial(serial_number)
    except InvalidIdentifierError:
        return False
    return True


def format_linked_serial(parts: LinkedSerialParts) -> str:
    serial_type = SerialType(parts.serial_type)
    date.fromisocalendar(parts.year, parts.week, 1)
    _check_year(parts.year)
    if not 1 <= parts.batch_sequence <= 9999:
        raise ValueError(f"Batch sequence must be between 1 and 9999, got {parts.batch_sequence}")
    if not 1 <= parts.sequence <= MAX_LINKED_SEQUENCE:
        raise ValueError(f"Serial sequence must be between 1 and {MAX_LINKED_SEQUENCE}, got {parts.sequence}")
    return (
        f"{int(serial_type):02d}{parts.year % 100:02d}{parts.week:02d}"
        f"{parts.batch_sequence:04d}{parts.sequence:06d}"
    )


def parse_linked_serial(serial_number: str) -> LinkedSerialParts:
    kind = "batch-linked serial number"
    value = _digits(kind, serial_number, LINKED_SERIAL_LENGTH)
    type_code = int(value[0:2])
    year = 2000 + int(value[2:4])
    week = int(value[4:6])
    batch_sequence = int(value[6:10])
    sequence = int(value[10:16])
    try:
        serial_type = SerialType(type_code)
    except ValueError:
        raise InvalidIdentifierError(kind, value, f"unknown serial type code {type_code:02d}") from None
    try:
        date.fromisocalendar(year, week, 1)
    except ValueError:
        raise InvalidIdentifierError(kind, value, f"week {week:02d} does not exist in {year}") from None
    if batch_sequence == 0:
        raise InvalidIdentifierError(kind, value, "batch sequence must not be zero")
    if sequence == 0:
        raise InvalidIdentifierError(kind, value, "sequence must not be zero")
    return LinkedSerialParts(
        serial_type=serial_type, year=year, week=week, batch_sequence=batch_sequence, sequence=sequence
    )


def validate_linked_serial(serial_number: str) -> bool:
    try:
        parse_linked_serial(serial_number)
    except InvalidIdentifierError:
        return False
    return True


def derive_parent_batch_number(serial_number: str, site_id: int, batch_type: BatchType) -> str:
    """
    Rebuilds the 12-digit parent batch number of a batch-linked serial.
    The serial's own type code is the serial purpose, not the batch type,
    so batch_type and site_id have to be supplied.
    """
    parts = parse_linked_serial(serial_number)
    return format_batch_number(
        BatchNumberParts(
            site_id=site_id,
            batch_type=BatchType(batch_type),
            year=parts.year,
            week=parts.week,
            sequence=parts.batch_sequence,
        )
    )


async def generate_serial_number(
    db: AsyncSession,
    site_id: int,
    strain_code: int,
    batch_number: str,
    production_date: Optional[date] = None,
    weight_grams: Union[Decimal, float, int, str, None] = None,
    pack_qty: int = 1,
    *,
    requested_by: str,
) -> GeneratedSerial:
    check_site_id(site_id)
    _check_strain_code(strain_code)
    _check_pack_qty(pack_qty)
    if not requested_by:
        raise AuditFieldMissingError("requested_by")
    weight_tenths = weight_to_tenths(weight_grams)
    batch = parse_batch_number(batch_number)
    production_date = production_date or date.today()

    async with tx(db):
        unit_sequence = await next_sequence(
            db,
            SerialNumberSequence,
            {
                "site_id": site_id,
                "sequence_type": SEQUENCE_UNIT,
                "type_code": int(batch.batch_type),
                "sequence_date": production_date,
                "batch_sequence": batch.sequence,
            },
            max_sequence=min(settings.unit_sequence_max, MAX_UNIT_SEQUENCE),
            requested_by=requested_by,
            label="unit serial",
        )
        daily_sequence = await next_sequence(
            db,
            SerialNumberSequence,
            {
                "site_id": site_id,
                "sequence_type": SEQUENCE_DAILY,
                "type_code": 0,
                "sequence_date": production_date,
                "batch_sequence": 0,
            },
            max_sequence=min(settings.daily_sequence_max, MAX_DAILY_SEQUENCE),
            requested_by=requested_by,
            label="daily serial",
        )
        full = FullSerialParts(
            site_id=site_id,
            strain_code=strain_code,
            batch_type=batch.batch_type,
            production_date=production_date,
            batch_sequence=batch.sequence,
            unit_sequence=unit_sequence,
            weight_tenths=weight_tenths,
            pack_qty=pack_qty,
        )
        short = ShortSerialParts(site_id=site_id, production_date=production_date, sequence=daily_sequence)
        record = SerialNumber(
            full_serial=format_full_serial(full),
            short_serial=format_short_serial(short),
            batch_number=format_batch_number(batch),
            site_id=site_id,
            strain_code=strain_code,
            batch_type=int(batch.batch_type),
            production_date=production_date,
            batch_sequence=batch.sequence,
            unit_sequence=unit_sequence,
            weight_grams=full.weight_grams,
            pack_qty=pack_qty,
            status=SerialStatus.created,
            created_by=requested_by,
        )
        db.add(record)
        await db.flush()
        await log_action(
            db,
            requested_by,
            "serial_generate",
            "serial_number",
            record.id,
            {"batch_number": record.batch_number, "short_serial": record.short_serial},
            entity_key=record.full_serial,
        )

    logger.info(
        "Generated serial %s (short %s) for batch %s by %s",
        record.full_serial,
        record.short_serial,
        record.batch_number,
        requested_by,
    )
    return GeneratedSerial(record=record, full=full, short=short)


async def generate_bulk_serial_numbers(
    db: AsyncSession,
    count: int,
    site_id: int,
    strain_code: int,
    batch_number: str,
    production_date: Optional[date] = None,
    weight_grams: Union[Decimal, float, int, str, None] = None,
    pack_qty: int = 1,
    *,
    requested_by: str,
) -> list[GeneratedSerial]:
    if not 1 <= count <= MAX_BULK_COUNT:
        raise ValueError(f"Count must be between 1 and {MAX_BULK_COUNT}, got {count}")
    results = []
    for _ in range(count):
        results.append(
            await generate_serial_number(
                db,
                site_id,
                strain_code,
                batch_number,
                production_date,
                weight_grams,
                pack_qty,
                requested_by=requested_by,
            )
        )
    logger.info("Generated %s serials for batch %s", count, batch_number)
    return results


async def generate_linked_serial_number(
    db: AsyncSession,
    site_id: int,
    serial_type: SerialType,
    batch_number: str,
    *,
    requested_by: str,
) -> str:
    check_site_id(site_id)
    serial_type = SerialType(serial_type)
    if not requested_by:
        raise AuditFieldMissingError("requested_by")
    batch = parse_batch_number(batch_number)

    async with tx(db):
        sequence = await next_sequence(
            db,
            SerialNumberSequence,
            {
                "site_id": site_id,
                "sequence_type": SEQUENCE_LINKED,
                "type_code": int(serial_type),
                "sequence_date": batch.week_start,
                "batch_sequence": batch.sequence,
            },
            max_sequence=min(settings.linked_serial_sequence_max, MAX_LINKED_SEQUENCE),
            requested_by=requested_by,
            label="batch-linked serial",
        )

    serial = format_linked_serial(
        LinkedSerialParts(
            serial_type=serial_type,
            year=batch.year,
            week=batch.week,
            batch_sequence=batch.sequence,
            sequence=sequence,
        )
    )
    logger.info("Generated batch-linked serial %s from batch %s by %s", serial, batch_number, requested_by)
    return serial


async def generate_bulk_linked_serial_numbers(
    db: AsyncSession,
    count: int,
    site_id: int,
    serial_type: SerialType,
    batch_number: str,
    *,
    requested_by: str,
) -> list[str]:
    if not 1 <= count <= MAX_BULK_COUNT:
        raise ValueError(f"Count must be between 1 and {MAX_BULK_COUNT}, got {count}")
    return [
        await generate_linked_serial_number(db, site_id, serial_type, batch_number, requested_by=requested_by)
        for _ in range(count)
    ]
