from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from cannastock.errors import AuditFieldMissingError, InvalidIdentifierError
from cannastock.models import AuditLog, BatchType, SerialNumber, SerialStatus, SerialType, StrainType
from cannastock.services.luhn import compute_luhn_check_digit, is_valid_luhn
from cannastock.services.serial_numbers import (
    FullSerialParts,
    LinkedSerialParts,
    derive_parent_batch_number,
    format_full_serial,
    format_linked_serial,
    generate_bulk_serial_numbers,
    generate_linked_serial_number,
    generate_serial_number,
    get_strain_type,
    parse_full_serial,
    parse_linked_serial,
    parse_short_serial,
    validate_full_serial,
    validate_linked_serial,
    validate_short_serial,
    weight_to_tenths,
)

BATCH = "011025500001"
DAY = date(2025, 12, 10)


def _parts(**overrides) -> FullSerialParts:
    values = dict(
        site_id=1,
        strain_code=101,
        batch_type=BatchType.production,
        production_date=DAY,
        batch_sequence=1,
        unit_sequence=1,
        weight_tenths=35,
        pack_qty=1,
    )
    values.update(overrides)
    return FullSerialParts(**values)


def test_full_serial_layout():
    serial = format_full_serial(_parts())
    assert len(serial) == 30
    assert serial[:29] == "01" "101" "10" "20251210" "0001" "00001" "0035" "1"
    assert is_valid_luhn(serial)


def test_full_serial_parse_matches_format():
    parts = _parts(site_id=7, strain_code=402, unit_sequence=99999, weight_tenths=9999, pack_qty=9)
    serial = format_full_serial(parts)
    parsed = parse_full_serial(serial)
    assert parsed == parts
    assert parsed.weight_grams == Decimal("999.9")
    assert parsed.strain_type == StrainType.cbd


def test_full_serial_check_digit_is_enforced():
    serial = format_full_serial(_parts())
    bad = serial[:-1] + str((int(serial[-1]) + 1) % 10)
    assert validate_full_serial(serial)
    assert not validate_full_serial(bad)
    with pytest.raises(InvalidIdentifierError, match="check digit"):
        parse_full_serial(bad)


def test_full_serial_rejects_wrong_length_and_letters():
    assert not validate_full_serial("0110110")
    assert not validate_full_serial("A" * 30)


@pytest.mark.parametrize("produced", [date(2000, 1, 1), date(2099, 12, 31)])
def test_full_serial_round_trips_at_year_limits(produced):
    serial = format_full_serial(_parts(production_date=produced))
    assert len(serial) == 30
    assert format_full_serial(parse_full_serial(serial)) == serial


@pytest.mark.parametrize("produced", [date(999, 1, 1), date(1999, 12, 31), date(2100, 1, 1)])
def test_full_serial_year_outside_range_rejected(produced):
    with pytest.raises(ValueError):
        format_full_serial(_parts(production_date=produced))

    base = "01" "101" "10" f"{produced.year:04d}{produced.month:02d}{produced.day:02d}" "0001" "00001" "0035" "1"
    serial = base + compute_luhn_check_digit(base)
    with pytest.raises(InvalidIdentifierError, match="year"):
        parse_full_serial(serial)


def test_padded_serials_are_rejected():
    serial = format_full_serial(_parts())
    assert not validate_full_serial(f" {serial}")
    assert not validate_full_serial(f"{serial}\n")
    assert validate_short_serial("0125121000001")
    assert not validate_short_serial(" 0125121000001")
    assert not validate_linked_serial("1025510001000001 ")


@pytest.mark.parametrize(
    "weight, tenths",
    [(None, 0), (0, 0), (Decimal("3.5"), 35), (Decimal("3.59"), 35), ("999.9", 9999), (12, 120)],
)
def test_weight_truncated_to_tenths(weight, tenths):
    assert weight_to_tenths(weight) == tenths


@pytest.mark.parametrize(
    "weight",
    [Decimal("1000"), Decimal("1000.01"), 1500, Decimal("-0.1"), Decimal("NaN"), "NaN", "Infinity", "3,5"],
)
def test_weight_out_of_range_rejected(weight):
    with pytest.raises(ValueError):
        weight_to_tenths(weight)


def test_strain_type_from_first_digit():
    assert get_strain_type(101) == StrainType.sativa
    assert get_strain_type(250) == StrainType.indica
    assert get_strain_type(399) == StrainType.hybrid
    assert get_strain_type(401) == StrainType.cbd
    assert get_strain_type(901) == StrainType.unknown


def test_short_serial_parse():
    parts = parse_short_serial("0125121000042")
    assert parts.site_id == 1
    assert parts.production_date == DAY
    assert parts.sequence == 42
    assert not validate_short_serial("0125133100001")  # month 13
    assert not validate_short_serial("0025121000001")
    assert not validate_short_serial("0125121000000")


def test_linked_serial_layout_and_parent_batch():
    parts = LinkedSerialParts(serial_type=SerialType.production, year=2025, week=51, batch_sequence=1, sequence=1)
    serial = format_linked_serial(parts)
    assert serial == "1025510001000001"
    assert parse_linked_serial(serial) == parts
    assert derive_parent_batch_number(serial, 1, BatchType.production) == "011025510001"
    assert derive_parent_batch_number(serial, 4, BatchType.quarantine) == "048025510001"


def test_linked_serial_rejects_unknown_type():
    assert not validate_linked_serial("1125510001000001")
    assert not validate_linked_serial("1025510000000001")
    with pytest.raises(InvalidIdentifierError):
        derive_parent_batch_number("12345", 1, BatchType.production)


@pytest.mark.asyncio
async def test_generate_serial_number(session):
    first = await generate_serial_number(session, 1, 101, BATCH, DAY, Decimal("3.5"), 1, requested_by="packer-1")
    second = await generate_serial_number(session, 1, 101, BATCH, DAY, Decimal("3.5"), 1, requested_by="packer-1")

    assert first.full.unit_sequence == 1
    assert second.full.unit_sequence == 2
    assert first.short_serial == "0125121000001"
    assert second.short_serial == "0125121000002"
    assert parse_full_serial(first.full_serial) == first.full
    assert first.record.status == SerialStatus.created
    assert first.record.batch_number == BATCH
    assert first.record.weight_grams == Decimal("3.5")

    stored = await session.execute(select(func.count(SerialNumber.id)))
    assert stored.scalar_one() == 2
    audit = await session.execute(select(func.count(AuditLog.id)).where(AuditLog.action == "serial_generate"))
    assert audit.scalar_one() == 2


@pytest.mark.asyncio
async def test_unit_sequence_is_per_batch_daily_sequence_is_per_site(session):
    await generate_serial_number(session, 1, 101, BATCH, DAY, requested_by="packer-1")
    other = await generate_serial_number(session, 1, 101, "011025500002", DAY, requested_by="packer-1")
    assert other.full.unit_sequence == 1
    assert other.full.batch_sequence == 2
    assert other.short.sequence == 2


@pytest.mark.asyncio
async def test_generate_rejects_bad_input(session):
    with pytest.raises(ValueError):
        await generate_serial_number(session, 1, 101, BATCH, DAY, Decimal("1000.0"), requested_by="packer-1")
    with pytest.raises(ValueError):
        await generate_serial_number(session, 1, 99, BATCH, DAY, requested_by="packer-1")
    with pytest.raises(InvalidIdentifierError):
        await generate_serial_number(session, 1, 101, "0110255", DAY, requested_by="packer-1")
    with pytest.raises(AuditFieldMissingError):
        await generate_serial_number(session, 1, 101, BATCH, DAY, requested_by="")


@pytest.mark.asyncio
async def test_bulk_generation(session):
    results = await generate_bulk_serial_numbers(session, 5, 1, 205, BATCH, DAY, "1.0", 2, requested_by="packer-1")
    assert [r.full.unit_sequence for r in results] == [1, 2, 3, 4, 5]
    assert len({r.full_serial for r in results}) == 5
    assert all(r.full.strain_type == StrainType.indica for r in results)

    with pytest.raises(ValueError):
        await generate_bulk_serial_numbers(session, 0, 1, 205, BATCH, requested_by="packer-1")
    with pytest.raises(ValueError):
        await generate_bulk_serial_numbers(session, 10001, 1, 205, BATCH, requested_by="packer-1")


@pytest.mark.asyncio
async def test_generate_linked_serial_from_parent_batch(session):
    first = await generate_linked_serial_number(session, 1, SerialType.retail, BATCH, requested_by="packer-1")
    second = await generate_linked_serial_number(session, 1, SerialType.retail, BATCH, requested_by="packer-1")
    other_type = await generate_linked_serial_number(session, 1, SerialType.qc_sample, BATCH, requested_by="packer-1")
    assert first == "3025500001000001"
    assert second == "3025500001000002"
    assert other_type == "8025500001000001"
    assert derive_parent_batch_number(second, 1, BatchType.production) == BATCH
