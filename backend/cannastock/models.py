import enum
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Boolean,
    Enum,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    JSON,
    Index,
    Date,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base


class TransactionType(enum.IntEnum):
    sale = 1
    refund = 2
    account_payment = 3
    layby = 4
    quote = 5
    grv = 6
    rts = 7
    wholesale_sale = 8
    wholesale_refund = 9
    production_input = 10
    production_output = 11
    transfer_out = 12
    transfer_in = 13
    adjustment_in = 14
    adjustment_out = 15
    stocktake_variance = 16


class MovementDirection(str, enum.Enum):
    inbound = "In"
    outbound = "Out"


class BatchType(enum.IntEnum):
    production = 10
    transfer = 20
    stock_take = 30
    adjustment = 40
    return_to_supplier = 50
    destruction = 60
    customer_return = 70
    quarantine = 80
    reserved = 90


class SerialType(enum.IntEnum):
    production = 10
    grv = 20
    retail = 30
    bucking = 40
    transfer = 50
    adjustment = 60
    packaging = 70
    qc_sample = 80
    destruction = 90


class SerialStatus(enum.IntEnum):
    created = 1
    assigned = 2
    sold = 4
    destroyed = 6


class StrainType(str, enum.Enum):
    sativa = "sativa"
    indica = "indica"
    hybrid = "hybrid"
    cbd = "cbd"
    unknown = "unknown"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("sku"),
        Index("idx_products_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    selling_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    reorder_level: Mapped[Decimal] = mapped_column(Numeric(18, 3), default=0)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    thc_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    cbd_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(Integer, default=1)
    code: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class TransactionDetail(Base):
    """Line item of a business transaction (sale, GRV, transfer, ...)."""

    __tablename__ = "transaction_details"
    __table_args__ = (Index("idx_transaction_details_header", "transaction_type", "header_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    header_id: Mapped[int] = mapped_column(Integer)
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    product_sku: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 3))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    batch_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    weight_grams: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[str] = mapped_column(String(100))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    product: Mapped[Product] = relationship()


class Movement(Base):
    """Ledger entry. Never updated after insert except for soft delete."""

    __tablename__ = "movements"
    __table_args__ = (
        Index("idx_movements_product_date", "product_id", "transaction_date"),
        Index("idx_movements_batch", "batch_number"),
        Index("idx_movements_serial", "serial_number"),
        Index("idx_movements_transaction", "transaction_type", "header_id"),
        Index(
            "uq_movements_live_line",
            "transaction_type",
            "header_id",
            "detail_id",
            unique=True,
            postgresql_where=text("NOT is_deleted"),
            sqlite_where=text("NOT is_deleted"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    product_sku: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255))
    movement_type: Mapped[str] = mapped_column(String(50))
    direction: Mapped[MovementDirection] = mapped_column(Enum(MovementDirection))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 3))
    mass: Mapped[Decimal] = mapped_column(Numeric(18, 3), default=0)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    batch_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    header_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    detail_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    movement_reason: Mapped[str] = mapped_column(Text)
    transaction_date: Mapped[datetime] = mapped_column(DateTime)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location_id: Mapped[Optional[int]] = mapped_column(ForeignKey("locations.id"), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class BatchNumberSequence(Base):
    __tablename__ = "batch_number_sequences"
    __table_args__ = (UniqueConstraint("site_id", "batch_type", "sequence_date", name="uq_batch_number_sequence_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(Integer)
    batch_type: Mapped[int] = mapped_column(Integer)
    # Monday of the ISO week
    sequence_date: Mapped[date] = mapped_column(Date)
    current_sequence: Mapped[int] = mapped_column(Integer, default=0)
    max_sequence: Mapped[int] = mapped_column(Integer, default=9999)
    last_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_generated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class SerialNumberSequence(Base):
    """
    Counters behind serial numbers. sequence_type selects the scope:
    unit   - (site, batch type, production date, batch sequence)
    daily  - (site, production date)
    linked - (site, serial type, batch week, batch sequence)
    Key parts a scope does not use are stored as 0.
    """

    __tablename__ = "serial_number_sequences"
    __table_args__ = (
        UniqueConstraint(
            "site_id",
            "sequence_type",
            "type_code",
            "sequence_date",
            "batch_sequence",
            name="uq_serial_number_sequence_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(Integer)
    sequence_type: Mapped[str] = mapped_column(String(16))
    type_code: Mapped[int] = mapped_column(Integer, default=0)
    sequence_date: Mapped[date] = mapped_column(Date)
    batch_sequence: Mapped[int] = mapped_column(Integer, default=0)
    current_sequence: Mapped[int] = mapped_column(Integer, default=0)
    max_sequence: Mapped[int] = mapped_column(Integer, default=99999)
    last_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_generated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class SerialNumber(Base):
    __tablename__ = "serial_numbers"
    __table_args__ = (
        UniqueConstraint("full_serial"),
        UniqueConstraint("short_serial"),
        Index("idx_serial_numbers_batch", "batch_number"),
        Index("idx_serial_numbers_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_serial: Mapped[str] = mapped_column(String(30))
    short_serial: Mapped[str] = mapped_column(String(13))
    batch_number: Mapped[str] = mapped_column(String(12))
    site_id: Mapped[int] = mapped_column(Integer)
    strain_code: Mapped[int] = mapped_column(Integer)
    batch_type: Mapped[int] = mapped_column(Integer)
    production_date: Mapped[date] = mapped_column(Date)
    batch_sequence: Mapped[int] = mapped_column(Integer)
    unit_sequence: Mapped[int] = mapped_column(Integer)
    weight_grams: Mapped[Decimal] = mapped_column(Numeric(6, 1), default=0)
    pack_qty: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[SerialStatus] = mapped_column(Enum(SerialStatus), default=SerialStatus.created)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"), nullable=True)
    product_sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location_id: Mapped[Optional[int]] = mapped_column(ForeignKey("locations.id"), nullable=True)
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status_changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sold_transaction_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    destruction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    destruction_witness: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[str] = mapped_column(String(100))


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor: Mapped[str] = mapped_column(String(100))
    action: Mapped[str] = mapped_column(String(120))
    entity_type: Mapped[str] = mapped_column(String(120))
    entity_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    entity_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
