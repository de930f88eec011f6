from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field
from .models import BatchType, MovementDirection, SerialStatus, SerialType, StrainType, TransactionType


class MovementOut(BaseModel):
    id: int
    product_id: int
    product_sku: str
    product_name: str
    movement_type: str
    direction: MovementDirection
    quantity: Decimal
    mass: Decimal
    value: Decimal
    batch_number: Optional[str]
    serial_number: Optional[str]
    transaction_type: TransactionType
    header_id: Optional[int]
    detail_id: Optional[int]
    movement_reason: str
    transaction_date: datetime
    user_id: Optional[str]
    location_id: Optional[int]
    location_name: Optional[str]
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]

    class Config:
        from_attributes = True


class MovementHistoryEntry(BaseModel):
    id: int
    transaction_date: datetime
    movement_type: str
    direction: MovementDirection
    quantity: Decimal
    batch_number: Optional[str]
    reference: str
    running_balance: Decimal


class ReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    reversed_by: str = Field(..., min_length=1)


class StockOnHand(BaseModel):
    product_id: int
    sku: str
    name: str
    location_id: Optional[int] = None
    quantity: Decimal
    cost_price: Decimal
    value_at_cost: Decimal
    reorder_level: Decimal
    below_reorder_level: bool
    last_movement_date: Optional[datetime] = None


class BatchStockOnHand(BaseModel):
    product_id: int
    sku: str
    batch_number: str
    quantity: Decimal
    expiry_date: Optional[date] = None
    thc_percentage: Optional[Decimal] = None
    cbd_percentage: Optional[Decimal] = None


class StockAlert(BaseModel):
    product_id: int
    sku: str
    name: str
    alert_type: str
    severity: str
    message: str
    quantity: Decimal
    reorder_level: Optional[Decimal] = None
    suggested_reorder_qty: Optional[Decimal] = None
    expiry_date: Optional[date] = None
    days_to_expiry: Optional[int] = None


class InventoryValuation(BaseModel):
    as_of: Optional[datetime] = None
    product_count: int
    products_in_stock: int
    total_quantity: Decimal
    total_value_at_cost: Decimal
    total_value_at_retail: Decimal


class TransferLine(BaseModel):
    product_id: int
    quantity: Decimal = Field(..., gt=0)
    batch_number: Optional[str] = None
    serial_number: Optional[str] = None
    weight_grams: Optional[Decimal] = None
    value: Decimal = Decimal(0)


class TransferRequest(BaseModel):
    from_location_id: int
    to_location_id: int
    lines: List[TransferLine] = Field(..., min_length=1)
    actor: str = Field(..., min_length=1)


class TransferCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    cancelled_by: str = Field(..., min_length=1)


class BatchNumberRequest(BaseModel):
    site_id: int = Field(..., ge=1, le=99)
    batch_type: BatchType
    batch_date: Optional[date] = None
    requested_by: str = Field(..., min_length=1)


class BatchNumberOut(BaseModel):
    batch_number: str
    site_id: int
    batch_type: BatchType
    year: int
    week: int
    sequence: int
    week_start: date


class BatchExistsOut(BaseModel):
    batch_number: str
    valid: bool
    exists: bool


class SerialNumberRequest(BaseModel):
    site_id: int = Field(..., ge=1, le=99)
    strain_code: int = Field(..., ge=100, le=999)
    batch_number: str
    production_date: Optional[date] = None
    weight_grams: Optional[Decimal] = None
    pack_qty: int = Field(1, ge=0, le=9)
    count: int = Field(1, ge=1, le=10000)
    requested_by: str = Field(..., min_length=1)


class SerialNumberOut(BaseModel):
    id: int
    full_serial: str
    short_serial: str
    batch_number: str
    site_id: int
    strain_code: int
    batch_type: int
    production_date: date
    batch_sequence: int
    unit_sequence: int
    weight_grams: Decimal
    pack_qty: int
    status: SerialStatus
    product_id: Optional[int]
    location_id: Optional[int]
    sold_transaction_id: Optional[int]
    created_at: datetime
    created_by: str

    class Config:
        from_attributes = True


class SerialAssignRequest(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    assigned_by: str = Field(..., min_length=1)


class SerialSaleRequest(BaseModel):
    sold_transaction_id: int = Field(..., ge=1)
    sold_at: Optional[datetime] = None
    sold_by: str = Field(..., min_length=1)


class SerialDestroyRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    witness: Optional[str] = None
    destroyed_by: str = Field(..., min_length=1)


class SerialComponentsOut(BaseModel):
    serial_number: str
    site_id: int
    strain_code: int
    strain_type: StrainType
    batch_type: BatchType
    production_date: date
    batch_sequence: int
    unit_sequence: int
    weight_grams: Decimal
    pack_qty: int


class LinkedSerialRequest(BaseModel):
    site_id: int = Field(..., ge=1, le=99)
    serial_type: SerialType
    batch_number: str
    count: int = Field(1, ge=1, le=10000)
    requested_by: str = Field(..., min_length=1)


class LinkedSerialOut(BaseModel):
    serial_numbers: List[str]


class AuditLogOut(BaseModel):
    id: int
    actor: str
    action: str
    entity_type: str
    entity_id: Optional[int]
    entity_key: Optional[str]
    payload_json: Optional[dict]
    created_at: datetime

    class Config:
        from_attributes = True
