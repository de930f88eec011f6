"""movement ledger, identifier sequences and serial registry

Revision ID: 20251215_0001
Revises:
Create Date: 2025-12-15
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20251215_0001"
down_revision = None
branch_labels = None
depends_on = None

TRANSACTION_TYPES = (
    "sale",
    "refund",
    "account_payment",
    "layby",
    "quote",
    "grv",
    "rts",
    "wholesale_sale",
    "wholesale_refund",
    "production_input",
    "production_output",
    "transfer_out",
    "transfer_in",
    "adjustment_in",
    "adjustment_out",
    "stocktake_variance",
)


def _audit_columns():
    return [
        sa.Column("last_generated_at", sa.DateTime(), nullable=True),
        sa.Column("last_generated_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("modified_at", sa.DateTime(), nullable=True),
        sa.Column("modified_by", sa.String(length=100), nullable=True),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=True),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("reorder_level", sa.Numeric(18, 3), nullable=False, server_default="0"),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("thc_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("cbd_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )
    op.create_index("idx_products_name", "products", ["name"], unique=False)

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "transaction_details",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("header_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("product_sku", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("vat_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("batch_number", sa.String(length=32), nullable=True),
        sa.Column("serial_number", sa.String(length=32), nullable=True),
        sa.Column("weight_grams", sa.Numeric(10, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by", sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_transaction_details_header", "transaction_details", ["transaction_type", "header_id"], unique=False
    )

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("product_sku", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("movement_type", sa.String(length=50), nullable=False),
        sa.Column("direction", sa.Enum("inbound", "outbound", name="movementdirection"), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("mass", sa.Numeric(18, 3), nullable=False, server_default="0"),
        sa.Column("value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("batch_number", sa.String(length=32), nullable=True),
        sa.Column("serial_number", sa.String(length=32), nullable=True),
        sa.Column(
            "transaction_type",
            postgresql.ENUM(*TRANSACTION_TYPES, name="transactiontype", create_type=False),
            nullable=False,
        ),
        sa.Column("header_id", sa.Integer(), nullable=True),
        sa.Column("detail_id", sa.Integer(), nullable=True),
        sa.Column("movement_reason", sa.Text(), nullable=False),
        sa.Column("transaction_date", sa.DateTime(), nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("location_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by", sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_movements_product_date", "movements", ["product_id", "transaction_date"], unique=False)
    op.create_index("idx_movements_batch", "movements", ["batch_number"], unique=False)
    op.create_index("idx_movements_serial", "movements", ["serial_number"], unique=False)
    op.create_index("idx_movements_transaction", "movements", ["transaction_type", "header_id"], unique=False)
    op.create_index(
        "uq_movements_live_line",
        "movements",
        ["transaction_type", "header_id", "detail_id"],
        unique=True,
        postgresql_where=sa.text("NOT is_deleted"),
        sqlite_where=sa.text("NOT is_deleted"),
    )

    op.create_table(
        "batch_number_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("batch_type", sa.Integer(), nullable=False),
        sa.Column("sequence_date", sa.Date(), nullable=False),
        sa.Column("current_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_sequence", sa.Integer(), nullable=False, server_default="9999"),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("site_id", "batch_type", "sequence_date", name="uq_batch_number_sequence_key"),
    )

    op.create_table(
        "serial_number_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("sequence_type", sa.String(length=16), nullable=False),
        sa.Column("type_code", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sequence_date", sa.Date(), nullable=False),
        sa.Column("batch_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_sequence", sa.Integer(), nullable=False, server_default="99999"),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "site_id",
            "sequence_type",
            "type_code",
            "sequence_date",
            "batch_sequence",
            name="uq_serial_number_sequence_key",
        ),
    )

    op.create_table(
        "serial_numbers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_serial", sa.String(length=30), nullable=False),
        sa.Column("short_serial", sa.String(length=13), nullable=False),
        sa.Column("batch_number", sa.String(length=12), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("strain_code", sa.Integer(), nullable=False),
        sa.Column("batch_type", sa.Integer(), nullable=False),
        sa.Column("production_date", sa.Date(), nullable=False),
        sa.Column("batch_sequence", sa.Integer(), nullable=False),
        sa.Column("unit_sequence", sa.Integer(), nullable=False),
        sa.Column("weight_grams", sa.Numeric(6, 1), nullable=False, server_default="0"),
        sa.Column("pack_qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "status",
            sa.Enum("created", "assigned", "sold", "destroyed", name="serialstatus"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("product_sku", sa.String(length=64), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(), nullable=True),
        sa.Column("status_changed_by", sa.String(length=100), nullable=True),
        sa.Column("sold_transaction_id", sa.Integer(), nullable=True),
        sa.Column("sold_at", sa.DateTime(), nullable=True),
        sa.Column("destruction_reason", sa.Text(), nullable=True),
        sa.Column("destruction_witness", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("full_serial"),
        sa.UniqueConstraint("short_serial"),
    )
    op.create_index("idx_serial_numbers_batch", "serial_numbers", ["batch_number"], unique=False)
    op.create_index("idx_serial_numbers_status", "serial_numbers", ["status"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("entity_type", sa.String(length=120), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("entity_key", sa.String(length=64), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_log_created_at"), "audit_log", ["created_at"], unique=False)


def downgrade():
    op.drop_index(op.f("ix_audit_log_created_at"), table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("idx_serial_numbers_status", table_name="serial_numbers")
    op.drop_index("idx_serial_numbers_batch", table_name="serial_numbers")
    op.drop_table("serial_numbers")
    op.drop_table("serial_number_sequences")
    op.drop_table("batch_number_sequences")
    op.drop_index("uq_movements_live_line", table_name="movements")
    op.drop_index("idx_movements_transaction", table_name="movements")
    op.drop_index("idx_movements_serial", table_name="movements")
    op.drop_index("idx_movements_batch", table_name="movements")
    op.drop_index("idx_movements_product_date", table_name="movements")
    op.drop_table("movements")
    op.drop_index("idx_transaction_details_header", table_name="transaction_details")
    op.drop_table("transaction_details")
    op.drop_table("locations")
    op.drop_index("idx_products_name", table_name="products")
    op.drop_table("products")
    sa.Enum(name="serialstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="movementdirection").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
