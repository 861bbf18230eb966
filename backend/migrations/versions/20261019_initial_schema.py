"""Initial schema: products, stock history, sales/rental bills, bill sequences

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _bill_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("serial_no", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(32), nullable=False),
        sa.Column("customer_address", sa.String(500), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_mode", sa.String(16), nullable=False, server_default="percentage"),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_type", sa.String(32), nullable=True),
        sa.Column("advance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_feedback", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(120), nullable=True),
        sa.Column("product_type", sa.String(16), nullable=False, server_default="sales"),
        sa.Column("rate_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("total_sales", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_rentals", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_restocked", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)
        batch_op.create_index("ix_products_type_name", ["product_type", "name"], unique=False)

    op.create_table(
        "stock_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("change_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("requested_change", sa.Integer(), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("bill_variant", sa.String(16), nullable=True),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("new_quantity >= 0", name="ck_stock_history_new_non_negative"),
        sa.CheckConstraint(
            "new_quantity = previous_quantity + quantity_change",
            name="ck_stock_history_balance",
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_history", schema=None) as batch_op:
        batch_op.create_index("ix_stock_history_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_history_change_type", ["change_type"], unique=False)
        batch_op.create_index("ix_stock_history_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_stock_history_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "sales_bills",
        *_bill_columns(),
        sa.Column("bill_date", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("serial_no", name="uq_sales_bills_serial_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales_bills", schema=None) as batch_op:
        batch_op.create_index("ix_sales_bills_bill_date", ["bill_date"], unique=False)
        batch_op.create_index("ix_sales_bills_customer_phone", ["customer_phone"], unique=False)

    op.create_table(
        "rental_bills",
        *_bill_columns(),
        sa.Column("from_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("to_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transport_fees_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rental_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("serial_no", name="uq_rental_bills_serial_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("rental_bills", schema=None) as batch_op:
        batch_op.create_index("ix_rental_bills_from_date", ["from_date"], unique=False)
        batch_op.create_index("ix_rental_bills_customer_phone", ["customer_phone"], unique=False)

    op.create_table(
        "bill_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant", sa.String(16), nullable=False),
        sa.Column("last_serial", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("variant", name="uq_bill_sequences_variant"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("bill_sequences")

    with op.batch_alter_table("rental_bills", schema=None) as batch_op:
        batch_op.drop_index("ix_rental_bills_customer_phone")
        batch_op.drop_index("ix_rental_bills_from_date")
    op.drop_table("rental_bills")

    with op.batch_alter_table("sales_bills", schema=None) as batch_op:
        batch_op.drop_index("ix_sales_bills_customer_phone")
        batch_op.drop_index("ix_sales_bills_bill_date")
    op.drop_table("sales_bills")

    with op.batch_alter_table("stock_history", schema=None) as batch_op:
        batch_op.drop_index("ix_stock_history_product_created")
        batch_op.drop_index("ix_stock_history_bill_id")
        batch_op.drop_index("ix_stock_history_change_type")
        batch_op.drop_index("ix_stock_history_product_id")
    op.drop_table("stock_history")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_type_name")
        batch_op.drop_index("ix_products_name")
    op.drop_table("products")
