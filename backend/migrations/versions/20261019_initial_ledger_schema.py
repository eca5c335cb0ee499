"""Initial POS ledger schema: catalog, stock movements, sales, customers

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


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("base_sku", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.UniqueConstraint("base_sku", name="uq_products_base_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)
        batch_op.create_index("ix_products_is_archived", ["is_archived"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("color", sa.String(64), nullable=True),
        sa.Column("size", sa.String(32), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reorder_point", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("last_restocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_product_variants_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_product_variants"),
        sa.UniqueConstraint("sku", name="uq_product_variants_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_variants", schema=None) as batch_op:
        batch_op.create_index("ix_product_variants_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_variants_is_archived", ["is_archived"], unique=False)
        batch_op.create_index("ix_variants_product_stock", ["product_id", "stock"], unique=False)
        batch_op.create_index("ix_variants_stock_reorder", ["stock", "reorder_point"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_phone", ["phone"], unique=False)

    op.create_table(
        "sale_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_name", sa.String(128), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("status", sa.String(24), nullable=False, server_default="completed"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_sale_transactions_customer_id_customers"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_transactions"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_sale_transactions_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_sale_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sale_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_sale_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_sale_tx_status_created", ["status", "created_at"], unique=False)
        batch_op.create_index("ix_sale_tx_customer_status", ["customer_id", "status"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_type", sa.String(16), nullable=False, server_default="NONE"),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_reason", sa.String(255), nullable=True),
        sa.Column("discount_applied_by_user_id", sa.Integer(), nullable=True),
        sa.Column("discount_applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("refunded_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sa.CheckConstraint(
            "refunded_quantity >= 0 AND refunded_quantity <= quantity",
            name="ck_sale_items_refund_bounds",
        ),
        sa.ForeignKeyConstraint(["transaction_id"], ["sale_transactions.id"], name="fk_sale_items_transaction_id_sale_transactions"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_sale_items_product_id_products"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_sale_items_variant_id_product_variants"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_items"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.create_index("ix_sale_items_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_sale_items_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_sale_items_variant_id", ["variant_id"], unique=False)
        batch_op.create_index("ix_sale_items_tx_variant", ["transaction_id", "variant_id"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("clamped_shortfall", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_stock_movements_variant_id_product_variants"),
        sa.ForeignKeyConstraint(["reference_id"], ["sale_transactions.id"], name="fk_stock_movements_reference_id_sale_transactions"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_movements"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_variant_id", ["variant_id"], unique=False)
        batch_op.create_index("ix_stock_movements_type", ["type"], unique=False)
        batch_op.create_index("ix_stock_movements_reference_id", ["reference_id"], unique=False)
        batch_op.create_index("ix_stock_movements_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_movements_variant_created", ["variant_id", "created_at"], unique=False)
        batch_op.create_index("ix_movements_variant_type", ["variant_id", "type"], unique=False)


def downgrade():
    op.drop_table("stock_movements")
    op.drop_table("sale_items")
    op.drop_table("sale_transactions")
    op.drop_table("customers")
    op.drop_table("product_variants")
    op.drop_table("products")
