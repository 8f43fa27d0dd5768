"""initial order and catalog schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "model_archetype",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("warranty", sa.Integer(), nullable=True),
        sa.Column("storages", sa.JSON(), nullable=False),
        sa.Column("colors", sa.JSON(), nullable=False),
        sa.Column("condition", sa.String(length=100), nullable=True),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        sa.Column("storage_prices", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_model_archetype_name", "model_archetype", ["name"], unique=True)

    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("barcode", sa.String(length=255), nullable=True),
        sa.Column("imei", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_status", sa.String(length=50), nullable=False, server_default="enabled"),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="bulk"),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        sa.Column("model", sa.String(length=255), nullable=True),
        sa.Column(
            "model_id",
            sa.Integer(),
            sa.ForeignKey("model_archetype.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("color", sa.String(length=50), nullable=True),
        sa.Column("storage", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("barcode"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
    )
    op.create_index("ix_product_model", "product", ["model"])
    op.create_index("ix_product_model_id", "product", ["model_id"])

    op.create_table(
        "shop_manager",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="pending"),
        sa.Column("guest_name", sa.String(length=255), nullable=False),
        sa.Column("guest_phone", sa.String(length=50), nullable=False),
        sa.Column("guest_note", sa.Text(), nullable=True),
        sa.Column("guest_embg", sa.String(length=50), nullable=True),
        sa.Column("guest_id_card", sa.String(length=50), nullable=True),
        sa.Column(
            "shop_manager_id",
            sa.Integer(),
            sa.ForeignKey("shop_manager.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("original_total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("discount_currency", sa.String(length=10), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
    )

    op.create_table(
        "order_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("order.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("warranty", sa.Integer(), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )
    op.create_index("ix_order_item_order_id", "order_item", ["order_id"])
    op.create_index("ix_order_item_product_id", "order_item", ["product_id"])

    op.create_table(
        "catalog_propagation_job",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_catalog_propagation_job_status", "catalog_propagation_job", ["status"]
    )


def downgrade():
    op.drop_index("ix_catalog_propagation_job_status", table_name="catalog_propagation_job")
    op.drop_table("catalog_propagation_job")
    op.drop_index("ix_order_item_product_id", table_name="order_item")
    op.drop_index("ix_order_item_order_id", table_name="order_item")
    op.drop_table("order_item")
    op.drop_table("order")
    op.drop_table("shop_manager")
    op.drop_index("ix_product_model_id", table_name="product")
    op.drop_index("ix_product_model", table_name="product")
    op.drop_table("product")
    op.drop_index("ix_model_archetype_name", table_name="model_archetype")
    op.drop_table("model_archetype")
