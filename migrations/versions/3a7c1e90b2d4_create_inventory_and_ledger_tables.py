"""create inventory and ledger tables

Revision ID: 3a7c1e90b2d4
Revises:
Create Date: 2026-10-18 10:52:11.204318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a7c1e90b2d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("item_key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("images", sa.JSON(), nullable=True),
        sa.Column("is_single_piece", sa.Boolean(), nullable=False),
        sa.Column("inventory_status", sa.Integer(), nullable=False),
        sa.Column("reserved_by", sa.String(128), nullable=True),
        sa.Column("reservation_token", sa.String(64), nullable=True),
        sa.Column("reserved_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_token", sa.String(64), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_product_public_id", "product", ["public_id"], unique=True)
    op.create_index("ix_product_item_key", "product", ["item_key"], unique=True)
    op.create_index("ix_product_category", "product", ["category"])
    op.create_index("ix_product_inventory_status", "product", ["inventory_status"])
    op.create_index("ix_product_reservation_token", "product", ["reservation_token"])
    op.create_index("ix_product_reserved_until", "product", ["reserved_until"])
    op.create_index("ix_product_status_reserved_until", "product", ["inventory_status", "reserved_until"])

    op.create_table(
        "cart",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("buyer_id", sa.String(128), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_cart_buyer_id", "cart", ["buyer_id"], unique=True)

    op.create_table(
        "cartitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cart_id", sa.Integer(), sa.ForeignKey("cart.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("cart_id", "product_id", name="uq_cart_product"),
    )
    op.create_index("ix_cartitem_cart_id", "cartitem", ["cart_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("order_ref", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.String(128), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("subtotal", sa.BigInteger(), nullable=False),
        sa.Column("tax", sa.BigInteger(), nullable=False),
        sa.Column("shipping", sa.BigInteger(), nullable=False),
        sa.Column("total", sa.BigInteger(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("customer_details", sa.JSON(), nullable=True),
        sa.Column("reservation_token", sa.String(64), nullable=False),
        sa.Column("reserved_until", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_public_id", "orders", ["public_id"], unique=True)
    op.create_index("ix_orders_order_ref", "orders", ["order_ref"], unique=True)
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_reservation_token", "orders", ["reservation_token"])
    op.create_index("ix_orders_reserved_until", "orders", ["reserved_until"])

    op.create_table(
        "orderitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("item_key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_snapshot", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("order_id", "product_id", name="uq_order_product"),
    )
    op.create_index("ix_orderitem_order_id", "orderitem", ["order_id"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("order_ref", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.String(128), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("method", sa.String(32), nullable=True),
        sa.Column("proof", sa.JSON(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("verified_by", sa.String(128), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payment_public_id", "payment", ["public_id"], unique=True)
    op.create_index("ix_payment_order_ref", "payment", ["order_ref"], unique=True)
    op.create_index("ix_payment_buyer_id", "payment", ["buyer_id"])
    op.create_index("ix_payment_status", "payment", ["status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("payment")
    op.drop_table("orderitem")
    op.drop_table("orders")
    op.drop_table("cartitem")
    op.drop_table("cart")
    op.drop_table("product")
