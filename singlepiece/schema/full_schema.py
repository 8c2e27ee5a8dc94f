import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, Uuid
from sqlmodel import Column, Field, SQLModel, String
from uuid6 import uuid7

from singlepiece.common.utils import now


class InventoryStatus(enum.IntEnum):
    AVAILABLE = 0
    RESERVED = 10
    SOLD = 20


# one row per unique physical item; rows are never deleted, only their state moves
class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    item_key: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    category: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    price: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))  # rs
    images: Optional[List[str]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    is_single_piece: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))

    inventory_status: int = Field(default=InventoryStatus.AVAILABLE.value,
        sa_column=Column(Integer, nullable=False, index=True, default=InventoryStatus.AVAILABLE.value))
    # reserved_by / reservation_token / reserved_until are set together iff RESERVED
    reserved_by: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    reservation_token: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    reserved_until: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True))
    sold_token: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    sold_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        Index("ix_product_status_reserved_until", "inventory_status", "reserved_until"),
    )

#-----------------------------------------------------------------------------------------------------------

# server side cart, one per buyer
class Cart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    buyer_id: str = Field(sa_column=Column(String(128), nullable=False, unique=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


class CartItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    cart_id: int = Field(sa_column=Column(Integer, ForeignKey("cart.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_product"),
    )

# --------------------------------------------------------------------------------------------

class OrderStatus(enum.IntEnum):
    RESERVED = 0
    SOLD = 10
    CANCELLED = 20
    EXPIRED = 30


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_ref: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    buyer_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    status: int = Field(default=OrderStatus.RESERVED.value, sa_column=Column(Integer, nullable=False, index=True))
    currency: str = Field(default="INR", sa_column=Column(String(8), nullable=False))
    subtotal: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))  # rs
    tax: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    shipping: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    total: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    payment_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))  # "upi" / "bank_transfer"
    customer_details: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    reservation_token: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    reserved_until: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))
    sold_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class OrderItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    item_key: str = Field(sa_column=Column(String(64), nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    unit_price_snapshot: int = Field(sa_column=Column(BigInteger, nullable=False))  # rs

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_product"),
    )

# --------------------------------------------------------------------------------------------------------------------------------

class PaymentStatus(enum.IntEnum):
    PENDING = 0
    VERIFIED = 10
    FAILED = 20
    EXPIRED = 30


# ledger entry of the manual (upi / bank transfer) payment for one order
class Payment(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    order_ref: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    buyer_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    status: int = Field(default=PaymentStatus.PENDING.value, sa_column=Column(Integer, nullable=False, index=True))
    amount: int = Field(sa_column=Column(BigInteger, nullable=False))
    currency: str = Field(default="INR", sa_column=Column(String(8), nullable=False))
    method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    proof: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    submitted_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    rejection_reason: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    verified_by: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    verified_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))
