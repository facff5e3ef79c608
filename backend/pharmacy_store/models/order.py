"""
Order models

Orders capture a snapshot of the customer and of every product line at the
time they are placed; catalog or account changes never rewrite them.
Orders are never deleted, cancellation is a status.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Index,
    CheckConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from pharmacy_store.core.database import Base


class OrderStatus(str, enum.Enum):
    """Order lifecycle status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARED = "prepared"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class InventoryState(str, enum.Enum):
    """What the order currently holds against product stock"""
    RESERVED = "reserved"  # Stock decremented, order open
    RELEASED = "released"  # Stock given back (cancelled)
    FINALIZED = "finalized"  # Counted as sold (delivered)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("shipping_fee >= 0", name="ck_orders_shipping_non_negative"),
        CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_customer_email", "customer_email"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Assigned once at creation, never updated
    order_number = Column(String(40), unique=True, index=True, nullable=False)

    # Customer snapshot, independent of any user account
    customer_first_name = Column(String(100), nullable=False)
    customer_last_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    shipping_address = Column(String(500), nullable=False)
    city = Column(String(100))
    region = Column(String(100), nullable=False)  # Wilaya
    postal_code = Column(String(20))

    # Pricing, minor currency units
    subtotal = Column(Integer, nullable=False)
    shipping_fee = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)

    # Lifecycle
    status = Column(SQLEnum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = Column(SQLEnum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method"),
        nullable=False,
        default=PaymentMethod.CASH_ON_DELIVERY,
    )
    inventory_state = Column(
        SQLEnum(InventoryState, name="inventory_state"),
        nullable=False,
        default=InventoryState.RESERVED,
    )

    # Fulfillment
    tracking_number = Column(String(50))
    carrier = Column(String(100), default="Livraison locale")

    # Notes
    customer_notes = Column(Text)
    admin_comments = Column(Text)

    created_by = Column(String(255), nullable=False, default="guest")

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    # Milestones, each set the first time the status is reached
    confirmed_at = Column(DateTime(timezone=True))
    prepared_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    # Relationships
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    events = relationship(
        "OrderEvent",
        back_populates="order",
        order_by="OrderEvent.id",
        cascade="all, delete-orphan",
    )

    @property
    def customer_name(self) -> str:
        return f"{self.customer_first_name} {self.customer_last_name}"

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status.value if self.status else None}>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot of product at time of order
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(50))
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    @property
    def line_total(self) -> int:
        """Recomputed on every read, never stored."""
        return self.unit_price * self.quantity


class OrderEvent(Base):
    """Append-only order history"""
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # created, status_changed, status_override, comment, tracking_updated, payment_updated
    from_status = Column(String(20))
    to_status = Column(String(20))
    actor = Column(String(255), nullable=False)
    note = Column(Text)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    order = relationship("Order", back_populates="events")

    def __repr__(self):
        return f"<OrderEvent {self.id}: {self.action} {self.from_status}->{self.to_status}>"
