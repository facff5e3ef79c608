"""
Product model

Prices are integer minor currency units (centimes) to avoid float drift.
Products referenced by orders are never deleted, only deactivated.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, CheckConstraint
from sqlalchemy.orm import relationship

from pharmacy_store.core.database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint(
            "original_price IS NULL OR original_price >= price",
            name="ck_products_original_price_gte_price",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    category = Column(String(100), index=True)

    # Pricing
    price = Column(Integer, nullable=False)
    original_price = Column(Integer)  # Pre-promotion price, for display

    # Inventory
    stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    sold_count = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    order_items = relationship("OrderItem", back_populates="product")
    stock_movements = relationship("StockMovement", back_populates="product")

    @property
    def on_promotion(self) -> bool:
        return self.original_price is not None and self.original_price > self.price

    def __repr__(self):
        return f"<Product {self.id}: {self.sku} stock={self.stock}>"
