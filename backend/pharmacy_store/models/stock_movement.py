"""
Stock Movement model for inventory tracking and audit

Every ledger operation (reservation, release, sale, correction) writes one
row: who, when, why, and the stock level before and after.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from pharmacy_store.core.database import Base

MOVEMENT_TYPES = ("reserved", "released", "sold", "adjustment")
_MOVEMENT_TYPES_SQL = ", ".join(f"'{movement_type}'" for movement_type in MOVEMENT_TYPES)


class StockMovement(Base):
    """Audit trail for inventory stock changes"""
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)

    product_id = Column(
        Integer,
        ForeignKey("products.id"),
        nullable=False,
        index=True
    )

    movement_type = Column(String(30), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)  # positive for in, negative for out
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)

    reason = Column(String(255), nullable=True)
    reference = Column(String(50), nullable=True, index=True)  # order number

    actor = Column(String(255), nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    product = relationship("Product", back_populates="stock_movements")

    __table_args__ = (
        CheckConstraint(
            f"movement_type IN ({_MOVEMENT_TYPES_SQL})",
            name="chk_movement_type"
        ),
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
    )

    def __repr__(self):
        return f"<StockMovement {self.id}: {self.movement_type} {self.quantity:+d} on product {self.product_id}>"
