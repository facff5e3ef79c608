"""
Per-day order number counter

The single serialization point for order numbering: allocation increments
the day's row with one UPDATE in a short transaction of its own, so two
concurrent allocations can never read the same value.
"""
from sqlalchemy import Column, Integer, String

from pharmacy_store.core.database import Base


class OrderSequence(Base):
    __tablename__ = "order_sequences"

    day = Column(String(8), primary_key=True)  # YYYYMMDD
    last_value = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<OrderSequence {self.day}: {self.last_value}>"
