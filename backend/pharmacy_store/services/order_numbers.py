"""
Order number allocation

Numbers look like CMD-20261018-00042: a date component keeps them human
sortable and roughly chronological, the per-day counter makes them unique.

The counter lives in order_sequences and is bumped with a single conditional
UPDATE in its own short transaction, committed before the order transaction
starts. Like a database sequence, a value is never handed out twice even if
the order that took it is rolled back (numbers may have gaps, never
duplicates).
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pharmacy_store.core.config import settings
from pharmacy_store.core.exceptions import OrderNumberCollision
from pharmacy_store.models import OrderSequence

logger = logging.getLogger(__name__)


def format_order_number(prefix: str, day: str, value: int) -> str:
    return f"{prefix}-{day}-{value:05d}"


class OrderNumberAllocator:
    """Hands out unique order numbers backed by the order_sequences table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.prefix = prefix or settings.ORDER_NUMBER_PREFIX
        self.max_attempts = max_attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS

    async def allocate(self, now: Optional[datetime] = None) -> str:
        """
        Allocate the next order number for the day of `now` (UTC).

        Raises:
            OrderNumberCollision: the day's counter row could not be created
                after max_attempts concurrent-insert races.
        """
        day = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")

        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                try:
                    value = await self._next_value(session, day)
                    await session.commit()
                except IntegrityError:
                    # Another allocation created the day's row first
                    await session.rollback()
                    logger.info("Order sequence row for %s created concurrently, retrying (attempt %d)", day, attempt)
                    continue

            return format_order_number(self.prefix, day, value)

        raise OrderNumberCollision(
            f"Could not allocate an order number for {day}",
            details={"day": day, "attempts": self.max_attempts},
        )

    @staticmethod
    async def _next_value(session: AsyncSession, day: str) -> int:
        result = await session.execute(
            update(OrderSequence)
            .where(OrderSequence.day == day)
            .values(last_value=OrderSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.add(OrderSequence(day=day, last_value=1))
            await session.flush()
            return 1

        # Row is write-locked by the UPDATE above until commit
        return await session.scalar(
            select(OrderSequence.last_value).where(OrderSequence.day == day)
        )
