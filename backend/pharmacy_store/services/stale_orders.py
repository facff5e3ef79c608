"""
Stale Pending Order Sweep

Pending orders hold reserved stock until they are confirmed or cancelled.
Orders left pending longer than PENDING_ORDER_TTL_HOURS are cancelled here,
through the normal lifecycle transition, so their stock is released and the
cancellation shows up in the order history like any other.

Scheduled by the application lifespan; can also be run from cron:

    python -m pharmacy_store.services.stale_orders
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select

from pharmacy_store.core.config import settings
from pharmacy_store.core.database import AsyncSessionLocal
from pharmacy_store.core.exceptions import ConcurrentModification, InvalidTransition, OrderNotFound
from pharmacy_store.models import Order, OrderStatus
from pharmacy_store.services.order_service import OrderService

logger = logging.getLogger(__name__)

SWEEPER_ACTOR = "system:sweeper"


async def cancel_stale_pending_orders(
    session_factory=AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> dict:
    """
    Cancel pending orders older than the configured TTL.

    Each order is cancelled in its own transaction; an order confirmed in the
    meantime is skipped, not forced.

    Returns:
        dict with counts of cancelled, skipped and failed orders
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=settings.PENDING_ORDER_TTL_HOURS)
    stats = {"cancelled": 0, "skipped": 0, "errors": 0}

    async with session_factory() as db:
        result = await db.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
            .order_by(Order.id)
        )
        order_ids = list(result.scalars().all())

    if not order_ids:
        logger.debug("No stale pending orders")
        return stats

    for order_id in order_ids:
        async with session_factory() as db:
            service = OrderService(db)
            try:
                await service.transition_order(
                    order_id,
                    OrderStatus.CANCELLED,
                    actor=SWEEPER_ACTOR,
                    note=f"pending for more than {settings.PENDING_ORDER_TTL_HOURS}h",
                )
                stats["cancelled"] += 1
            except (InvalidTransition, ConcurrentModification, OrderNotFound) as e:
                logger.info("Stale order %s skipped: %s", order_id, e.message)
                stats["skipped"] += 1
            except Exception as e:
                logger.error("Error cancelling stale order %s: %s", order_id, e)
                stats["errors"] += 1

    if stats["cancelled"]:
        logger.info(
            "Stale order sweep cancelled %d orders (skipped %d, errors %d)",
            stats["cancelled"], stats["skipped"], stats["errors"],
        )
    return stats


# For running as standalone script
if __name__ == "__main__":
    import asyncio

    from pharmacy_store.core.logging_config import setup_logging

    async def main():
        setup_logging()
        print("Running stale pending order sweep...")
        stats = await cancel_stale_pending_orders()
        print(f"Sweep complete: {stats}")

    asyncio.run(main())
