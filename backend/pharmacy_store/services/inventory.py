"""
Inventory ledger

Stock is the only resource shared between concurrent orders. Every change is
one conditional UPDATE evaluated by the database, never a read-then-write:

    UPDATE products SET stock = stock - :n WHERE id = :p AND stock >= :n

and the affected row count decides success. The ledger never commits; the
caller's transaction makes a multi-item reservation all-or-nothing.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pharmacy_store.core.exceptions import InsufficientStock, InvalidLineItem, ProductNotFound
from pharmacy_store.models import Product, StockMovement

logger = logging.getLogger(__name__)


def stock_status(product: Product) -> str:
    """Storefront stock badge: out_of_stock, low, medium or good."""
    threshold = product.low_stock_threshold or 0
    if product.stock <= 0:
        return "out_of_stock"
    if product.stock <= threshold:
        return "low"
    if product.stock <= threshold * 2:
        return "medium"
    return "good"


class InventoryLedger:
    """Reserve, release and finalize stock on behalf of an actor."""

    def __init__(self, db: AsyncSession, actor: str = "system"):
        self.db = db
        self.actor = actor

    async def reserve(self, product_id: int, quantity: int, reference: Optional[str] = None) -> Product:
        """
        Atomically take `quantity` units out of stock.

        Raises:
            InsufficientStock: stock < quantity, nothing was decremented
            ProductNotFound: no such product
        """
        self._check_quantity(quantity)
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            product = await self._load(product_id)
            raise InsufficientStock(
                product_id,
                requested_qty=quantity,
                available_qty=product.stock,
                product_name=product.name,
            )

        product = await self._load(product_id)
        self._record(product, "reserved", -quantity, product.stock + quantity, reference)
        return product

    async def release(self, product_id: int, quantity: int, reference: Optional[str] = None) -> Product:
        """Atomically give `quantity` units back to stock."""
        self._check_quantity(quantity)
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ProductNotFound(product_id)

        product = await self._load(product_id)
        self._record(product, "released", quantity, product.stock - quantity, reference)
        logger.info("Released %d units of product %s (%s)", quantity, product_id, reference)
        return product

    async def finalize(self, product_id: int, quantity: int, reference: Optional[str] = None) -> Product:
        """
        Count reserved units as sold.

        Stock was already decremented at reservation; only sold_count moves.
        """
        self._check_quantity(quantity)
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(sold_count=Product.sold_count + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ProductNotFound(product_id)

        product = await self._load(product_id)
        self._record(product, "sold", -quantity, product.stock, reference)
        return product

    async def adjust(self, product_id: int, delta: int, reason: str) -> Product:
        """
        Administrative stock correction (goods received, damaged units...).

        A negative delta is applied only if enough stock remains.
        """
        if delta == 0:
            raise InvalidLineItem("Stock adjustment cannot be zero", details={"delta": delta})

        stmt = update(Product).where(Product.id == product_id)
        if delta < 0:
            stmt = stmt.where(Product.stock >= -delta)
        result = await self.db.execute(
            stmt.values(stock=Product.stock + delta).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            product = await self._load(product_id)
            raise InsufficientStock(
                product_id,
                requested_qty=-delta,
                available_qty=product.stock,
                product_name=product.name,
            )

        product = await self._load(product_id)
        self._record(product, "adjustment", delta, product.stock - delta, None, reason=reason)
        logger.info("Stock of product %s adjusted by %+d by %s: %s", product_id, delta, self.actor, reason)
        return product

    async def _load(self, product_id: int) -> Product:
        """Fresh product row, replacing any stale copy in the session."""
        product = await self.db.scalar(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def _record(
        self,
        product: Product,
        movement_type: str,
        quantity: int,
        previous_stock: int,
        reference: Optional[str],
        reason: Optional[str] = None,
    ) -> None:
        self.db.add(StockMovement(
            product_id=product.id,
            movement_type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=product.stock,
            reason=reason,
            reference=reference,
            actor=self.actor,
        ))

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity < 1:
            raise InvalidLineItem(
                f"Quantity must be at least 1 (got {quantity})",
                details={"quantity": quantity},
            )
