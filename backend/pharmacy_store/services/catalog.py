"""
Product administration

Catalog writes the ledger and the order aggregate depend on. Price edits only
touch the product row: orders keep the unit prices snapshotted on their items.
Products are deactivated, never deleted, so order history stays resolvable.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select

from pharmacy_store.core.config import settings
from pharmacy_store.core.exceptions import InvalidLineItem, ProductNotFound, ValidationError
from pharmacy_store.models import Product
from pharmacy_store.services.inventory import InventoryLedger
from pharmacy_store.services.pricing import promoted_price

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description", "category", "price", "original_price", "low_stock_threshold")
REQUIRED_FIELDS = ("name", "price", "low_stock_threshold")


def _check_prices(price: int, original_price: Optional[int]) -> None:
    if price < 0:
        raise InvalidLineItem(f"Price cannot be negative (got {price})", details={"price": price})
    if original_price is not None and original_price < price:
        raise InvalidLineItem(
            "Original price cannot be lower than the current price",
            details={"price": price, "original_price": original_price},
        )


async def get_product(db, product_id: int) -> Product:
    product = await db.scalar(
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    if product is None:
        raise ProductNotFound(product_id)
    return product


async def create_product(db, data: Dict[str, Any], actor: str = "system") -> Product:
    """Create a product; `stock` is the opening quantity."""
    sku = (data.get("sku") or "").strip()
    name = (data.get("name") or "").strip()
    if not sku or not name:
        raise ValidationError("Product sku and name are required", code="INVALID_PRODUCT")

    price = data.get("price", 0)
    original_price = data.get("original_price")
    _check_prices(price, original_price)
    stock = data.get("stock", 0)
    if stock < 0:
        raise InvalidLineItem(f"Stock cannot be negative (got {stock})", details={"stock": stock})

    low_stock_threshold = data.get("low_stock_threshold")
    if low_stock_threshold is None:
        low_stock_threshold = settings.DEFAULT_LOW_STOCK_THRESHOLD

    existing = await db.scalar(select(Product.id).where(Product.sku == sku))
    if existing is not None:
        raise ValidationError(f"SKU {sku} already exists", code="DUPLICATE_SKU", details={"sku": sku})

    product = Product(
        sku=sku,
        name=name,
        description=data.get("description"),
        category=data.get("category"),
        price=price,
        original_price=original_price,
        stock=stock,
        low_stock_threshold=low_stock_threshold,
        is_active=data.get("is_active", True),
    )
    db.add(product)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Product %s (%s) created by %s", product.id, sku, actor)
    return product


async def update_product(db, product_id: int, changes: Dict[str, Any], actor: str = "system") -> Product:
    """Edit product details. Unknown keys are ignored."""
    product = await get_product(db, product_id)
    changes = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS}

    cleared = sorted(key for key in REQUIRED_FIELDS if key in changes and changes[key] is None)
    if cleared:
        raise ValidationError(
            f"{', '.join(cleared)} cannot be null",
            code="INVALID_PRODUCT",
            details={"fields": cleared},
        )
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise ValidationError("Product name cannot be empty", code="INVALID_PRODUCT", details={"fields": ["name"]})

    price = changes.get("price", product.price)
    original_price = changes.get("original_price", product.original_price)
    _check_prices(price, original_price)

    for key, value in changes.items():
        setattr(product, key, value)
    product.updated_at = datetime.now(timezone.utc)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Product %s updated by %s: %s", product_id, actor, sorted(changes))
    return product


async def deactivate_product(db, product_id: int, actor: str = "system") -> Product:
    product = await get_product(db, product_id)
    product.is_active = False
    product.updated_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("Product %s deactivated by %s", product_id, actor)
    return product


async def apply_promotion(db, product_id: int, percentage, actor: str = "system") -> Product:
    """
    Put a product on promotion, computed from its regular price.

    A percentage of 0 ends the promotion and restores the regular price.
    """
    product = await get_product(db, product_id)
    regular_price = product.original_price if product.original_price is not None else product.price
    new_price = promoted_price(regular_price, percentage)

    if new_price == regular_price:
        product.price = regular_price
        product.original_price = None
    else:
        product.price = new_price
        product.original_price = regular_price
    product.updated_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info(
        "Promotion %s%% on product %s by %s: %d -> %d",
        percentage, product_id, actor, regular_price, product.price,
    )
    return product


async def adjust_stock(db, product_id: int, delta: int, reason: str, actor: str = "system") -> Product:
    """Receive goods (positive delta) or write off units (negative delta)."""
    if not reason or not reason.strip():
        raise ValidationError("A reason is required for a stock adjustment", code="ADJUSTMENT_REASON_REQUIRED")

    ledger = InventoryLedger(db, actor)
    try:
        await ledger.adjust(product_id, delta, reason.strip())
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return await get_product(db, product_id)
