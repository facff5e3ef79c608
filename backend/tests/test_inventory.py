"""
Tests for the inventory ledger.
"""
import asyncio

import pytest
from sqlalchemy import select

from pharmacy_store.core.exceptions import InsufficientStock, InvalidLineItem, ProductNotFound
from pharmacy_store.models import Product, StockMovement
from pharmacy_store.services.inventory import InventoryLedger, stock_status


class TestStockStatus:
    """Storefront stock badge."""

    @pytest.mark.parametrize(
        "stock,expected",
        [(0, "out_of_stock"), (3, "low"), (5, "medium"), (6, "medium"), (7, "good")],
    )
    def test_thresholds(self, stock, expected):
        product = Product(stock=stock, low_stock_threshold=3)
        assert stock_status(product) == expected


class TestReserve:
    """Conditional decrement of stock."""

    @pytest.mark.asyncio
    async def test_reserve_decrements_and_records(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=5)

        async with session_factory() as db:
            ledger = InventoryLedger(db, actor="tester")
            reserved = await ledger.reserve(product.id, 2, reference="CMD-20261018-00001")
            await db.commit()

        assert reserved.stock == 3
        assert (await fetch_product(product.id)).stock == 3

        async with session_factory() as db:
            movement = (await db.execute(select(StockMovement))).scalar_one()
        assert movement.movement_type == "reserved"
        assert movement.quantity == -2
        assert (movement.previous_stock, movement.new_stock) == (5, 3)
        assert movement.reference == "CMD-20261018-00001"
        assert movement.actor == "tester"

    @pytest.mark.asyncio
    async def test_reserve_exact_stock(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=2)

        async with session_factory() as db:
            await InventoryLedger(db).reserve(product.id, 2)
            await db.commit()

        assert (await fetch_product(product.id)).stock == 0

    @pytest.mark.asyncio
    async def test_insufficient_stock_leaves_stock_untouched(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=1, name="Smecta")

        async with session_factory() as db:
            with pytest.raises(InsufficientStock) as exc_info:
                await InventoryLedger(db).reserve(product.id, 2)
            await db.rollback()

        assert exc_info.value.details["available_qty"] == 1
        assert exc_info.value.details["requested_qty"] == 2
        assert exc_info.value.details["product_name"] == "Smecta"
        assert (await fetch_product(product.id)).stock == 1

    @pytest.mark.asyncio
    async def test_unknown_product(self, db):
        with pytest.raises(ProductNotFound):
            await InventoryLedger(db).reserve(999, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantity(self, db, make_product, quantity):
        product = await make_product()
        with pytest.raises(InvalidLineItem):
            await InventoryLedger(db).reserve(product.id, quantity)

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_oversell(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=5)

        async def reserve_one():
            async with session_factory() as db:
                try:
                    await InventoryLedger(db).reserve(product.id, 1)
                    await db.commit()
                    return True
                except InsufficientStock:
                    await db.rollback()
                    return False

        results = await asyncio.gather(*(reserve_one() for _ in range(12)))

        assert results.count(True) == 5
        assert (await fetch_product(product.id)).stock == 0


class TestReleaseFinalizeAdjust:

    @pytest.mark.asyncio
    async def test_release_returns_stock(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=3)

        async with session_factory() as db:
            await InventoryLedger(db).release(product.id, 2, reference="CMD-20261018-00001")
            await db.commit()

        assert (await fetch_product(product.id)).stock == 5

    @pytest.mark.asyncio
    async def test_release_unknown_product(self, db):
        with pytest.raises(ProductNotFound):
            await InventoryLedger(db).release(999, 1)

    @pytest.mark.asyncio
    async def test_finalize_counts_sale_without_touching_stock(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=3)

        async with session_factory() as db:
            await InventoryLedger(db).finalize(product.id, 2)
            await db.commit()

        stored = await fetch_product(product.id)
        assert stored.stock == 3
        assert stored.sold_count == 2

    @pytest.mark.asyncio
    async def test_adjust_up_and_down(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=3)

        async with session_factory() as db:
            ledger = InventoryLedger(db, actor="admin@pharmacie.dz")
            await ledger.adjust(product.id, 10, "delivery from supplier")
            await ledger.adjust(product.id, -4, "damaged boxes")
            await db.commit()

        assert (await fetch_product(product.id)).stock == 9

    @pytest.mark.asyncio
    async def test_adjust_never_goes_negative(self, session_factory, make_product, fetch_product):
        product = await make_product(stock=3)

        async with session_factory() as db:
            with pytest.raises(InsufficientStock):
                await InventoryLedger(db).adjust(product.id, -4, "inventory count")
            await db.rollback()

        assert (await fetch_product(product.id)).stock == 3

    @pytest.mark.asyncio
    async def test_zero_adjustment_rejected(self, db, make_product):
        product = await make_product()
        with pytest.raises(InvalidLineItem):
            await InventoryLedger(db).adjust(product.id, 0, "nothing")
