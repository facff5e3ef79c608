"""
Tests for product administration.
"""
import pytest

from pharmacy_store.core.config import settings
from pharmacy_store.core.exceptions import ValidationError
from pharmacy_store.services import catalog


class TestCreateProduct:

    @pytest.mark.asyncio
    async def test_low_stock_threshold_defaults_to_setting(self, db, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_LOW_STOCK_THRESHOLD", 4)

        product = await catalog.create_product(db, {"sku": "SMECTA-30", "name": "Smecta", "price": 1000})

        assert product.low_stock_threshold == 4

    @pytest.mark.asyncio
    async def test_explicit_threshold_is_kept(self, db):
        product = await catalog.create_product(
            db, {"sku": "SMECTA-30", "name": "Smecta", "price": 1000, "low_stock_threshold": 0}
        )

        assert product.low_stock_threshold == 0


class TestUpdateProduct:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["name", "price", "low_stock_threshold"])
    async def test_required_field_cannot_be_cleared(self, db, make_product, fetch_product, field):
        product = await make_product(price=2500)

        with pytest.raises(ValidationError) as exc_info:
            await catalog.update_product(db, product.id, {field: None})

        assert exc_info.value.code == "INVALID_PRODUCT"
        assert exc_info.value.details["fields"] == [field]
        stored = await fetch_product(product.id)
        assert (stored.name, stored.price) == ("Doliprane 1000mg", 2500)

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, db, make_product):
        product = await make_product()

        with pytest.raises(ValidationError):
            await catalog.update_product(db, product.id, {"name": "   "})

    @pytest.mark.asyncio
    async def test_optional_fields_can_be_cleared(self, db, make_product):
        product = await make_product(category="Antalgiques")

        updated = await catalog.update_product(db, product.id, {"category": None, "name": " Doliprane 500mg "})

        assert updated.category is None
        assert updated.name == "Doliprane 500mg"


class TestPromotion:

    @pytest.mark.asyncio
    async def test_promotion_flag_follows_price(self, db, make_product):
        product = await make_product(price=3000)

        promoted = await catalog.apply_promotion(db, product.id, 10)
        assert promoted.on_promotion

        restored = await catalog.apply_promotion(db, product.id, 0)
        assert not restored.on_promotion
        assert restored.price == 3000
