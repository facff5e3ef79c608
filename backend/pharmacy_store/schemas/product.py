"""
Product administration schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from pharmacy_store.core.database import MAX_DB_INTEGER
from pharmacy_store.models import Product
from pharmacy_store.services.inventory import stock_status
from pharmacy_store.services.pricing import savings_percentage


class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    price: int = Field(..., ge=0, le=MAX_DB_INTEGER)
    original_price: Optional[int] = Field(None, ge=0, le=MAX_DB_INTEGER)
    stock: int = Field(0, ge=0, le=MAX_DB_INTEGER)
    low_stock_threshold: Optional[int] = Field(None, ge=0, le=MAX_DB_INTEGER)  # settings default when omitted
    is_active: bool = True


class ProductUpdate(BaseModel):
    # An explicit null is passed through and rejected by the catalog service
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    price: Optional[int] = Field(None, ge=0, le=MAX_DB_INTEGER)
    original_price: Optional[int] = Field(None, ge=0, le=MAX_DB_INTEGER)
    low_stock_threshold: Optional[int] = Field(None, ge=0, le=MAX_DB_INTEGER)


class PromotionRequest(BaseModel):
    percentage: Decimal


class StockAdjustment(BaseModel):
    delta: int = Field(..., ge=-MAX_DB_INTEGER, le=MAX_DB_INTEGER)
    reason: str = Field(..., max_length=255)


class ProductResponse(BaseModel):
    id: int
    sku: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: int
    original_price: Optional[int] = None
    savings_percentage: int = 0
    on_promotion: bool = False
    stock: int
    stock_status: str
    low_stock_threshold: int
    sold_count: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            sku=product.sku,
            name=product.name,
            description=product.description,
            category=product.category,
            price=product.price,
            original_price=product.original_price,
            savings_percentage=savings_percentage(product.original_price, product.price),
            on_promotion=product.on_promotion,
            stock=product.stock,
            stock_status=stock_status(product),
            low_stock_threshold=product.low_stock_threshold,
            sold_count=product.sold_count,
            is_active=product.is_active,
            created_at=product.created_at,
            updated_at=product.updated_at,
        )
