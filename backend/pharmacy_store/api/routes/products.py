"""
Product administration routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmacy_store.api.deps import require_admin
from pharmacy_store.core.database import get_db
from pharmacy_store.core.security import Actor
from pharmacy_store.schemas.product import (
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    PromotionRequest,
    StockAdjustment,
)
from pharmacy_store.services import catalog

router = APIRouter()


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    product = await catalog.create_product(db, product_data.model_dump(), actor=admin.name)
    return ProductResponse.from_product(product)


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    product_data: ProductUpdate,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Edit a product. Existing orders keep the prices they were placed at."""
    product = await catalog.update_product(
        db, product_id, product_data.model_dump(exclude_unset=True), actor=admin.name
    )
    return ProductResponse.from_product(product)


@router.post("/{product_id}/deactivate", response_model=ProductResponse)
async def deactivate_product(
    product_id: int,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    product = await catalog.deactivate_product(db, product_id, actor=admin.name)
    return ProductResponse.from_product(product)


@router.post("/{product_id}/promotion", response_model=ProductResponse)
async def apply_promotion(
    product_id: int,
    request: PromotionRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    product = await catalog.apply_promotion(db, product_id, request.percentage, actor=admin.name)
    return ProductResponse.from_product(product)


@router.post("/{product_id}/stock", response_model=ProductResponse)
async def adjust_stock(
    product_id: int,
    request: StockAdjustment,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Receive goods (positive delta) or write off units (negative delta)"""
    product = await catalog.adjust_stock(db, product_id, request.delta, request.reason, actor=admin.name)
    return ProductResponse.from_product(product)
