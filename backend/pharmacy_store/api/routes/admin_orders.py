"""
Order back-office routes

Every status change goes through the order service: either the lifecycle
transition table or an explicit, recorded override.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pharmacy_store.api.deps import require_admin
from pharmacy_store.core.database import get_db
from pharmacy_store.core.security import Actor
from pharmacy_store.models import OrderStatus
from pharmacy_store.schemas.order import (
    AdminCommentRequest,
    AdminOrderResponse,
    OrderList,
    PaymentStatusUpdate,
    StatusOverrideRequest,
    StatusTransitionRequest,
    TrackingUpdate,
)
from pharmacy_store.services.order_service import OrderService

router = APIRouter()


@router.get("", response_model=OrderList)
async def list_orders(
    status: Optional[OrderStatus] = None,
    email: Optional[str] = None,
    limit: int = Query(25, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    orders, total = await OrderService(db).list_orders(status=status, email=email, limit=limit, offset=offset)
    return OrderList(
        orders=[AdminOrderResponse.model_validate(order) for order in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_order(
    order_id: int,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService(db).get_order(order_id)


@router.patch("/{order_id}/status", response_model=AdminOrderResponse)
async def transition_order(
    order_id: int,
    request: StatusTransitionRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Move an order along its lifecycle (409 if the move is not allowed)"""
    return await OrderService(db).transition_order(order_id, request.status, admin.name, note=request.note)


@router.post("/{order_id}/override", response_model=AdminOrderResponse)
async def override_status(
    order_id: int,
    request: StatusOverrideRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Force a status, bypassing the lifecycle. Recorded in the order history."""
    return await OrderService(db).override_status(order_id, request.status, admin.name, request.reason)


@router.post("/{order_id}/comments", response_model=AdminOrderResponse)
async def add_comment(
    order_id: int,
    request: AdminCommentRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService(db).add_admin_comment(order_id, request.comment, admin.name)


@router.patch("/{order_id}/tracking", response_model=AdminOrderResponse)
async def set_tracking(
    order_id: int,
    request: TrackingUpdate,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService(db).set_tracking_number(
        order_id, request.tracking_number, admin.name, carrier=request.carrier
    )


@router.patch("/{order_id}/payment", response_model=AdminOrderResponse)
async def update_payment(
    order_id: int,
    request: PaymentStatusUpdate,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService(db).update_payment_status(order_id, request.payment_status, admin.name)
