"""
Order routes (storefront)

Anyone holding an order number can follow it, but customer details are only
shown to the customer it was placed for and to admins.
"""
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmacy_store.api.deps import get_actor, require_customer
from pharmacy_store.core.database import get_db
from pharmacy_store.core.security import Actor
from pharmacy_store.models import OrderStatus
from pharmacy_store.schemas.order import (
    CancelRequest,
    CustomerOrderList,
    OrderCreate,
    OrderResponse,
    OrderSummaryResponse,
)
from pharmacy_store.services.order_service import OrderService

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Place an order. Prices, shipping and totals are computed here, never taken from the client."""
    return await OrderService(db).create_order(
        customer=order_data.customer.model_dump(),
        items=[item.model_dump() for item in order_data.items],
        actor=actor.name,
        payment_method=order_data.payment_method,
        notes=order_data.notes,
    )


@router.get("/mine", response_model=CustomerOrderList)
async def list_my_orders(
    limit: int = Query(25, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db)
):
    """Orders placed with the signed-in customer's email, newest first"""
    orders, total = await OrderService(db).list_orders(email=actor.name, limit=limit, offset=offset)
    return CustomerOrderList(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_number}", response_model=Union[OrderResponse, OrderSummaryResponse])
async def get_order(
    order_number: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Look an order up by its number"""
    order = await OrderService(db).get_order_by_number(order_number)
    if actor.is_admin or actor.owns(order.customer_email):
        return OrderResponse.model_validate(order)
    return OrderSummaryResponse.model_validate(order)


@router.post("/{order_number}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_number: str,
    request: Optional[CancelRequest] = None,
    actor: Actor = Depends(require_customer),
    db: AsyncSession = Depends(get_db)
):
    """
    Cancel one of your own orders.

    Only pending and confirmed orders can be cancelled; reserved stock goes
    back on the shelf.
    """
    service = OrderService(db)
    order = await service.get_order_by_number(order_number)
    if not (actor.is_admin or actor.owns(order.customer_email)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only cancel your own orders",
        )

    reason = request.reason if request and request.reason else "cancelled by customer"
    return await service.transition_order(order.id, OrderStatus.CANCELLED, actor.name, note=reason)
