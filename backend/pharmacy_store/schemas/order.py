"""
Order request/response schemas

Amounts are integer minor currency units. Order creation accepts only the
customer, the lines and the payment method: prices, shipping and totals are
always computed server-side.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from pharmacy_store.models import InventoryState, OrderStatus, PaymentMethod, PaymentStatus


# ============================================================================
# REQUESTS
# ============================================================================
class CustomerInfo(BaseModel):
    # Presence is checked by the order service so missing fields answer 400
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    region: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)


class LineItemRequest(BaseModel):
    product_id: int
    quantity: int


class OrderCreate(BaseModel):
    customer: CustomerInfo
    items: List[LineItemRequest]
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    notes: Optional[str] = None


class StatusTransitionRequest(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=500)


class StatusOverrideRequest(BaseModel):
    status: OrderStatus
    reason: str = Field(..., min_length=1, max_length=500)


class AdminCommentRequest(BaseModel):
    comment: str


class TrackingUpdate(BaseModel):
    tracking_number: str
    carrier: Optional[str] = Field(None, max_length=100)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# RESPONSES
# ============================================================================
class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    unit_price: int
    quantity: int
    line_total: int

    class Config:
        from_attributes = True


class OrderEventResponse(BaseModel):
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor: str
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderSummaryResponse(BaseModel):
    """What anyone holding an order number may see: no customer details."""
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    subtotal: int
    shipping_fee: int
    discount: int
    total: int
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderResponse(OrderSummaryResponse):
    id: int
    customer_name: str
    customer_first_name: str
    customer_last_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    city: Optional[str] = None
    region: str
    postal_code: Optional[str] = None
    customer_notes: Optional[str] = None
    events: List[OrderEventResponse]


class AdminOrderResponse(OrderResponse):
    """Back-office view, with internal notes and stock bookkeeping."""
    inventory_state: InventoryState
    admin_comments: Optional[str] = None
    created_by: Optional[str] = None


class OrderList(BaseModel):
    orders: List[AdminOrderResponse]
    total: int
    limit: int
    offset: int


class CustomerOrderList(BaseModel):
    orders: List[OrderResponse]
    total: int
    limit: int
    offset: int
