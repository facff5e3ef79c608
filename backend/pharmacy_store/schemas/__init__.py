from pharmacy_store.schemas.order import (
    CustomerInfo, LineItemRequest, OrderCreate, StatusTransitionRequest,
    StatusOverrideRequest, AdminCommentRequest, TrackingUpdate, PaymentStatusUpdate,
    CancelRequest, OrderItemResponse, OrderEventResponse, OrderSummaryResponse,
    OrderResponse, AdminOrderResponse, OrderList, CustomerOrderList,
)
from pharmacy_store.schemas.product import (
    ProductCreate, ProductUpdate, PromotionRequest, StockAdjustment, ProductResponse,
)
