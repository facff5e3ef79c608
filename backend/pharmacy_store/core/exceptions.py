"""
Pharmacy Store Exception Hierarchy

Structured exception classes for the order and inventory core. Every error
carries a stable machine-readable code, a human-readable message and a
details dict (order, product, attempted status pair...) so the HTTP layer can
build a precise, locale-independent response.

Exception Hierarchy:
    StoreError
    ├── ValidationError
    │   ├── InvalidCustomerInfo
    │   │   └── ShippingUnavailable
    │   ├── InvalidLineItem
    │   └── InvalidPromotion
    ├── CatalogError
    │   ├── ProductNotFound
    │   └── ProductInactive
    ├── InventoryError
    │   └── InsufficientStock
    └── OrderError
        ├── OrderNotFound
        ├── InvalidTransition
        ├── ConcurrentModification
        ├── OrderNumberCollision
        └── OrderCreationFailed
"""
from typing import Optional, Dict, Any


class StoreError(Exception):
    """
    Base exception for all pharmacy store domain errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for the caller
        http_status: Status code the HTTP layer answers with
    """

    default_code: str = "STORE_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# VALIDATION ERRORS (raised before any mutation)
# =============================================================================

class ValidationError(StoreError):
    default_code = "VALIDATION_ERROR"
    http_status = 400


class InvalidCustomerInfo(ValidationError):
    """Customer contact or delivery data incomplete."""
    default_code = "INVALID_CUSTOMER_INFO"

    def __init__(self, message: str, missing_fields: Optional[list] = None, **kwargs):
        details = kwargs.pop("details", {})
        if missing_fields is not None:
            details["missing_fields"] = missing_fields
        super().__init__(message, details=details, **kwargs)


class ShippingUnavailable(InvalidCustomerInfo):
    """Delivery is not offered in the requested region."""
    default_code = "SHIPPING_UNAVAILABLE"

    def __init__(self, region: str, **kwargs):
        details = kwargs.pop("details", {})
        details["region"] = region
        super().__init__(f"Delivery is not available in region '{region}'", details=details, **kwargs)


class InvalidLineItem(ValidationError):
    """Bad quantity, price or amount."""
    default_code = "INVALID_LINE_ITEM"


class InvalidPromotion(ValidationError):
    """Promotion percentage outside [0, 100]."""
    default_code = "INVALID_PROMOTION"


# =============================================================================
# CATALOG ERRORS
# =============================================================================

class CatalogError(StoreError):
    default_code = "CATALOG_ERROR"
    http_status = 400


class ProductNotFound(CatalogError):
    default_code = "PRODUCT_NOT_FOUND"
    http_status = 404

    def __init__(self, product_id: int, **kwargs):
        super().__init__(
            f"Product {product_id} does not exist",
            details={"product_id": product_id},
            **kwargs,
        )


class ProductInactive(CatalogError):
    default_code = "PRODUCT_INACTIVE"

    def __init__(self, product_id: int, product_name: Optional[str] = None, **kwargs):
        super().__init__(
            f"Product {product_name or product_id} is no longer available",
            details={"product_id": product_id, "product_name": product_name},
            **kwargs,
        )


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(StoreError):
    default_code = "INVENTORY_ERROR"
    http_status = 409


class InsufficientStock(InventoryError):
    """Requested quantity exceeds available stock."""
    default_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: int,
        requested_qty: int,
        available_qty: Optional[int] = None,
        product_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            f"Insufficient stock for {product_name or f'product {product_id}'}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_qty": requested_qty,
                "available_qty": available_qty,
            },
            **kwargs,
        )


# =============================================================================
# ORDER ERRORS
# =============================================================================

class OrderError(StoreError):
    default_code = "ORDER_ERROR"
    http_status = 409


class OrderNotFound(OrderError):
    default_code = "ORDER_NOT_FOUND"
    http_status = 404

    def __init__(self, order_ref, **kwargs):
        super().__init__(
            f"Order {order_ref} not found",
            details={"order": order_ref},
            **kwargs,
        )


class InvalidTransition(OrderError):
    """Status change not allowed by the lifecycle table."""
    default_code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, order_number: Optional[str] = None, **kwargs):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move order from '{from_status}' to '{to_status}'",
            details={
                "order_number": order_number,
                "from_status": from_status,
                "to_status": to_status,
            },
            **kwargs,
        )


class ConcurrentModification(OrderError):
    """Stored order changed between read and conditional update."""
    default_code = "CONCURRENT_MODIFICATION"


class OrderNumberCollision(OrderError):
    """Allocated order number already taken. Retried internally, never surfaced."""
    default_code = "ORDER_NUMBER_COLLISION"
    http_status = 500


class OrderCreationFailed(OrderError):
    """Order could not be persisted after bounded retries."""
    default_code = "ORDER_CREATION_FAILED"
    http_status = 503


# =============================================================================
# EXCEPTION CATALOG
# =============================================================================

EXCEPTION_CATALOG = {
    cls.default_code: {"class": cls, "status": cls.http_status}
    for cls in (
        InvalidCustomerInfo,
        ShippingUnavailable,
        InvalidLineItem,
        InvalidPromotion,
        ProductNotFound,
        ProductInactive,
        InsufficientStock,
        InvalidTransition,
        OrderNotFound,
        ConcurrentModification,
        OrderNumberCollision,
        OrderCreationFailed,
    )
}
