"""
OrderService - order aggregate

Single source of truth for placing orders and moving them through their
lifecycle. Every public operation runs as one database transaction:

- create_order: validate, price, allocate a number, reserve stock and insert
  the order with its items and first history entry, then commit. Any failure
  rolls the whole transaction back, so reservations already made for the
  order are undone and no partial order is ever visible.
- transition_order / override_status: conditional UPDATE on the status read
  just before (WHERE id = :id AND status = :expected). A concurrent change
  makes the update miss; the order is re-read and the decision retried once.
"""
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from pharmacy_store.core.config import settings
from pharmacy_store.core.database import MAX_DB_INTEGER
from pharmacy_store.core.exceptions import (
    ConcurrentModification,
    InvalidCustomerInfo,
    InvalidLineItem,
    InvalidTransition,
    OrderCreationFailed,
    OrderNotFound,
    OrderNumberCollision,
    ProductInactive,
    ProductNotFound,
    ValidationError,
)
from pharmacy_store.models import (
    InventoryState,
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
)
from pharmacy_store.services.inventory import InventoryLedger
from pharmacy_store.services.order_lifecycle import plan_status_change, plan_transition
from pharmacy_store.services.order_numbers import OrderNumberAllocator
from pharmacy_store.services.pricing import (
    ShippingPolicy,
    line_subtotal,
    order_subtotal,
    order_total,
    shipping_fee as compute_shipping_fee,
)

logger = logging.getLogger(__name__)

REQUIRED_CUSTOMER_FIELDS = ("first_name", "last_name", "email", "phone", "address", "region")
OPTIONAL_CUSTOMER_FIELDS = ("city", "postal_code")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_CUSTOMER_NOTES_LENGTH = 1000
MAX_ADMIN_COMMENT_LENGTH = 500
MAX_TRACKING_NUMBER_LENGTH = 50


@dataclass(frozen=True)
class LinePlan:
    """Priced line, snapshotted from the catalog before any write."""
    product_id: int
    product_name: str
    product_sku: Optional[str]
    unit_price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return line_subtotal(self.unit_price, self.quantity)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_tracking_number(now: datetime) -> str:
    """Local delivery tracking number, e.g. SHF481516042."""
    return f"SHF{int(now.timestamp()) % 1_000_000:06d}{secrets.randbelow(1000):03d}"


def normalize_customer(customer: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    """Trim and validate the customer snapshot; raises InvalidCustomerInfo."""
    cleaned: Dict[str, Optional[str]] = {}
    for key in REQUIRED_CUSTOMER_FIELDS + OPTIONAL_CUSTOMER_FIELDS:
        value = customer.get(key)
        cleaned[key] = value.strip() if isinstance(value, str) and value.strip() else None

    missing = [key for key in REQUIRED_CUSTOMER_FIELDS if not cleaned[key]]
    if missing:
        raise InvalidCustomerInfo(
            f"Missing customer information: {', '.join(missing)}",
            missing_fields=missing,
        )

    cleaned["email"] = cleaned["email"].lower()
    if not EMAIL_RE.match(cleaned["email"]):
        raise InvalidCustomerInfo("Invalid email format", details={"email": cleaned["email"]})

    cleaned["phone"] = re.sub(r"\s+", "", cleaned["phone"])
    return cleaned


def merge_line_requests(items: Iterable[Mapping[str, Any]]) -> List[Tuple[int, int]]:
    """(product_id, quantity) pairs in request order, duplicate products summed."""
    max_quantity = settings.MAX_LINE_QUANTITY
    merged: Dict[int, int] = {}
    for item in items:
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not isinstance(product_id, int) or not isinstance(quantity, int) or isinstance(quantity, bool):
            raise InvalidLineItem(
                "Each line item needs an integer product_id and quantity",
                details={"item": dict(item)},
            )
        if not 1 <= product_id <= MAX_DB_INTEGER:
            raise ProductNotFound(product_id)
        if quantity < 1:
            raise InvalidLineItem(
                f"Quantity must be at least 1 (got {quantity})",
                details={"product_id": product_id, "quantity": quantity},
            )
        merged[product_id] = merged.get(product_id, 0) + quantity
        if merged[product_id] > max_quantity:
            raise InvalidLineItem(
                f"Quantity cannot exceed {max_quantity} per product",
                details={"product_id": product_id, "quantity": merged[product_id], "max_quantity": max_quantity},
            )

    if not merged:
        raise InvalidLineItem("An order must contain at least one item")
    return list(merged.items())


class OrderService:
    """Order aggregate operating on one database session."""

    def __init__(
        self,
        db: AsyncSession,
        allocator: Optional[OrderNumberAllocator] = None,
        shipping_policy: Optional[ShippingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.allocator = allocator or OrderNumberAllocator(
            async_sessionmaker(db.bind, class_=AsyncSession, expire_on_commit=False)
        )
        self.shipping_policy = shipping_policy or ShippingPolicy.from_settings(settings)
        self.clock = clock

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    async def create_order(
        self,
        customer: Mapping[str, Any],
        items: Iterable[Mapping[str, Any]],
        actor: str = "guest",
        shipping_fee: Optional[int] = None,
        discount: int = 0,
        payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Place an order.

        Args:
            customer: first_name, last_name, email, phone, address, region
                (required), city, postal_code (optional)
            items: [{"product_id": int, "quantity": int}, ...]
            actor: identity recorded in the history
            shipping_fee: explicit fee; computed from the region when None
            discount: order-level discount in minor units

        Raises:
            InvalidCustomerInfo, InvalidLineItem, ProductNotFound,
            ProductInactive, InsufficientStock, OrderCreationFailed
        """
        # Everything up to the first write is validation and pricing
        snapshot = normalize_customer(customer)
        requests = merge_line_requests(items)
        if notes is not None:
            notes = notes.strip() or None
            if notes and len(notes) > MAX_CUSTOMER_NOTES_LENGTH:
                raise InvalidCustomerInfo(
                    f"Notes cannot exceed {MAX_CUSTOMER_NOTES_LENGTH} characters",
                    details={"field": "notes"},
                )

        lines = await self._price_lines(requests)
        subtotal = order_subtotal((line.unit_price, line.quantity) for line in lines)
        if shipping_fee is None:
            shipping_fee = compute_shipping_fee(snapshot["region"], subtotal, self.shipping_policy)
        total = order_total(subtotal, shipping_fee, discount)

        for attempt in range(1, settings.ORDER_NUMBER_MAX_ATTEMPTS + 1):
            now = self.clock()
            try:
                order_number = await self.allocator.allocate(now)
                order_id = await self._persist_new_order(
                    order_number=order_number,
                    snapshot=snapshot,
                    lines=lines,
                    amounts=(subtotal, shipping_fee, discount, total),
                    payment_method=PaymentMethod(payment_method),
                    notes=notes,
                    actor=actor,
                    now=now,
                )
                await self.db.commit()
            except OrderNumberCollision as e:
                await self.db.rollback()
                logger.warning("Order number collision on attempt %d: %s", attempt, e.details)
                continue
            except Exception:
                await self.db.rollback()
                raise

            logger.info(
                "Order %s created by %s (%d lines, total=%d)",
                order_number, actor, len(lines), total,
            )
            return await self.get_order(order_id)

        logger.error(
            "Order creation failed after %d attempts for %s",
            settings.ORDER_NUMBER_MAX_ATTEMPTS, snapshot["email"],
        )
        raise OrderCreationFailed(
            "The order could not be created, please try again",
            details={"attempts": settings.ORDER_NUMBER_MAX_ATTEMPTS},
        )

    async def _price_lines(self, requests: List[Tuple[int, int]]) -> List[LinePlan]:
        product_ids = [product_id for product_id, _ in requests]
        result = await self.db.execute(
            select(Product)
            .where(Product.id.in_(product_ids))
            .execution_options(populate_existing=True)
        )
        products = {product.id: product for product in result.scalars().all()}

        lines = []
        for product_id, quantity in requests:
            product = products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            if not product.is_active:
                raise ProductInactive(product_id, product.name)
            lines.append(LinePlan(
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                unit_price=product.price,
                quantity=quantity,
            ))
        return lines

    async def _persist_new_order(
        self,
        order_number: str,
        snapshot: Dict[str, Optional[str]],
        lines: List[LinePlan],
        amounts: Tuple[int, int, int, int],
        payment_method: PaymentMethod,
        notes: Optional[str],
        actor: str,
        now: datetime,
    ) -> int:
        # Product rows are always locked in ascending id order
        ledger = InventoryLedger(self.db, actor)
        for line in sorted(lines, key=lambda line: line.product_id):
            await ledger.reserve(line.product_id, line.quantity, reference=order_number)

        subtotal, shipping, discount, total = amounts
        order = Order(
            order_number=order_number,
            customer_first_name=snapshot["first_name"],
            customer_last_name=snapshot["last_name"],
            customer_email=snapshot["email"],
            customer_phone=snapshot["phone"],
            shipping_address=snapshot["address"],
            city=snapshot["city"],
            region=snapshot["region"],
            postal_code=snapshot["postal_code"],
            subtotal=subtotal,
            shipping_fee=shipping,
            discount=discount,
            total=total,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=payment_method,
            inventory_state=InventoryState.RESERVED,
            customer_notes=notes,
            created_by=actor,
            created_at=now,
            updated_at=now,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                product_sku=line.product_sku,
                unit_price=line.unit_price,
                quantity=line.quantity,
            )
            for line in lines
        ]
        order.events = [
            OrderEvent(
                action="created",
                to_status=OrderStatus.PENDING.value,
                actor=actor,
                note="order created",
                created_at=now,
            )
        ]
        self.db.add(order)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise OrderNumberCollision(
                f"Order number {order_number} already exists",
                details={"order_number": order_number},
            ) from e
        return order.id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def transition_order(
        self,
        order_id: int,
        new_status,
        actor: str,
        note: Optional[str] = None,
    ) -> Order:
        """
        Move an order along the lifecycle table.

        Raises:
            OrderNotFound, InvalidTransition (order untouched),
            ConcurrentModification, InsufficientStock
        """
        return await self._change_status(order_id, new_status, actor, note, override=False)

    async def override_status(
        self,
        order_id: int,
        new_status,
        actor: str,
        reason: str,
    ) -> Order:
        """
        Administrative correction that bypasses the transition table.

        Always recorded as a status_override history entry and logged.
        Inventory follows the new status: cancelling releases reserved
        stock, delivering finalizes it, reopening a cancelled order
        reserves its items again (which can fail with InsufficientStock).
        """
        if not reason or not reason.strip():
            raise ValidationError(
                "A reason is required for a status override",
                code="OVERRIDE_REASON_REQUIRED",
            )
        return await self._change_status(order_id, new_status, actor, reason.strip(), override=True)

    async def _change_status(
        self,
        order_id: int,
        new_status,
        actor: str,
        note: Optional[str],
        override: bool,
    ) -> Order:
        for attempt in (1, 2):
            order = await self._load_order(order_id)
            target = self._coerce_status(order, new_status)
            from_status = order.status
            now = self.clock()

            if override:
                if target == from_status:
                    raise InvalidTransition(from_status.value, target.value, order_number=order.order_number)
                values = plan_status_change(order, target, now)
            else:
                values = plan_transition(order, target, now)

            next_inventory = self._next_inventory_state(order.inventory_state, target)
            if next_inventory != order.inventory_state:
                values["inventory_state"] = next_inventory
            if target == OrderStatus.SHIPPED and not order.tracking_number:
                values["tracking_number"] = generate_tracking_number(now)

            result = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break

            await self.db.rollback()
            logger.info(
                "Order %s changed concurrently while moving to %s (attempt %d)",
                order_id, target.value, attempt,
            )
        else:
            raise ConcurrentModification(
                f"Order {order_id} was modified concurrently",
                details={"order_id": order_id, "to_status": target.value},
            )

        try:
            await self._apply_inventory(order, order.inventory_state, next_inventory, actor)
            self.db.add(OrderEvent(
                order_id=order.id,
                action="status_override" if override else "status_changed",
                from_status=from_status.value,
                to_status=target.value,
                actor=actor,
                note=note,
                created_at=now,
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if override:
            logger.warning(
                "Order %s status OVERRIDDEN %s -> %s by %s: %s",
                order.order_number, from_status.value, target.value, actor, note,
            )
        else:
            logger.info(
                "Order %s moved %s -> %s by %s",
                order.order_number, from_status.value, target.value, actor,
            )
        return await self.get_order(order.id)

    @staticmethod
    def _coerce_status(order: Order, new_status) -> OrderStatus:
        try:
            return OrderStatus(new_status)
        except ValueError:
            raise InvalidTransition(order.status.value, str(new_status), order_number=order.order_number)

    @staticmethod
    def _next_inventory_state(current: InventoryState, target: OrderStatus) -> InventoryState:
        if target == OrderStatus.CANCELLED:
            # Finalized stock has left the shop; returns are not restocked here
            return InventoryState.RELEASED if current == InventoryState.RESERVED else current
        if target == OrderStatus.DELIVERED:
            return InventoryState.FINALIZED
        if current == InventoryState.RELEASED:
            return InventoryState.RESERVED
        return current

    async def _apply_inventory(
        self,
        order: Order,
        current: InventoryState,
        target: InventoryState,
        actor: str,
    ) -> None:
        if current == target:
            return
        ledger = InventoryLedger(self.db, actor)
        for item in sorted(order.items, key=lambda item: item.product_id):
            if current == InventoryState.RELEASED:
                await ledger.reserve(item.product_id, item.quantity, reference=order.order_number)
            if target == InventoryState.RELEASED:
                await ledger.release(item.product_id, item.quantity, reference=order.order_number)
            elif target == InventoryState.FINALIZED:
                await ledger.finalize(item.product_id, item.quantity, reference=order.order_number)

    # ------------------------------------------------------------------ #
    # Administrative edits
    # ------------------------------------------------------------------ #

    async def add_admin_comment(self, order_id: int, comment: str, actor: str) -> Order:
        """Append a timestamped line to the order's admin comments."""
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("Comment cannot be empty", code="INVALID_COMMENT")
        if len(comment) > MAX_ADMIN_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment cannot exceed {MAX_ADMIN_COMMENT_LENGTH} characters",
                code="INVALID_COMMENT",
            )

        now = self.clock()
        line = f"[{now:%Y-%m-%d %H:%M}] {actor}: {comment}"
        await self._update_and_log(
            order_id,
            {
                "admin_comments": case(
                    (Order.admin_comments.is_(None), line),
                    else_=Order.admin_comments + "\n" + line,
                ),
                "updated_at": now,
            },
            OrderEvent(action="comment", actor=actor, note=comment, created_at=now),
        )
        return await self.get_order(order_id)

    async def set_tracking_number(
        self,
        order_id: int,
        tracking_number: str,
        actor: str,
        carrier: Optional[str] = None,
    ) -> Order:
        tracking_number = (tracking_number or "").strip()
        if not tracking_number or len(tracking_number) > MAX_TRACKING_NUMBER_LENGTH:
            raise ValidationError(
                f"Tracking number must be 1-{MAX_TRACKING_NUMBER_LENGTH} characters",
                code="INVALID_TRACKING_NUMBER",
            )

        now = self.clock()
        values: Dict[str, Any] = {"tracking_number": tracking_number, "updated_at": now}
        if carrier and carrier.strip():
            values["carrier"] = carrier.strip()
        await self._update_and_log(
            order_id,
            values,
            OrderEvent(action="tracking_updated", actor=actor, note=tracking_number, created_at=now),
        )
        return await self.get_order(order_id)

    async def update_payment_status(self, order_id: int, payment_status, actor: str) -> Order:
        try:
            payment_status = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(
                f"Unknown payment status '{payment_status}'",
                code="INVALID_PAYMENT_STATUS",
            )

        order = await self._load_order(order_id)
        previous = order.payment_status
        now = self.clock()
        await self._update_and_log(
            order_id,
            {"payment_status": payment_status, "updated_at": now},
            OrderEvent(
                action="payment_updated",
                actor=actor,
                note=f"{previous.value} -> {payment_status.value}",
                created_at=now,
            ),
        )
        return await self.get_order(order_id)

    async def _update_and_log(self, order_id: int, values: Dict[str, Any], event: OrderEvent) -> None:
        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise OrderNotFound(order_id)
            event.order_id = order_id
            self.db.add(event)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _order_query(self):
        return (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .execution_options(populate_existing=True)
        )

    async def _load_order(self, order_id: int) -> Order:
        order = await self.db.scalar(self._order_query().where(Order.id == order_id))
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def get_order(self, order_id: int) -> Order:
        return await self._load_order(order_id)

    async def get_order_by_number(self, order_number: str) -> Order:
        order = await self.db.scalar(self._order_query().where(Order.order_number == order_number))
        if order is None:
            raise OrderNotFound(order_number)
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        email: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> Tuple[List[Order], int]:
        """Newest first, with the unpaginated count."""
        filters = []
        if status is not None:
            filters.append(Order.status == OrderStatus(status))
        if email:
            filters.append(Order.customer_email == email.strip().lower())

        total = await self.db.scalar(select(func.count(Order.id)).where(*filters))
        result = await self.db.execute(
            self._order_query()
            .where(*filters)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0
