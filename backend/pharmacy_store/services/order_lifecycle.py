"""
Order lifecycle state machine

    pending -> confirmed -> prepared -> shipped -> delivered
       |           |
       +-----------+--> cancelled

Once preparation has begun an order can no longer be cancelled; returns are
handled outside this machine. delivered and cancelled are terminal.
Pure logic, no I/O: the order service applies the planned changes with a
conditional update.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from pharmacy_store.core.exceptions import InvalidTransition
from pharmacy_store.models import Order, OrderStatus

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARED, OrderStatus.CANCELLED}),
    OrderStatus.PREPARED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Milestone column set the first time an order reaches each status
MILESTONE_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARED: "prepared_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


def check_transition(
    from_status: OrderStatus,
    to_status: OrderStatus,
    order_number: Optional[str] = None,
) -> None:
    """Raise InvalidTransition unless the table allows from_status -> to_status."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(from_status.value, to_status.value, order_number=order_number)


def plan_status_change(order: Order, to_status: OrderStatus, now: datetime) -> Dict[str, object]:
    """
    Column values for moving `order` to `to_status`.

    The milestone timestamp is only included if it was never set, so
    re-entering a status (administrative override) keeps the first time.
    """
    values: Dict[str, object] = {"status": to_status, "updated_at": now}
    milestone = MILESTONE_FIELDS.get(to_status)
    if milestone and getattr(order, milestone) is None:
        values[milestone] = now
    return values


def plan_transition(order: Order, to_status: OrderStatus, now: datetime) -> Dict[str, object]:
    """check_transition + plan_status_change."""
    check_transition(order.status, to_status, order.order_number)
    return plan_status_change(order, to_status, now)
