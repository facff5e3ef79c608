"""
Pricing arithmetic

Pure functions over integer minor currency units. Invalid inputs raise
instead of falling back to a default.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Tuple

from pharmacy_store.core.exceptions import InvalidLineItem, InvalidPromotion, ShippingUnavailable


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole minor unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_subtotal(unit_price: int, quantity: int) -> int:
    """unit price x quantity, rejecting non-positive quantities and negative prices."""
    if quantity < 1:
        raise InvalidLineItem(
            f"Quantity must be at least 1 (got {quantity})",
            details={"quantity": quantity},
        )
    if unit_price < 0:
        raise InvalidLineItem(
            f"Unit price cannot be negative (got {unit_price})",
            details={"unit_price": unit_price},
        )
    return unit_price * quantity


def order_subtotal(lines: Iterable[Tuple[int, int]]) -> int:
    """Sum of line subtotals for (unit_price, quantity) pairs."""
    return sum(line_subtotal(unit_price, quantity) for unit_price, quantity in lines)


def order_total(subtotal: int, shipping: int = 0, discount: int = 0) -> int:
    """subtotal + shipping - discount, clamped at zero."""
    for name, amount in (("subtotal", subtotal), ("shipping", shipping), ("discount", discount)):
        if amount < 0:
            raise InvalidLineItem(
                f"{name.capitalize()} cannot be negative (got {amount})",
                details={name: amount},
            )
    return max(subtotal + shipping - discount, 0)


def promoted_price(original_price: int, percentage) -> int:
    """
    Price after a percentage promotion.

    original - round_half_up(original * pct / 100); e.g. 3000 at 17% -> 2490.
    """
    pct = Decimal(str(percentage))
    if pct < 0 or pct > 100:
        raise InvalidPromotion(
            f"Promotion percentage must be between 0 and 100 (got {percentage})",
            details={"percentage": str(percentage)},
        )
    if original_price < 0:
        raise InvalidLineItem(
            f"Price cannot be negative (got {original_price})",
            details={"original_price": original_price},
        )
    reduction = round_half_up(Decimal(original_price) * pct / Decimal(100))
    return original_price - reduction


def savings_percentage(original_price: Optional[int], current_price: int) -> int:
    """Whole-percent saving shown on promoted products, 0 when not discounted."""
    if not original_price or original_price <= current_price:
        return 0
    return round_half_up(
        Decimal(original_price - current_price) * Decimal(100) / Decimal(original_price)
    )


@dataclass(frozen=True)
class ShippingPolicy:
    """Delivery pricing: a standard fee, per-region overrides, free above a threshold."""
    standard_fee: int
    free_threshold: int = 0  # 0 disables free shipping
    region_fees: Dict[str, int] = field(default_factory=dict)
    available_regions: Tuple[str, ...] = ()  # empty = every region served

    @classmethod
    def from_settings(cls, settings) -> "ShippingPolicy":
        return cls(
            standard_fee=settings.SHIPPING_STANDARD_FEE,
            free_threshold=settings.FREE_SHIPPING_THRESHOLD,
            region_fees={normalize_region(k): v for k, v in settings.SHIPPING_REGION_FEES.items()},
            available_regions=tuple(normalize_region(r) for r in settings.SHIPPING_AVAILABLE_REGIONS),
        )


def normalize_region(region: str) -> str:
    return " ".join(region.split()).casefold()


def shipping_fee(region: str, subtotal: int, policy: ShippingPolicy) -> int:
    """Delivery fee for an order of `subtotal` shipped to `region`."""
    key = normalize_region(region)
    if policy.available_regions and key not in policy.available_regions:
        raise ShippingUnavailable(region)
    if policy.free_threshold and subtotal >= policy.free_threshold:
        return 0
    return policy.region_fees.get(key, policy.standard_fee)
