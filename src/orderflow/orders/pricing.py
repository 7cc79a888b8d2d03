"""
Order pricing.

Shipping is free when the subtotal reaches the threshold, otherwise a
flat fee applies. Tax is charged on the subtotal and rounded half-up to
whole currency units. Amounts sent to the gateway are in minor units.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from orderflow.exceptions import ValidationFailure
from orderflow.orders.models import LineItem, PriceBreakdown

_WHOLE_UNITS = Decimal("1")


@dataclass(frozen=True)
class PricingPolicy:
    """
    Attributes:
        free_shipping_threshold: Subtotal at or above which shipping is free
        shipping_fee: Flat fee charged below the threshold
        tax_rate: Tax rate on the subtotal
    """

    free_shipping_threshold: Decimal = Decimal("1000")
    shipping_fee: Decimal = Decimal("50")
    tax_rate: Decimal = Decimal("0.18")


DEFAULT_POLICY = PricingPolicy()


def shipping_for(subtotal: Decimal, policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    if subtotal >= policy.free_shipping_threshold:
        return Decimal("0")
    return policy.shipping_fee


def tax_for(subtotal: Decimal, policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    return (subtotal * policy.tax_rate).quantize(_WHOLE_UNITS, rounding=ROUND_HALF_UP)


def compute_pricing(
    items: Iterable[LineItem],
    discount: Decimal = Decimal("0"),
    policy: PricingPolicy = DEFAULT_POLICY,
) -> PriceBreakdown:
    """
    Price a set of line items.

    Raises:
        ValidationFailure: If the discount is negative or larger than the
            amount it is taken from
    """
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    shipping = shipping_for(subtotal, policy)
    tax = tax_for(subtotal, policy)

    if discount < 0:
        raise ValidationFailure(
            "Discount cannot be negative",
            [{"field": "discount", "message": "must be >= 0"}],
        )
    if discount > subtotal + shipping + tax:
        raise ValidationFailure(
            "Discount exceeds order amount",
            [{"field": "discount", "message": f"must be <= {subtotal + shipping + tax}"}],
        )

    return PriceBreakdown(
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        tax=tax,
        total=subtotal + shipping + tax - discount,
    )


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to the gateway's integer minor units (paise)."""
    return int((amount * 100).quantize(_WHOLE_UNITS, rounding=ROUND_HALF_UP))
