"""Unit tests for order pricing, minor units and order numbers."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from orderflow.exceptions import ValidationFailure
from orderflow.orders.models import PriceBreakdown
from orderflow.orders.numbering import (
    generate_order_number,
    is_order_number,
    unique_order_number,
)
from orderflow.orders.pricing import (
    PricingPolicy,
    compute_pricing,
    shipping_for,
    tax_for,
    to_minor_units,
)
from tests.fixtures import make_line


class TestShipping:
    def test_below_threshold_pays_flat_fee(self) -> None:
        assert shipping_for(Decimal("999")) == Decimal("50")

    def test_threshold_itself_ships_free(self) -> None:
        assert shipping_for(Decimal("1000")) == Decimal("0")

    def test_custom_policy(self) -> None:
        policy = PricingPolicy(free_shipping_threshold=Decimal("500"), shipping_fee=Decimal("40"))
        assert shipping_for(Decimal("499"), policy) == Decimal("40")
        assert shipping_for(Decimal("500"), policy) == Decimal("0")


class TestTax:
    @pytest.mark.parametrize(
        "subtotal,expected",
        [
            ("1000", "180"),
            ("25", "5"),  # 4.50 rounds half up
            ("75", "14"),  # 13.50 rounds half up
            ("10", "2"),  # 1.80
            ("2", "0"),  # 0.36
        ],
    )
    def test_tax_is_rounded_half_up_to_whole_units(self, subtotal: str, expected: str) -> None:
        assert tax_for(Decimal(subtotal)) == Decimal(expected)


class TestComputePricing:
    def test_order_below_threshold(self) -> None:
        pricing = compute_pricing([make_line(quantity=3, unit_price="333")])

        assert pricing.subtotal == Decimal("999")
        assert pricing.shipping == Decimal("50")
        assert pricing.tax == Decimal("180")  # 179.82
        assert pricing.total == Decimal("1229")

    def test_order_at_threshold(self) -> None:
        pricing = compute_pricing(
            [make_line(quantity=2, unit_price="300"), make_line("P-SCARF", 1, "400", "S-1")]
        )

        assert pricing.subtotal == Decimal("1000")
        assert pricing.shipping == Decimal("0")
        assert pricing.tax == Decimal("180")
        assert pricing.total == Decimal("1180")

    def test_discount_is_subtracted(self) -> None:
        pricing = compute_pricing([make_line()], discount=Decimal("4"))

        assert pricing.total == Decimal("400")
        assert pricing.total == (
            pricing.subtotal + pricing.shipping + pricing.tax - pricing.discount
        )

    def test_negative_discount_is_rejected(self) -> None:
        with pytest.raises(ValidationFailure):
            compute_pricing([make_line()], discount=Decimal("-1"))

    def test_discount_larger_than_amount_is_rejected(self) -> None:
        with pytest.raises(ValidationFailure) as exc_info:
            compute_pricing([make_line()], discount=Decimal("405"))

        assert exc_info.value.errors[0]["field"] == "discount"

    def test_breakdown_rejects_inconsistent_total(self) -> None:
        with pytest.raises(ValueError):
            PriceBreakdown(
                subtotal=Decimal("100"),
                shipping=Decimal("50"),
                tax=Decimal("18"),
                total=Decimal("100"),
            )


class TestMinorUnits:
    @pytest.mark.parametrize(
        "amount,expected",
        [("1416", 141600), ("404.5", 40450), ("0.01", 1), ("10.005", 1001)],
    )
    def test_to_minor_units(self, amount: str, expected: int) -> None:
        assert to_minor_units(Decimal(amount)) == expected


class TestOrderNumbers:
    def test_format(self) -> None:
        number = generate_order_number(datetime(2026, 3, 9, tzinfo=UTC))

        assert number.startswith("ORD20260309")
        assert len(number) == 17
        assert is_order_number(number)

    def test_numbers_are_random(self) -> None:
        numbers = {generate_order_number() for _ in range(50)}
        assert len(numbers) == 50

    def test_taken_numbers_are_regenerated(self) -> None:
        seen: list[str] = []

        def taken_once(number: str) -> bool:
            seen.append(number)
            return len(seen) == 1

        number = unique_order_number(taken_once)

        assert len(seen) == 2
        assert number == seen[1]

    def test_gives_up_when_everything_collides(self) -> None:
        with pytest.raises(RuntimeError):
            unique_order_number(lambda number: True, max_attempts=3)

    @pytest.mark.parametrize("value", ["ORD2026030", "ord20260309ABC123", "ORD20260309abc123"])
    def test_malformed_numbers(self, value: str) -> None:
        assert not is_order_number(value)
