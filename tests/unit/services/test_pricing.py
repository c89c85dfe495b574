"""Unit tests for savings computation."""

from decimal import Decimal

import pytest

from conftest import make_item
from product_refresh.services.pricing import Savings, compute_savings, price_snapshot


class TestComputeSavings:
    def test_discounted_price(self) -> None:
        savings = compute_savings(17.99, 24.99)

        assert savings.amount == Decimal("7.00")
        assert savings.percentage == Decimal("28.01")

    def test_half_up_rounding(self) -> None:
        # 1/8 = 12.5%, 1/3 = 33.333...%
        assert compute_savings(Decimal("7"), Decimal("8")).percentage == Decimal("12.50")
        assert compute_savings(2, 3).percentage == Decimal("33.33")
        assert compute_savings(Decimal("0.995"), Decimal("2")).amount == Decimal("1.01")

    @pytest.mark.parametrize(
        ("current", "original"),
        [
            (24.99, 24.99),
            (29.99, 24.99),
            (None, 24.99),
            (17.99, None),
            (0, 0),
        ],
    )
    def test_no_savings(self, current: float | None, original: float | None) -> None:
        assert compute_savings(current, original) == Savings()


class TestPriceSnapshot:
    def test_includes_savings_and_reviews(self) -> None:
        snapshot = price_snapshot(make_item("B08N5WRWNW"))

        assert snapshot["current_price"] == Decimal("17.99")
        assert snapshot["original_price"] == Decimal("24.99")
        assert snapshot["savings_amount"] == Decimal("7.00")
        assert snapshot["savings_percentage"] == Decimal("28.01")
        assert snapshot["currency"] == "USD"
        assert snapshot["availability_type"] == "Now"
        assert snapshot["customer_review_count"] == 1234
        assert snapshot["star_rating"] == Decimal("4.5")
        assert snapshot["raw_paapi_response"] == {"ASIN": "B08N5WRWNW"}

    def test_original_price_falls_back_to_current(self) -> None:
        snapshot = price_snapshot(make_item("B08N5WRWNW", saving_basis=None))

        assert snapshot["original_price"] == Decimal("17.99")
        assert snapshot["savings_amount"] is None
        assert snapshot["savings_percentage"] is None

    def test_missing_price(self) -> None:
        snapshot = price_snapshot(make_item("B08N5WRWNW", price=None, saving_basis=None))

        assert snapshot["current_price"] is None
        assert snapshot["original_price"] is None
