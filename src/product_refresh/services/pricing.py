"""Price snapshot and savings computation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from product_refresh.infrastructure.paapi.models import ItemFound

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class Savings:
    amount: Decimal | None = None
    percentage: Decimal | None = None


def to_decimal(value: float | int | str | Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    # str() keeps the shortest repr of floats such as 17.99
    return Decimal(str(value))


def compute_savings(
    current: float | Decimal | None, original: float | Decimal | None
) -> Savings:
    """Savings of ``current`` against ``original``, both rounded to 2 dp.

    Only defined when both prices are present and the current price is
    strictly lower than a positive original price.
    """
    current_d = to_decimal(current)
    original_d = to_decimal(original)
    if current_d is None or original_d is None or original_d <= 0 or current_d >= original_d:
        return Savings()

    amount = original_d - current_d
    percentage = amount / original_d * 100
    return Savings(
        amount=amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP),
        percentage=percentage.quantize(TWO_PLACES, rounding=ROUND_HALF_UP),
    )


def price_snapshot(item: ItemFound) -> dict[str, Any]:
    """Pricing, availability and review fields refreshed from an upstream item.

    ``original_price`` falls back to the current price when the listing has
    no saving basis.
    """
    current = to_decimal(item.price)
    original = to_decimal(item.saving_basis) if item.saving_basis is not None else current
    savings = compute_savings(current, original)
    return {
        "current_price": current,
        "original_price": original,
        "savings_amount": savings.amount,
        "savings_percentage": savings.percentage,
        "currency": item.currency,
        "availability_type": item.availability_type,
        "availability_message": item.availability_message,
        "customer_review_count": item.review_count,
        "star_rating": to_decimal(item.star_rating),
        "raw_paapi_response": item.raw,
    }
