"""
Domain: Checkout pricing (pure).

The payment webhook reports the total the customer sees after the optional
order bump and upsell discounts. Each selected discount is a percentage
applied on top of the previous result (multiplicative, not additive).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional

_HUNDRED = Decimal("100")


def _as_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise ValueError(f"{name} must be numeric")
    try:
        return Decimal(str(value))
    except ArithmeticError as e:
        raise ValueError(f"{name} must be numeric") from e


def calculate_total_price(
    price: Any,
    order_bump_discount: Optional[Any] = None,
    upsell_discount: Optional[Any] = None,
    order_bump: bool = False,
    upsell: bool = False,
) -> Decimal:
    """
    Apply the selected order bump / upsell percentage discounts to a price.

    Example:
        calculate_total_price(Decimal("100"), 10, 20, order_bump=True, upsell=True)
        # 100 * 0.90 * 0.80 = Decimal("72.00")
    """

    total = _as_decimal("price", price)

    if order_bump and order_bump_discount:
        total *= 1 - _as_decimal("order_bump_discount", order_bump_discount) / _HUNDRED

    if upsell and upsell_discount:
        total *= 1 - _as_decimal("upsell_discount", upsell_discount) / _HUNDRED

    return total.quantize(Decimal("0.01"))


def total_price_for_product(product: Mapping[str, Any], order_bump: bool, upsell: bool) -> Decimal:
    """Total price for a product row as stored in the `products` table."""

    if "price" not in product:
        raise ValueError("product price is required to compute the total price")
    return calculate_total_price(
        product["price"],
        order_bump_discount=product.get("order_bump_discount"),
        upsell_discount=product.get("upsell_discount"),
        order_bump=order_bump,
        upsell=upsell,
    )


__all__ = ["calculate_total_price", "total_price_for_product"]
