"""
Catalog Module - Price Calculator
==================================
Effective unit prices for products, product types, extras and combos.

All arithmetic in Decimal; results are clamped at zero and rounded to
cents (half away from zero).
"""

from decimal import Decimal
from typing import Iterable, Tuple

from common.helpers import to_decimal, round_money
from modules.catalog.models import PriceDiscountType

ZERO = Decimal("0")


def apply_price_discount(price, discount_type, discount) -> Decimal:
    """
    Apply a catalog discount to a base price.

    Args:
        price: Base price
        discount_type: PriceDiscountType (or its string value)
        discount: Percent, amount to subtract, or the fixed final price

    Returns:
        Discounted price, never below zero, rounded to cents.
    """
    d_price = max(to_decimal(price), ZERO)
    if discount is None:
        return round_money(d_price)

    d_discount = to_decimal(discount)
    kind = PriceDiscountType(discount_type or PriceDiscountType.NONE)

    if kind == PriceDiscountType.PERCENT:
        final = d_price - d_price * d_discount / Decimal(100)
    elif kind == PriceDiscountType.AMOUNT:
        final = d_price - d_discount
    elif kind == PriceDiscountType.FIXED_PRICE:
        final = d_discount
    else:
        final = d_price

    return round_money(max(final, ZERO))


def effective_price(item) -> Decimal:
    """Effective unit price of anything with price/discount_type/discount columns."""
    if item is None:
        return ZERO
    return apply_price_discount(item.price, item.discount_type, item.discount)


def line_unit_price(base_item, product_type=None, extras: Iterable[Tuple[object, int]] = ()) -> Decimal:
    """
    Unit price of one cart/order line.

    A selected product type replaces the product's own price; each extra adds
    its effective price times its per-unit quantity.
    """
    unit = effective_price(product_type) if product_type is not None else effective_price(base_item)
    for extra, qty in extras:
        if extra is None or qty <= 0:
            continue
        unit += effective_price(extra) * qty
    return round_money(unit)
