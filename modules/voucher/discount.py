"""
Voucher Module - Discount Calculator
=====================================
Monetary discount of one voucher (or reward voucher template) against its
eligible subtotal.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Optional

from common.helpers import to_decimal, round_money
from modules.voucher.models import VoucherDiscountType

ZERO = Decimal("0")


def compute_discount(
    discount_type,
    magnitude,
    eligible_subtotal,
    unlimited_pct: bool = False,
    max_pct_reduction: Optional[Decimal] = None,
) -> Decimal:
    """
    MONEY:      min(magnitude, subtotal)
    PERCENTAGE: subtotal * magnitude / 100, capped by max_pct_reduction
                unless unlimited, then min(raw, subtotal)

    Rounded once, at the end. The result is always within [0, subtotal].
    """
    subtotal = max(to_decimal(eligible_subtotal), ZERO)
    value = max(to_decimal(magnitude), ZERO)
    if subtotal == ZERO or value == ZERO:
        return round_money(ZERO)

    if VoucherDiscountType(discount_type) == VoucherDiscountType.PERCENTAGE:
        raw = subtotal * value / Decimal(100)
        if not unlimited_pct and max_pct_reduction is not None:
            raw = min(raw, max(to_decimal(max_pct_reduction), ZERO))
    else:
        raw = value

    discount = round_money(min(raw, subtotal))
    # never above the subtotal, even when it carries sub-cent digits
    return min(discount, subtotal.quantize(Decimal("0.01"), rounding=ROUND_DOWN))


def voucher_discount(voucher, eligible_subtotal) -> Decimal:
    """compute_discount() with the voucher's own settings."""
    return compute_discount(
        voucher.discount_type,
        voucher.discount,
        eligible_subtotal,
        unlimited_pct=voucher.unlimited_percentage_discount,
        max_pct_reduction=voucher.maximum_percentage_reduction,
    )
