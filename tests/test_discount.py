from decimal import Decimal

import pytest

from factories import make_voucher
from modules.voucher.discount import compute_discount, voucher_discount
from modules.voucher.models import VoucherDiscountType

MONEY = VoucherDiscountType.MONEY
PCT = VoucherDiscountType.PERCENTAGE


def test_percentage_is_capped_by_maximum_reduction():
    assert compute_discount(PCT, 10, 100000, max_pct_reduction=Decimal("5000")) == Decimal("5000.00")


def test_unlimited_percentage_ignores_the_cap():
    assert compute_discount(PCT, 10, 100000, unlimited_pct=True, max_pct_reduction=5000) == Decimal("10000.00")


def test_money_discount_is_clamped_to_subtotal():
    assert compute_discount(MONEY, 50000, 30000) == Decimal("30000.00")


def test_money_discount_below_subtotal_is_used_as_is():
    assert compute_discount(MONEY, 5000, 30000) == Decimal("5000.00")


def test_percentage_over_100_never_exceeds_subtotal():
    assert compute_discount(PCT, 150, 20000, unlimited_pct=True) == Decimal("20000.00")


def test_percentage_rounds_half_away_from_zero():
    # 12.5% of 100.20 = 12.525
    assert compute_discount(PCT, "12.5", "100.20", unlimited_pct=True) == Decimal("12.53")


@pytest.mark.parametrize("discount_type,magnitude,subtotal", [
    (MONEY, 0, 1000),
    (PCT, 0, 1000),
    (MONEY, 500, 0),
    (PCT, 50, 0),
    (MONEY, -10, 1000),
])
def test_zero_inputs_yield_zero(discount_type, magnitude, subtotal):
    assert compute_discount(discount_type, magnitude, subtotal, unlimited_pct=True) == Decimal("0.00")


def test_result_never_above_a_sub_cent_subtotal():
    assert compute_discount(MONEY, 10, "0.005") == Decimal("0.00")
    assert compute_discount(MONEY, 10, "10.999") == Decimal("10.00")


def test_voucher_discount_uses_voucher_settings():
    voucher = make_voucher(
        id=1,
        discount_type=PCT,
        discount=10,
        maximum_percentage_reduction=5000,
    )
    assert voucher_discount(voucher, Decimal("100000")) == Decimal("5000.00")
