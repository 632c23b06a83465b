from datetime import datetime, timezone
from decimal import Decimal

from factories import make_voucher, product_line, cart_of
from modules.voucher.combination import resolve_applicable, scale_to_total
from modules.voucher.eligibility import CustomerContext, DenialReason
from modules.voucher.models import VoucherDiscountType

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)
CUSTOMER = CustomerContext(user_id=1)


def _stackable(id, amount, cap=2):
    return make_voucher(id=id, discount=amount, has_combined_usage_limit=True, max_combined_usage_count=cap)


def test_two_stackable_vouchers_are_summed():
    cart = cart_of(product_line(1, "200000"))
    a, b = _stackable(1, "10000"), _stackable(2, "20000")

    result = resolve_applicable([b, a], cart, CUSTOMER, NOW)

    assert result.voucher_ids == [1, 2]
    assert result.total_discount == Decimal("30000.00")
    assert not result.rejected
    assert not result.clamped


def test_third_voucher_exceeding_the_cap_is_rejected():
    cart = cart_of(product_line(1, "200000"))
    a, b, c = _stackable(1, "10000"), _stackable(2, "20000"), _stackable(3, "5000")

    result = resolve_applicable([a, b, c], cart, CUSTOMER, NOW)

    assert result.voucher_ids == [1, 2]
    assert result.reason_for(3) == DenialReason.COMBINATION_LIMIT_EXCEEDED


def test_single_capped_voucher_alone_is_fine():
    cart = cart_of(product_line(1, "200000"))
    result = resolve_applicable([_stackable(3, "5000")], cart, CUSTOMER, NOW)
    assert result.voucher_ids == [3]
    assert result.total_discount == Decimal("5000.00")


def test_accepted_voucher_cap_binds_later_candidates():
    cart = cart_of(product_line(1, "200000"))
    solo = _stackable(1, "1000", cap=1)
    wide = _stackable(2, "1000", cap=5)

    result = resolve_applicable([solo, wide], cart, CUSTOMER, NOW)

    assert result.voucher_ids == [1]
    assert result.reason_for(2) == DenialReason.COMBINATION_LIMIT_EXCEEDED


def test_only_one_non_combinable_voucher():
    cart = cart_of(product_line(1, "200000"))
    plain_a = make_voucher(id=1, discount="1000")
    plain_b = make_voucher(id=2, discount="2000")
    stack = _stackable(3, "3000", cap=3)

    result = resolve_applicable([plain_a, plain_b, stack], cart, CUSTOMER, NOW)

    assert result.voucher_ids == [1, 3]
    assert result.reason_for(2) == DenialReason.COMBINATION_LIMIT_EXCEEDED


def test_ineligible_candidates_are_rejected_with_their_reason():
    cart = cart_of(product_line(1, "200000"))
    used_up = make_voucher(id=1, quantity=1, used=1)
    fine = make_voucher(id=2, discount="500")

    result = resolve_applicable([used_up, fine], cart, CUSTOMER, NOW)

    assert result.voucher_ids == [2]
    assert result.reason_for(1) == DenialReason.EXHAUSTED


def test_duplicate_candidates_count_once():
    cart = cart_of(product_line(1, "200000"))
    voucher = make_voucher(id=1, discount="500")
    result = resolve_applicable([voucher, voucher], cart, CUSTOMER, NOW)
    assert result.voucher_ids == [1]
    assert result.total_discount == Decimal("500.00")


def test_total_discount_is_clamped_to_cart_total():
    cart = cart_of(product_line(1, "10000"))
    a = _stackable(1, "9000")
    b = _stackable(2, "6000")

    result = resolve_applicable([a, b], cart, CUSTOMER, NOW)

    assert result.clamped
    assert result.total_discount == Decimal("10000.00")
    assert [x.discount_amount for x in result.applied] == [Decimal("6000.00"), Decimal("4000.00")]
    assert [x.computed_amount for x in result.applied] == [Decimal("9000.00"), Decimal("6000.00")]


def test_percentage_vouchers_each_use_full_eligible_subtotal():
    cart = cart_of(product_line(1, "100000"))
    a = _stackable(1, "10")
    a.discount_type = VoucherDiscountType.PERCENTAGE
    a.unlimited_percentage_discount = True
    b = _stackable(2, "20")
    b.discount_type = VoucherDiscountType.PERCENTAGE
    b.unlimited_percentage_discount = True

    result = resolve_applicable([a, b], cart, CUSTOMER, NOW)

    assert result.total_discount == Decimal("30000.00")


def test_scale_to_total_uses_largest_remainder():
    scaled = scale_to_total([Decimal("1.00"), Decimal("1.00"), Decimal("1.00")], Decimal("2.00"))
    assert sum(scaled) == Decimal("2.00")
    # 66.67 cents each; the leftover cent goes to the first entry on ties
    assert scaled == [Decimal("0.67"), Decimal("0.67"), Decimal("0.66")]


def test_scale_to_total_leaves_amounts_under_target_alone():
    amounts = [Decimal("3.00"), Decimal("4.00")]
    assert scale_to_total(amounts, Decimal("10.00")) == amounts


def test_scale_to_zero_target():
    assert scale_to_total([Decimal("5.00")], Decimal("0")) == [Decimal("0.00")]
