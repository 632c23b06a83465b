from datetime import datetime, timedelta, timezone
from decimal import Decimal

from factories import make_voucher, product_line, combo_line, cart_of
from modules.user.models import CustomerRank
from modules.voucher.eligibility import CustomerContext, DenialReason, evaluate
from modules.voucher.models import VoucherType, ProductScope, ComboScope

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
CART = cart_of(product_line(1, "40000"), combo_line(2, "60000"))
ALICE = CustomerContext(user_id=10, rank=CustomerRank.SILVER)


def test_eligible_voucher_reports_subtotal():
    result = evaluate(ALICE, make_voucher(id=1), CART, NOW)
    assert result.eligible
    assert result.reason is None
    assert result.eligible_subtotal == Decimal("100000")


def test_not_yet_started():
    voucher = make_voucher(id=1, start_time=NOW + timedelta(minutes=1))
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.NOT_YET_STARTED


def test_expired_when_end_time_passed():
    voucher = make_voucher(id=1, is_lifetime=False, end_time=NOW - timedelta(seconds=1))
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.EXPIRED


def test_end_time_is_inclusive():
    voucher = make_voucher(id=1, is_lifetime=False, end_time=NOW)
    assert evaluate(ALICE, voucher, CART, NOW).eligible


def test_lifetime_ignores_end_time():
    voucher = make_voucher(id=1, is_lifetime=True, end_time=NOW - timedelta(days=30))
    assert evaluate(ALICE, voucher, CART, NOW).eligible


def test_exhausted_when_used_reaches_quantity():
    voucher = make_voucher(id=1, quantity=5, used=5)
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.EXHAUSTED


def test_zero_quantity_is_unlimited():
    voucher = make_voucher(id=1, quantity=0, used=10_000)
    assert evaluate(ALICE, voucher, CART, NOW).eligible


def test_private_voucher_of_another_user_is_not_owned():
    voucher = make_voucher(id=1, type=VoucherType.PRIVATE, user_id=99)
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.NOT_OWNED


def test_private_voucher_owned_directly_or_by_grant():
    owned = make_voucher(id=1, type=VoucherType.PRIVATE, user_id=ALICE.user_id)
    granted = make_voucher(id=2, type=VoucherType.PRIVATE, user_id=None)
    customer = CustomerContext(user_id=ALICE.user_id, granted_voucher_ids=frozenset({2}))
    assert evaluate(customer, owned, CART, NOW).eligible
    assert evaluate(customer, granted, CART, NOW).eligible


def test_new_user_only_rejects_returning_customers():
    voucher = make_voucher(id=1, is_for_new_users_only=True)
    returning = CustomerContext(user_id=10, completed_orders=1)
    newcomer = CustomerContext(user_id=11, completed_orders=0)
    assert evaluate(returning, voucher, CART, NOW).reason == DenialReason.NOT_ELIGIBLE_NEW_USER_ONLY
    assert evaluate(newcomer, voucher, CART, NOW).eligible


def test_rank_too_low():
    voucher = make_voucher(id=1, minimum_rank=int(CustomerRank.GOLD))
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.RANK_TOO_LOW


def test_rank_equal_to_minimum_passes():
    voucher = make_voucher(id=1, minimum_rank=int(CustomerRank.SILVER))
    assert evaluate(ALICE, voucher, CART, NOW).eligible


def test_below_minimum_spend_reports_missing_amount():
    voucher = make_voucher(
        id=1,
        product_scope=ProductScope.SPECIFIC_PRODUCTS,
        product_ids=[1],
        combo_scope=ComboScope.SPECIFIC_COMBOS,
        minimum_requirements="50000",
    )
    result = evaluate(ALICE, voucher, CART, NOW)
    assert result.reason == DenialReason.BELOW_MINIMUM_SPEND
    assert result.eligible_subtotal == Decimal("40000")
    assert result.missing_amount == Decimal("10000.00")


def test_minimum_spend_reached_exactly():
    voucher = make_voucher(id=1, minimum_requirements="100000")
    assert evaluate(ALICE, voucher, CART, NOW).eligible


def test_checks_short_circuit_in_order():
    # expired, exhausted and foreign at once: the temporal check wins
    voucher = make_voucher(
        id=1, is_lifetime=False, end_time=NOW - timedelta(days=1),
        quantity=1, used=1, type=VoucherType.PRIVATE, user_id=99,
    )
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.EXPIRED

    voucher = make_voucher(id=2, quantity=1, used=1, type=VoucherType.PRIVATE, user_id=99)
    assert evaluate(ALICE, voucher, CART, NOW).reason == DenialReason.EXHAUSTED


def test_denial_reason_has_a_message():
    assert DenialReason.EXHAUSTED.message == "This voucher has been fully used"
