from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from factories import make_user, make_product, make_order, make_voucher, product_line, cart_of
from common.exceptions import NotFoundError
from modules.admin.service import set_setting
from modules.order.models import Order, OrderStatus
from modules.voucher.eligibility import DenialReason
from modules.voucher.models import Voucher, VoucherType, OrderVoucher
from modules.voucher.service import voucher_service, OptionGroup

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def shop(db):
    user = make_user(db)
    product = make_product(db, price="100000")
    order = make_order(db, user, [(product, 2)])
    db.commit()
    return user, product, order


def test_apply_increments_usage_and_sets_totals(db, shop):
    user, _, order = shop
    voucher = make_voucher(db, discount="30000", quantity=5)
    set_setting(db, "vat_percent", "10")
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)

    assert result["success"]
    assert result["applied_discounts"][0]["discount_amount"] == Decimal("30000.00")
    db.refresh(voucher)
    db.refresh(order)
    assert voucher.used == 1
    assert order.voucher_id == voucher.id
    assert order.total_price == Decimal("200000.00")
    assert order.discount == Decimal("30000.00")
    assert order.vat == Decimal("17000.00")
    assert order.total_bill == Decimal("187000.00")
    assert result["new_order_total"] == Decimal("187000.00")
    assert db.query(OrderVoucher).filter_by(order_id=order.id).count() == 1


def test_reapply_replaces_previous_vouchers(db, shop):
    user, _, order = shop
    first = make_voucher(db, discount="10000", quantity=3)
    second = make_voucher(db, discount="20000", quantity=3)
    db.commit()

    voucher_service.apply_vouchers_to_order(db, order.id, [first.id], user.id, now=NOW)
    voucher_service.apply_vouchers_to_order(db, order.id, [second.id], user.id, now=NOW)

    db.refresh(first)
    db.refresh(second)
    db.refresh(order)
    assert first.used == 0
    assert second.used == 1
    assert [ov.voucher_id for ov in order.order_vouchers] == [second.id]
    assert order.discount == Decimal("20000.00")


def test_apply_empty_list_clears_vouchers(db, shop):
    user, _, order = shop
    voucher = make_voucher(db, discount="10000")
    db.commit()

    voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)
    result = voucher_service.apply_vouchers_to_order(db, order.id, [], user.id, now=NOW)

    assert result["success"]
    db.refresh(order)
    assert order.discount == Decimal("0.00")
    assert order.voucher_id is None
    assert order.order_vouchers == []


def test_rejected_vouchers_are_reported_and_not_counted(db, shop):
    user, _, order = shop
    good = make_voucher(db, discount="10000")
    used_up = make_voucher(db, quantity=1, used=1)
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [used_up.id, good.id, 999], user.id, now=NOW)

    assert result["success"]
    assert [a["voucher_id"] for a in result["applied_discounts"]] == [good.id]
    reasons = {r["voucher_id"]: r["reason"] for r in result["rejected"]}
    assert reasons == {used_up.id: DenialReason.EXHAUSTED, 999: DenialReason.VOUCHER_NOT_FOUND}
    db.refresh(used_up)
    assert used_up.used == 1


def test_all_rejected_is_not_a_success(db, shop):
    user, _, order = shop
    voucher = make_voucher(db, minimum_requirements="500000")
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)

    assert not result["success"]
    assert result["rejected"] == [{"voucher_id": voucher.id, "reason": DenialReason.BELOW_MINIMUM_SPEND}]


def test_foreign_order_is_not_modifiable(db, shop):
    _, _, order = shop
    stranger = make_user(db)
    voucher = make_voucher(db)
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], stranger.id, now=NOW)

    assert not result["success"]
    assert result["reason"] == DenialReason.ORDER_NOT_MODIFIABLE
    db.refresh(voucher)
    assert voucher.used == 0


def test_paid_order_is_not_modifiable(db, shop):
    user, _, order = shop
    order.status = OrderStatus.PAID
    voucher = make_voucher(db)
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)

    assert result["reason"] == DenialReason.ORDER_NOT_MODIFIABLE


def test_new_user_voucher_ignores_the_order_being_placed(db, shop):
    user, _, order = shop
    voucher = make_voucher(db, is_for_new_users_only=True)
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)
    assert result["success"]


def test_new_user_voucher_rejected_after_a_paid_order(db, shop):
    user, product, order = shop
    make_order(db, user, [(product, 1)], status=OrderStatus.COMPLETED)
    voucher = make_voucher(db, is_for_new_users_only=True)
    db.commit()

    result = voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)

    assert result["rejected"][0]["reason"] == DenialReason.NOT_ELIGIBLE_NEW_USER_ONLY


def test_last_unit_goes_to_exactly_one_order(file_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    setup = Session()
    first_user, second_user = make_user(setup), make_user(setup)
    product = make_product(setup, price="50000")
    first_order = make_order(setup, first_user, [(product, 1)])
    second_order = make_order(setup, second_user, [(product, 1)])
    voucher = make_voucher(setup, discount="5000", quantity=1)
    setup.commit()
    ids = (first_user.id, second_user.id, first_order.id, second_order.id, voucher.id)
    setup.close()
    first_user_id, second_user_id, first_order_id, second_order_id, voucher_id = ids

    session_a, session_b = Session(), Session()
    try:
        # A has already read the voucher with one unit left
        assert session_a.get(Voucher, voucher_id).used == 0

        won = voucher_service.apply_vouchers_to_order(session_b, second_order_id, [voucher_id], second_user_id, now=NOW)
        lost = voucher_service.apply_vouchers_to_order(session_a, first_order_id, [voucher_id], first_user_id, now=NOW)
    finally:
        session_a.close()
        session_b.close()

    assert won["success"]
    assert not lost["success"]
    assert lost["rejected"] == [{"voucher_id": voucher_id, "reason": DenialReason.EXHAUSTED}]

    check = Session()
    try:
        assert check.get(Voucher, voucher_id).used == 1
        assert check.query(OrderVoucher).count() == 1
        assert check.get(Order, first_order_id).discount == Decimal("0.00")
    finally:
        check.close()


def test_release_gives_usage_back(db, shop):
    user, _, order = shop
    voucher = make_voucher(db, quantity=1)
    db.commit()
    voucher_service.apply_vouchers_to_order(db, order.id, [voucher.id], user.id, now=NOW)

    released = voucher_service.release_order_vouchers(db, order)
    db.commit()

    assert released == 1
    db.refresh(voucher)
    assert voucher.used == 0


def test_applicable_vouchers_are_grouped(db):
    user = make_user(db)
    other = make_user(db)
    mine = make_voucher(db, type=VoucherType.PRIVATE, user_id=user.id, discount="7000")
    granted = make_voucher(db, type=VoucherType.PRIVATE, grant_user_ids=[user.id], discount="3000")
    theirs = make_voucher(db, type=VoucherType.PRIVATE, user_id=other.id)
    saved = make_voucher(db, discount="2000")
    public = make_voucher(db, discount="5000")
    too_big = make_voucher(db, minimum_requirements="90000")
    hidden = make_voucher(db, is_show=False)
    unpublished = make_voucher(db, is_publish=False)
    voucher_service.save_voucher(db, user.id, saved.id)
    db.commit()

    cart = cart_of(product_line(1, "50000"))
    options = voucher_service.get_applicable_vouchers(db, user.id, cart, now=NOW)
    by_id = {o.voucher.id: o for o in options}

    assert theirs.id not in by_id
    assert hidden.id not in by_id
    assert unpublished.id not in by_id
    assert [o.voucher.id for o in options if o.group == OptionGroup.PRIVATE] == [mine.id, granted.id]
    assert [o.voucher.id for o in options if o.group == OptionGroup.SAVED] == [saved.id]
    assert [o.voucher.id for o in options if o.group == OptionGroup.PUBLIC] == [public.id, too_big.id]

    assert by_id[mine.id].potential_discount == Decimal("7000.00")
    assert not by_id[too_big.id].eligible
    assert by_id[too_big.id].reason == DenialReason.BELOW_MINIMUM_SPEND
    assert by_id[too_big.id].missing_amount == Decimal("40000.00")
    assert by_id[too_big.id].to_dict()["missing_amount"] == "40000.00"


def test_expired_public_vouchers_are_not_offered(db):
    user = make_user(db)
    expired = make_voucher(db, is_lifetime=False, end_time=NOW - timedelta(days=1))
    db.commit()

    options = voucher_service.get_applicable_vouchers(db, user.id, cart_of(product_line(1, 100)), now=NOW)

    assert expired.id not in {o.voucher.id for o in options}


def test_save_and_unsave(db):
    user = make_user(db)
    voucher = make_voucher(db)
    db.commit()

    link = voucher_service.save_voucher(db, user.id, voucher.id)
    again = voucher_service.save_voucher(db, user.id, voucher.id)
    assert link.id == again.id
    assert voucher_service.saved_voucher_ids(db, user.id) == frozenset({voucher.id})

    assert voucher_service.unsave_voucher(db, user.id, voucher.id)
    assert voucher_service.saved_voucher_ids(db, user.id) == frozenset()
    assert not voucher_service.unsave_voucher(db, user.id, voucher.id)


def test_private_vouchers_cannot_be_saved(db):
    user = make_user(db)
    voucher = make_voucher(db, type=VoucherType.PRIVATE, user_id=user.id)
    db.commit()

    with pytest.raises(NotFoundError):
        voucher_service.save_voucher(db, user.id, voucher.id)


def test_my_vouchers_lists_private_and_saved(db):
    user = make_user(db)
    mine = make_voucher(db, type=VoucherType.PRIVATE, user_id=user.id, quantity=1, used=1)
    saved = make_voucher(db)
    voucher_service.save_voucher(db, user.id, saved.id)
    db.commit()

    result = voucher_service.my_vouchers(db, user.id, now=NOW)

    assert [c["id"] for c in result["private"]] == [mine.id]
    assert result["private"][0]["state"] == "USED_UP"
    assert [c["id"] for c in result["saved"]] == [saved.id]
    assert result["saved"][0]["is_saved"]


def test_public_board_marks_saved_vouchers(db):
    user = make_user(db)
    first = make_voucher(db)
    second = make_voucher(db)
    voucher_service.save_voucher(db, user.id, first.id)
    db.commit()

    cards = voucher_service.list_public(db, user.id, now=NOW)

    assert [c["id"] for c in cards] == [second.id, first.id]
    assert [c["is_saved"] for c in cards] == [False, True]
