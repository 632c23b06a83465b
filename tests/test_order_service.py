from datetime import datetime, timezone
from decimal import Decimal

import pytest

from factories import make_user, make_admin, make_product, make_combo, make_voucher, make_order
from common.exceptions import AuthorizationError, NotFoundError, ValidationError
from modules.admin.permissions import AuthContext, Permission
from modules.admin.service import set_setting
from modules.cart.service import cart_service
from modules.catalog.models import ProductType, ProductExtra, PriceDiscountType
from modules.order.models import OrderStatus
from modules.order.service import order_service, can_transition
from modules.voucher.models import Voucher

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def admin(db):
    return AuthContext.for_user(make_admin(db))


def test_checkout_snapshots_cart_and_applies_vouchers(db):
    user = make_user(db)
    pho = make_product(db, name="Pho", price="60000")
    large = ProductType(product_id=pho.id, name="Large", price=Decimal("80000"))
    egg = ProductExtra(name="Egg", price=Decimal("10000"), discount_type=PriceDiscountType.AMOUNT,
                       discount=Decimal("2000"), is_publish=True)
    db.add_all([large, egg])
    db.flush()
    combo = make_combo(db, price="50000")
    voucher = make_voucher(db, discount="20000", quantity=10)
    set_setting(db, "vat_percent", "10")
    cart_service.add_item(db, user.id, product_id=pho.id, product_type_id=large.id, extras=[(egg.id, 1)], quantity=2)
    cart_service.add_item(db, user.id, combo_id=combo.id)
    db.commit()

    order, vouchers = order_service.checkout(
        db, user.id, voucher_ids=[voucher.id], contact={"full_name": "Alice", "phone": "0900"}, now=NOW,
    )

    assert vouchers["success"]
    assert order.status == OrderStatus.PENDING
    assert order.full_name == "Alice"
    names = sorted(i.name for i in order.items)
    assert names == ["Lunch combo", "Pho - Large"]
    pho_line = next(i for i in order.items if i.product_id == pho.id)
    assert pho_line.unit_price == Decimal("88000.00")
    assert pho_line.line_total == Decimal("176000.00")
    assert [(e.name, e.unit_price) for e in pho_line.extras] == [("Egg", Decimal("8000.00"))]

    assert order.total_quantity == 3
    assert order.total_price == Decimal("226000.00")
    assert order.discount == Decimal("20000.00")
    assert order.vat == Decimal("20600.00")
    assert order.total_bill == Decimal("226600.00")

    db.refresh(voucher)
    assert voucher.used == 1
    assert cart_service.get_cart_items(db, user.id) == []


def test_checkout_with_empty_cart(db):
    user = make_user(db)
    db.commit()

    with pytest.raises(ValidationError) as exc:
        order_service.checkout(db, user.id)
    assert "cart" in exc.value.errors


def test_checkout_with_bad_payment_method(db):
    user = make_user(db)
    with pytest.raises(ValidationError):
        order_service.checkout(db, user.id, payment_method="BARTER")


def test_checkout_skips_deleted_products(db):
    user = make_user(db)
    kept = make_product(db, price="10000")
    gone = make_product(db, price="99000")
    cart_service.add_item(db, user.id, product_id=kept.id)
    cart_service.add_item(db, user.id, product_id=gone.id)
    gone.soft_delete()
    db.commit()

    order, _ = order_service.checkout(db, user.id, now=NOW)

    assert [i.product_id for i in order.items] == [kept.id]
    assert order.total_price == Decimal("10000.00")


def test_checkout_skips_unpublished_items(db):
    user = make_user(db)
    kept = make_product(db, price="10000")
    hidden = make_product(db, price="99000")
    combo = make_combo(db, price="50000")
    cart_service.add_item(db, user.id, product_id=kept.id)
    cart_service.add_item(db, user.id, product_id=hidden.id)
    cart_service.add_item(db, user.id, combo_id=combo.id)
    hidden.is_publish = False
    combo.is_publish = False
    db.commit()

    snapshot = cart_service.build_snapshot(db, user.id)
    assert [line.item_id for line in snapshot.lines] == [kept.id]

    order, _ = order_service.checkout(db, user.id, now=NOW)

    assert [i.product_id for i in order.items] == [kept.id]
    assert order.total_price == Decimal("10000.00")


def test_checkout_with_only_unpublished_items(db):
    user = make_user(db)
    product = make_product(db)
    cart_service.add_item(db, user.id, product_id=product.id)
    product.is_publish = False
    db.commit()

    with pytest.raises(ValidationError) as exc:
        order_service.checkout(db, user.id, now=NOW)
    assert "cart" in exc.value.errors


@pytest.mark.parametrize("current,target,allowed", [
    (OrderStatus.PENDING, OrderStatus.PAID, True),
    (OrderStatus.PENDING, OrderStatus.COD_PROCESSING, True),
    (OrderStatus.COD_SHIPPED, OrderStatus.COD_PAYMENT_RECEIVED, True),
    (OrderStatus.COD_PAYMENT_RECEIVED, OrderStatus.COMPLETED, True),
    (OrderStatus.PENDING, OrderStatus.COMPLETED, False),
    (OrderStatus.COMPLETED, OrderStatus.CANCELLED, False),
    (OrderStatus.CANCELLED, OrderStatus.PENDING, False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_paying_an_order_credits_loyalty(db, admin):
    set_setting(db, "loyalty_point_rate", "0.01")
    set_setting(db, "loyalty_exp_rate", "1")
    user = make_user(db)
    product = make_product(db, price="1000")
    order = make_order(db, user, [(product, 1)])
    db.commit()

    order, accrual = order_service.change_status(db, admin, order.id, "PAID", now=NOW)

    assert order.status == OrderStatus.PAID
    assert order.paid_at == NOW
    assert accrual.applied
    assert accrual.points_earned == 10
    db.refresh(user)
    assert user.exp == 1000

    # completing later must not credit again
    order, accrual = order_service.change_status(db, admin, order.id, "COMPLETED", now=NOW)
    assert order.completed_at == NOW
    assert not accrual.applied
    db.refresh(user)
    assert user.point == 10


def test_cod_flow_credits_on_payment_received(db, admin):
    user = make_user(db)
    product = make_product(db, price="1000")
    order = make_order(db, user, [(product, 1)])
    db.commit()

    _, accrual = order_service.change_status(db, admin, order.id, "COD_PROCESSING", now=NOW)
    assert accrual is None
    order_service.change_status(db, admin, order.id, "COD_SHIPPED", now=NOW)
    order, accrual = order_service.change_status(db, admin, order.id, "COD_PAYMENT_RECEIVED", now=NOW)

    assert accrual.applied
    assert order.paid_at == NOW


def test_invalid_transition(db, admin):
    user = make_user(db)
    product = make_product(db)
    order = make_order(db, user, [(product, 1)])
    db.commit()

    with pytest.raises(ValidationError):
        order_service.change_status(db, admin, order.id, "COMPLETED")
    with pytest.raises(ValidationError):
        order_service.change_status(db, admin, order.id, "SHIPPED_TO_MARS")
    with pytest.raises(NotFoundError):
        order_service.change_status(db, admin, 9999, "PAID")


def test_status_change_requires_permission(db):
    staff = AuthContext(user_id=5, permissions=frozenset({Permission.ORDER_VIEW_ALL}))
    with pytest.raises(AuthorizationError):
        order_service.change_status(db, staff, 1, "PAID")


def test_cancelling_a_pending_order_releases_vouchers(db, admin):
    user = make_user(db)
    product = make_product(db, price="50000")
    voucher = make_voucher(db, discount="5000", quantity=1)
    cart_service.add_item(db, user.id, product_id=product.id)
    db.commit()
    order, _ = order_service.checkout(db, user.id, voucher_ids=[voucher.id], now=NOW)
    assert db.get(Voucher, voucher.id).used == 1

    order, accrual = order_service.change_status(db, admin, order.id, "CANCELLED", reason="out of noodles", now=NOW)

    assert accrual is None
    assert order.status == OrderStatus.CANCELLED
    assert order.cancellation_reason == "out of noodles"
    assert order.discount == Decimal("0.00")
    assert order.order_vouchers == []
    db.refresh(voucher)
    assert voucher.used == 0


def test_customer_cancels_own_pending_order(db):
    user = make_user(db)
    stranger = make_user(db)
    product = make_product(db)
    order = make_order(db, user, [(product, 1)])
    paid = make_order(db, user, [(product, 1)], status=OrderStatus.PAID)
    db.commit()

    with pytest.raises(NotFoundError):
        order_service.cancel_by_customer(db, stranger.id, order.id)
    with pytest.raises(ValidationError):
        order_service.cancel_by_customer(db, user.id, paid.id)

    cancelled = order_service.cancel_by_customer(db, user.id, order.id, now=NOW)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at == NOW


def test_order_queries(db, admin):
    user = make_user(db)
    other = make_user(db)
    product = make_product(db)
    first = make_order(db, user, [(product, 1)])
    second = make_order(db, user, [(product, 2)], status=OrderStatus.PAID)
    make_order(db, other, [(product, 1)])
    db.commit()

    assert [o.id for o in order_service.get_user_orders(db, user.id)] == [second.id, first.id]
    assert order_service.get_order(db, first.id, user_id=user.id).id == first.id
    with pytest.raises(NotFoundError):
        order_service.get_order(db, first.id, user_id=other.id)
    assert [o.id for o in order_service.list_orders(db, admin, status="PAID")] == [second.id]
    assert len(order_service.list_orders(db, admin)) == 3
