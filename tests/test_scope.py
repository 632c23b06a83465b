from decimal import Decimal

from factories import product_line, combo_line, cart_of, make_voucher
from modules.voucher.models import ProductScope, ComboScope
from modules.voucher.scope import ScopeDefinition, is_line_item_eligible


def test_all_products_admits_any_product_but_no_combo():
    assert is_line_item_eligible(ProductScope.ALL_PRODUCTS, frozenset(), product_line(7, 100))
    assert not is_line_item_eligible(ProductScope.ALL_PRODUCTS, frozenset(), combo_line(7, 100))


def test_specific_products_requires_membership():
    members = frozenset({1, 2})
    assert is_line_item_eligible(ProductScope.SPECIFIC_PRODUCTS, members, product_line(2, 100))
    assert not is_line_item_eligible(ProductScope.SPECIFIC_PRODUCTS, members, product_line(3, 100))


def test_specific_scope_with_empty_membership_admits_nothing():
    assert not is_line_item_eligible(ProductScope.SPECIFIC_PRODUCTS, frozenset(), product_line(1, 100))
    assert not is_line_item_eligible(ComboScope.SPECIFIC_COMBOS, frozenset(), combo_line(1, 100))


def test_scope_accepts_string_values():
    assert is_line_item_eligible("SPECIFIC_COMBOS", frozenset({9}), combo_line(9, 100))
    assert not is_line_item_eligible("ALL_COMBOS", frozenset(), product_line(9, 100))


def test_eligible_subtotal_sums_admitted_lines_only():
    scope = ScopeDefinition(
        product_scope=ProductScope.SPECIFIC_PRODUCTS,
        product_ids=frozenset({1}),
        combo_scope=ComboScope.ALL_COMBOS,
    )
    cart = cart_of(
        product_line(1, "25000", quantity=2),
        product_line(2, "40000"),
        combo_line(5, "60000"),
    )
    assert scope.eligible_subtotal(cart) == Decimal("110000")


def test_eligible_subtotal_of_empty_cart_is_zero():
    assert ScopeDefinition().eligible_subtotal(cart_of()) == Decimal("0")


def test_scope_of_voucher_uses_its_memberships():
    voucher = make_voucher(
        id=1,
        product_scope=ProductScope.SPECIFIC_PRODUCTS,
        combo_scope=ComboScope.SPECIFIC_COMBOS,
        product_ids=[3],
        combo_ids=[4],
    )
    scope = ScopeDefinition.of_voucher(voucher)
    assert scope.admits(product_line(3, 1))
    assert scope.admits(combo_line(4, 1))
    assert not scope.admits(product_line(4, 1))
    assert not scope.admits(combo_line(3, 1))
