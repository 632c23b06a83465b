"""
Voucher Module - Scope Resolver
================================
Decides whether a cart/order line falls inside a voucher's (or reward's)
product scope or combo scope. Pure functions, no DB access.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet

from modules.cart.snapshot import CartSnapshot, LineItem, LineKind
from modules.voucher.models import ProductScope, ComboScope

_SCOPE_KIND = {
    ProductScope.ALL_PRODUCTS: LineKind.PRODUCT,
    ProductScope.SPECIFIC_PRODUCTS: LineKind.PRODUCT,
    ComboScope.ALL_COMBOS: LineKind.COMBO,
    ComboScope.SPECIFIC_COMBOS: LineKind.COMBO,
}

_ALL_SCOPES = (ProductScope.ALL_PRODUCTS, ComboScope.ALL_COMBOS)


def _coerce_scope(scope_kind):
    if isinstance(scope_kind, (ProductScope, ComboScope)):
        return scope_kind
    try:
        return ProductScope(scope_kind)
    except ValueError:
        return ComboScope(scope_kind)


def is_line_item_eligible(scope_kind, membership: FrozenSet[int], line_item: LineItem) -> bool:
    """
    True if `line_item` is covered by the scope.

    ALL_* admits every line of the matching kind; SPECIFIC_* admits lines
    whose id is in `membership` (an empty membership admits nothing).
    """
    scope = _coerce_scope(scope_kind)
    if line_item.kind != _SCOPE_KIND[scope]:
        return False
    if scope in _ALL_SCOPES:
        return True
    return line_item.item_id in membership


@dataclass(frozen=True)
class ScopeDefinition:
    """Product scope + combo scope pair, with membership pre-built as sets."""
    product_scope: ProductScope = ProductScope.ALL_PRODUCTS
    product_ids: FrozenSet[int] = field(default_factory=frozenset)
    combo_scope: ComboScope = ComboScope.ALL_COMBOS
    combo_ids: FrozenSet[int] = field(default_factory=frozenset)

    @classmethod
    def of_voucher(cls, voucher) -> "ScopeDefinition":
        return cls(
            product_scope=ProductScope(voucher.product_scope),
            product_ids=voucher.product_ids,
            combo_scope=ComboScope(voucher.combo_scope),
            combo_ids=voucher.combo_ids,
        )

    def admits(self, line_item: LineItem) -> bool:
        if line_item.kind == LineKind.PRODUCT:
            return is_line_item_eligible(self.product_scope, self.product_ids, line_item)
        return is_line_item_eligible(self.combo_scope, self.combo_ids, line_item)

    def eligible_subtotal(self, cart: CartSnapshot) -> Decimal:
        """Unrounded sum of unit price x quantity over admitted lines."""
        return sum((line.line_total for line in cart.lines if self.admits(line)), Decimal("0"))
