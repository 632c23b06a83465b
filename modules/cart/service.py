"""
Cart Module - Service Layer
==============================
Cart management: get/create, add/remove items, and the priced snapshot
handed to the voucher engine.
"""

from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func

from modules.cart.models import Cart, CartItem, CartItemExtra
from modules.cart.snapshot import CartSnapshot, LineItem, LineKind
from modules.catalog.models import Product, ProductType, ProductExtra, Combo
from modules.catalog.pricing import line_unit_price
from common.exceptions import NotFoundError, ValidationError
from common.models import active


class CartService:

    def get_or_create_cart(self, db: Session, user_id: int) -> Cart:
        """Get existing cart or create new one for the user."""
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if not cart:
            cart = Cart(user_id=user_id)
            db.add(cart)
            db.flush()
        return cart

    def add_item(
        self,
        db: Session,
        user_id: int,
        product_id: Optional[int] = None,
        combo_id: Optional[int] = None,
        product_type_id: Optional[int] = None,
        extras: Iterable[Tuple[int, int]] = (),
        quantity: int = 1,
    ) -> CartItem:
        """
        Add a product or combo line. Lines with the same product/combo, type
        and extras are merged by bumping the quantity.
        """
        if (product_id is None) == (combo_id is None):
            raise ValidationError({"item": "exactly one of product_id / combo_id is required"})
        if quantity < 1:
            raise ValidationError({"quantity": "must be at least 1"})

        if product_id is not None:
            product = active(db.query(Product), Product).filter(
                Product.id == product_id, Product.is_publish == True,  # noqa: E712
            ).first()
            if not product:
                raise NotFoundError(f"Product {product_id} not found")
            if product_type_id is not None:
                ptype = active(db.query(ProductType), ProductType).filter(
                    ProductType.id == product_type_id,
                    ProductType.product_id == product_id,
                ).first()
                if not ptype:
                    raise NotFoundError(f"Product type {product_type_id} not found")
        else:
            product_type_id = None
            combo = active(db.query(Combo), Combo).filter(
                Combo.id == combo_id, Combo.is_publish == True,  # noqa: E712
            ).first()
            if not combo:
                raise NotFoundError(f"Combo {combo_id} not found")

        extras_map = {}
        for extra_id, extra_qty in extras:
            if extra_qty >= 1:
                extras_map[extra_id] = extras_map.get(extra_id, 0) + extra_qty
        if extras_map:
            found = active(db.query(ProductExtra.id), ProductExtra).filter(
                ProductExtra.id.in_(extras_map.keys()),
            ).all()
            missing = set(extras_map) - {row[0] for row in found}
            if missing:
                raise NotFoundError(f"Extras not found: {sorted(missing)}")

        cart = self.get_or_create_cart(db, user_id)
        for item in cart.items:
            if (item.product_id == product_id and item.combo_id == combo_id
                    and item.product_type_id == product_type_id
                    and {e.extra_id: e.quantity for e in item.extras} == extras_map):
                item.quantity += quantity
                db.flush()
                return item

        item = CartItem(
            cart_id=cart.id,
            product_id=product_id,
            combo_id=combo_id,
            product_type_id=product_type_id,
            quantity=quantity,
        )
        for extra_id, extra_qty in extras_map.items():
            item.extras.append(CartItemExtra(extra_id=extra_id, quantity=extra_qty))
        cart.items.append(item)
        db.flush()
        return item

    def update_quantity(self, db: Session, user_id: int, item_id: int, quantity: int) -> int:
        """Set a line's quantity; zero or less removes it. Returns the cart's total count."""
        cart = self.get_or_create_cart(db, user_id)
        item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
        if not item:
            raise NotFoundError(f"Cart item {item_id} not found")
        if quantity <= 0:
            db.delete(item)
        else:
            item.quantity = quantity
        db.flush()
        return self._cart_count(db, cart.id)

    def clear_cart(self, db: Session, user_id: int):
        """Remove all items from the user's cart."""
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if cart:
            for item in list(cart.items):
                db.delete(item)
            db.flush()

    # ==========================================
    # Pricing / snapshot
    # ==========================================

    def get_cart_items(self, db: Session, user_id: int) -> List[CartItem]:
        cart = (
            db.query(Cart)
            .options(joinedload(Cart.items).joinedload(CartItem.extras))
            .filter(Cart.user_id == user_id)
            .first()
        )
        return list(cart.items) if cart else []

    def unit_price(self, item) -> Decimal:
        """Unit price of a cart (or order) line: product/type/combo price plus extras."""
        extras = [(e.extra, e.quantity) for e in item.extras if e.extra is not None and not e.extra.is_deleted]
        if item.combo_id is not None:
            return line_unit_price(item.combo, None, extras)
        ptype = item.product_type if item.product_type is not None and not item.product_type.is_deleted else None
        return line_unit_price(item.product, ptype, extras)

    def is_available(self, item) -> bool:
        """A cart line whose product or combo was deleted or unpublished is dropped."""
        target = item.combo if item.combo_id is not None else item.product
        return target is not None and not target.is_deleted and bool(target.is_publish)

    def build_snapshot(self, db: Session, user_id: int) -> CartSnapshot:
        """Price the user's current cart from live catalog data."""
        lines = []
        for item in self.get_cart_items(db, user_id):
            if not self.is_available(item):
                continue
            if item.combo_id is not None:
                lines.append(LineItem(LineKind.COMBO, item.combo_id, self.unit_price(item), item.quantity, item.id))
            else:
                lines.append(LineItem(LineKind.PRODUCT, item.product_id, self.unit_price(item), item.quantity, item.id))
        return CartSnapshot(lines=tuple(lines))

    # ==========================================
    # Private helpers
    # ==========================================

    def _cart_count(self, db: Session, cart_id: int) -> int:
        return db.query(
            func.coalesce(func.sum(CartItem.quantity), 0)
        ).filter(CartItem.cart_id == cart_id).scalar() or 0


# Singleton
cart_service = CartService()
