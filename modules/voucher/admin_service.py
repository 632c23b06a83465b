"""
Voucher Module - Admin Service
===============================
Create / edit / soft-delete vouchers with input validation and own-vs-all
permission checks through AuthContext.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import ValidationError, DuplicateError, NotFoundError
from common.helpers import now_utc, to_decimal, as_utc, parse_enum
from common.models import active, existing_ids
from modules.admin.permissions import AuthContext, Permission
from modules.catalog.models import Product, Combo
from modules.user.models import User, parse_rank
from modules.voucher.models import (
    Voucher, VoucherProduct, VoucherCombo, VoucherUser,
    VoucherType, ProductScope, ComboScope, VoucherDiscountType,
)

logger = logging.getLogger("savory.voucher")


def validate_voucher_data(db: Session, data: dict, voucher: Optional[Voucher] = None) -> dict:
    """
    Check and normalise admin input. Returns the cleaned field dict.
    Raises ValidationError (field -> message) or DuplicateError for the code.
    """
    errors = {}
    clean = {}

    code = (data.get("code") or "").strip().upper()
    if not code:
        errors["code"] = "required"
    clean["code"] = code

    name = (data.get("name") or "").strip()
    if not name:
        errors["name"] = "required"
    clean["name"] = name
    clean["description"] = (data.get("description") or "").strip() or None

    clean["type"] = parse_enum(VoucherType, data.get("type"), "type", errors, VoucherType.PUBLIC)
    clean["product_scope"] = parse_enum(ProductScope, data.get("product_scope"), "product_scope", errors,
                                        ProductScope.ALL_PRODUCTS)
    clean["combo_scope"] = parse_enum(ComboScope, data.get("combo_scope"), "combo_scope", errors,
                                      ComboScope.ALL_COMBOS)
    discount_type = parse_enum(VoucherDiscountType, data.get("discount_type"), "discount_type", errors,
                               VoucherDiscountType.MONEY)
    clean["discount_type"] = discount_type

    # Discount
    discount = to_decimal(data.get("discount"), None)
    if discount is None or discount < 0:
        errors["discount"] = "must be zero or more"
    elif discount_type == VoucherDiscountType.PERCENTAGE and discount > 100:
        errors["discount"] = "percentage cannot exceed 100"
    clean["discount"] = discount

    unlimited = bool(data.get("unlimited_percentage_discount"))
    cap = to_decimal(data.get("maximum_percentage_reduction"), None)
    if discount_type == VoucherDiscountType.PERCENTAGE and not unlimited:
        if cap is None or cap <= 0:
            errors["maximum_percentage_reduction"] = "required and positive unless the percentage is unlimited"
    else:
        cap = None
    clean["unlimited_percentage_discount"] = unlimited if discount_type == VoucherDiscountType.PERCENTAGE else False
    clean["maximum_percentage_reduction"] = cap

    # Usage
    quantity = data.get("quantity", 0)
    try:
        quantity = int(quantity or 0)
    except (TypeError, ValueError):
        quantity = -1
    if quantity < 0:
        errors["quantity"] = "must be zero (unlimited) or more"
    elif voucher is not None and quantity and quantity < (voucher.used or 0):
        errors["quantity"] = f"cannot be below the {voucher.used} uses already made"
    clean["quantity"] = quantity

    # Validity window
    start_time = as_utc(data.get("start_time")) or (voucher.start_time if voucher else None) or now_utc()
    is_lifetime = bool(data.get("is_lifetime"))
    end_time = None if is_lifetime else as_utc(data.get("end_time"))
    if end_time is not None and end_time < start_time:
        errors["end_time"] = "must be after start_time"
    clean["start_time"] = start_time
    clean["end_time"] = end_time
    clean["is_lifetime"] = is_lifetime

    minimum = to_decimal(data.get("minimum_requirements"), None)
    if minimum is None or minimum < 0:
        errors["minimum_requirements"] = "must be zero or more"
    clean["minimum_requirements"] = minimum

    # Stacking
    combinable = bool(data.get("has_combined_usage_limit"))
    max_count = data.get("max_combined_usage_count")
    if combinable:
        try:
            max_count = int(max_count)
        except (TypeError, ValueError):
            max_count = 0
        if max_count < 1:
            errors["max_combined_usage_count"] = "must be at least 1"
    else:
        max_count = None
    clean["has_combined_usage_limit"] = combinable
    clean["max_combined_usage_count"] = max_count

    clean["is_for_new_users_only"] = bool(data.get("is_for_new_users_only"))
    raw_rank = data.get("minimum_rank")
    rank = parse_rank(raw_rank)
    if raw_rank not in (None, "") and rank is None:
        errors["minimum_rank"] = f"invalid rank '{raw_rank}'"
    clean["minimum_rank"] = int(rank) if rank is not None else None

    clean["is_publish"] = bool(data.get("is_publish", True))
    clean["is_show"] = bool(data.get("is_show", True))

    # Owner / grants
    user_id = data.get("user_id")
    grant_ids = sorted(set(data.get("grant_user_ids") or []))
    if clean["type"] == VoucherType.PRIVATE:
        wanted = set(grant_ids) | ({user_id} if user_id else set())
        known = {r[0] for r in db.query(User.id).filter(User.id.in_(list(wanted))).all()} if wanted else set()
        if not wanted and not (voucher and voucher.voucher_users):
            errors["user_id"] = "a private voucher needs an owner or granted users"
        elif wanted - known:
            errors["user_id"] = f"unknown users: {sorted(wanted - known)}"
    else:
        user_id = None
        grant_ids = []
    clean["user_id"] = user_id
    clean["grant_user_ids"] = grant_ids

    # Scope membership
    product_ids = sorted(set(data.get("product_ids") or []))
    combo_ids = sorted(set(data.get("combo_ids") or []))
    if clean["product_scope"] == ProductScope.SPECIFIC_PRODUCTS:
        if not product_ids:
            errors["product_ids"] = "select at least one product"
        else:
            missing = set(product_ids) - existing_ids(db, Product, product_ids)
            if missing:
                errors["product_ids"] = f"unknown products: {sorted(missing)}"
    else:
        product_ids = []
    if clean["combo_scope"] == ComboScope.SPECIFIC_COMBOS:
        if not combo_ids:
            errors["combo_ids"] = "select at least one combo"
        else:
            missing = set(combo_ids) - existing_ids(db, Combo, combo_ids)
            if missing:
                errors["combo_ids"] = f"unknown combos: {sorted(missing)}"
    else:
        combo_ids = []
    clean["product_ids"] = product_ids
    clean["combo_ids"] = combo_ids

    if errors:
        raise ValidationError(errors)

    dup = db.query(Voucher.id).filter(Voucher.code == code)
    if voucher is not None:
        dup = dup.filter(Voucher.id != voucher.id)
    if dup.first():
        raise DuplicateError(f"Voucher code '{code}' already exists")

    return clean


class VoucherAdminService:

    def list_vouchers(self, db: Session, auth: AuthContext) -> List[Voucher]:
        if not auth.has(Permission.VOUCHER_VIEW_ALL):
            auth.require(Permission.VOUCHER_VIEW)
        q = active(db.query(Voucher), Voucher)
        if not auth.has(Permission.VOUCHER_VIEW_ALL):
            q = q.filter(Voucher.create_by == str(auth.user_id))
        return q.order_by(Voucher.id.desc()).all()

    def get_voucher(self, db: Session, voucher_id: int) -> Voucher:
        voucher = active(db.query(Voucher), Voucher).filter(Voucher.id == voucher_id).first()
        if not voucher:
            raise NotFoundError(f"Voucher {voucher_id} not found")
        return voucher

    def create_voucher(self, db: Session, auth: AuthContext, data: dict) -> Voucher:
        auth.require(Permission.VOUCHER_CREATE)
        clean = validate_voucher_data(db, data)

        voucher = Voucher(create_by=str(auth.user_id) if auth.user_id else None, used=0)
        self._assign(db, voucher, clean, auth)
        db.add(voucher)
        db.flush()
        logger.info(f"Voucher {voucher.code} (#{voucher.id}) created by user {auth.user_id}")
        return voucher

    def update_voucher(self, db: Session, auth: AuthContext, voucher_id: int, data: dict) -> Voucher:
        voucher = self.get_voucher(db, voucher_id)
        auth.require_on(Permission.VOUCHER_UPDATE, voucher.create_by)
        clean = validate_voucher_data(db, data, voucher=voucher)
        self._assign(db, voucher, clean, auth)
        voucher.updated_at = now_utc()
        db.flush()
        logger.info(f"Voucher {voucher.code} (#{voucher.id}) updated by user {auth.user_id}")
        return voucher

    def delete_voucher(self, db: Session, auth: AuthContext, voucher_id: int) -> Voucher:
        voucher = self.get_voucher(db, voucher_id)
        auth.require_on(Permission.VOUCHER_DELETE, voucher.create_by)
        voucher.soft_delete()
        db.flush()
        logger.info(f"Voucher {voucher.code} (#{voucher.id}) deleted by user {auth.user_id}")
        return voucher

    def _assign(self, db: Session, voucher: Voucher, clean: dict, auth: AuthContext):
        product_ids = clean.pop("product_ids")
        combo_ids = clean.pop("combo_ids")
        grant_ids = clean.pop("grant_user_ids")
        for key, value in clean.items():
            setattr(voucher, key, value)

        voucher.voucher_products = [
            vp for vp in voucher.voucher_products if vp.product_id in product_ids
        ] + [
            VoucherProduct(product_id=pid) for pid in product_ids
            if pid not in {vp.product_id for vp in voucher.voucher_products}
        ]
        voucher.voucher_combos = [
            vc for vc in voucher.voucher_combos if vc.combo_id in combo_ids
        ] + [
            VoucherCombo(combo_id=cid) for cid in combo_ids
            if cid not in {vc.combo_id for vc in voucher.voucher_combos}
        ]

        granted = {vu.user_id for vu in voucher.voucher_users if not vu.is_saved and not vu.is_deleted}
        for uid in grant_ids:
            if uid not in granted:
                voucher.voucher_users.append(VoucherUser(
                    user_id=uid, is_saved=False,
                    create_by=str(auth.user_id) if auth.user_id else None,
                ))


# Singleton
voucher_admin_service = VoucherAdminService()
