"""
Reward Module - Admin Service
==============================
Create / edit / soft-delete rewards and their embedded voucher template.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import ValidationError, NotFoundError
from common.helpers import now_utc, to_decimal, parse_enum
from common.models import active, existing_ids
from modules.admin.permissions import AuthContext, Permission
from modules.catalog.models import Product, Combo
from modules.reward.models import Reward, RewardProduct, RewardCombo, RewardType, ValidityUnit
from modules.user.models import parse_rank
from modules.voucher.models import ProductScope, ComboScope, VoucherDiscountType

logger = logging.getLogger("savory.reward")


def _int_field(data: dict, key: str, errors: dict, minimum: int = 0, default: int = 0) -> int:
    raw = data.get(key, default)
    try:
        value = int(raw if raw not in (None, "") else default)
    except (TypeError, ValueError):
        errors[key] = "must be a whole number"
        return default
    if value < minimum:
        errors[key] = f"must be at least {minimum}"
    return value


def validate_reward_data(db: Session, data: dict, reward: Optional[Reward] = None) -> dict:
    """Check and normalise admin input. Raises ValidationError (field -> message)."""
    errors = {}
    clean = {}

    name = (data.get("name") or "").strip()
    if not name:
        errors["name"] = "required"
    clean["name"] = name
    clean["description"] = (data.get("description") or "").strip() or None
    reward_type = parse_enum(RewardType, data.get("type"), "type", errors, RewardType.VOUCHER)
    clean["type"] = reward_type

    clean["point_cost"] = _int_field(data, "point_cost", errors)
    clean["is_quantity_unlimited"] = bool(data.get("is_quantity_unlimited"))
    quantity = _int_field(data, "quantity", errors)
    if not clean["is_quantity_unlimited"] and reward is not None and quantity and quantity < (reward.redeemed or 0):
        errors["quantity"] = f"cannot be below the {reward.redeemed} units already redeemed"
    clean["quantity"] = quantity

    raw_rank = data.get("minimum_rank")
    rank = parse_rank(raw_rank)
    if raw_rank not in (None, "") and rank is None:
        errors["minimum_rank"] = f"invalid rank '{raw_rank}'"
    clean["minimum_rank"] = int(rank) if rank is not None else None

    # Validity
    unit = parse_enum(ValidityUnit, data.get("validity_unit"), "validity_unit", errors, ValidityUnit.DAY)
    unlimited_validity = bool(data.get("is_validity_unlimited")) or unit == ValidityUnit.FOREVER
    clean["validity_unit"] = unit
    clean["is_validity_unlimited"] = unlimited_validity
    clean["validity_value"] = (
        _int_field(data, "validity_value", errors, minimum=1, default=30) if not unlimited_validity
        else int(data.get("validity_value") or 1)
    )
    clean["is_publish"] = bool(data.get("is_publish", True))

    # Voucher template
    clean["voucher_product_scope"] = parse_enum(ProductScope, data.get("voucher_product_scope"),
                                                "voucher_product_scope", errors, ProductScope.ALL_PRODUCTS)
    clean["voucher_combo_scope"] = parse_enum(ComboScope, data.get("voucher_combo_scope"),
                                              "voucher_combo_scope", errors, ComboScope.ALL_COMBOS)
    discount_type = parse_enum(VoucherDiscountType, data.get("voucher_discount_type"),
                               "voucher_discount_type", errors, VoucherDiscountType.MONEY)
    clean["voucher_discount_type"] = discount_type

    discount = to_decimal(data.get("voucher_discount"), None)
    minimum = to_decimal(data.get("voucher_minimum_requirements"), None)
    unlimited_pct = bool(data.get("voucher_unlimited_percentage_discount"))
    cap = to_decimal(data.get("voucher_maximum_percentage_reduction"), None)
    combinable = bool(data.get("voucher_has_combined_usage_limit"))
    max_count = data.get("voucher_max_combined_usage_count")

    if reward_type == RewardType.VOUCHER:
        if discount is None or discount <= 0:
            errors["voucher_discount"] = "must be positive"
        elif discount_type == VoucherDiscountType.PERCENTAGE and discount > 100:
            errors["voucher_discount"] = "percentage cannot exceed 100"
        if minimum is None or minimum < 0:
            errors["voucher_minimum_requirements"] = "must be zero or more"
        if discount_type == VoucherDiscountType.PERCENTAGE and not unlimited_pct:
            if cap is None or cap <= 0:
                errors["voucher_maximum_percentage_reduction"] = "required and positive unless unlimited"
        else:
            cap = None
        if combinable:
            try:
                max_count = int(max_count)
            except (TypeError, ValueError):
                max_count = 0
            if max_count < 1:
                errors["voucher_max_combined_usage_count"] = "must be at least 1"
        else:
            max_count = None
        clean["voucher_quantity"] = _int_field(data, "voucher_quantity", errors, minimum=1, default=1)
    else:
        cap = None
        max_count = None if not combinable else max_count
        clean["voucher_quantity"] = 1

    clean["voucher_discount"] = discount if discount is not None else 0
    clean["voucher_minimum_requirements"] = minimum if minimum is not None else 0
    clean["voucher_unlimited_percentage_discount"] = unlimited_pct if discount_type == VoucherDiscountType.PERCENTAGE else False
    clean["voucher_maximum_percentage_reduction"] = cap
    clean["voucher_has_combined_usage_limit"] = combinable
    clean["voucher_max_combined_usage_count"] = max_count if combinable else None
    clean["voucher_is_for_new_users_only"] = bool(data.get("voucher_is_for_new_users_only"))

    # Grant scope
    product_ids = sorted(set(data.get("product_ids") or []))
    combo_ids = sorted(set(data.get("combo_ids") or []))
    needs_products = (
        reward_type == RewardType.PRODUCT
        or (reward_type == RewardType.VOUCHER and clean["voucher_product_scope"] == ProductScope.SPECIFIC_PRODUCTS)
    )
    needs_combos = (
        reward_type == RewardType.COMBO
        or (reward_type == RewardType.VOUCHER and clean["voucher_combo_scope"] == ComboScope.SPECIFIC_COMBOS)
    )
    if needs_products and not product_ids:
        errors["product_ids"] = "select at least one product"
    if needs_combos and not combo_ids:
        errors["combo_ids"] = "select at least one combo"
    missing = set(product_ids) - existing_ids(db, Product, product_ids)
    if missing:
        errors["product_ids"] = f"unknown products: {sorted(missing)}"
    missing = set(combo_ids) - existing_ids(db, Combo, combo_ids)
    if missing:
        errors["combo_ids"] = f"unknown combos: {sorted(missing)}"
    clean["product_ids"] = product_ids
    clean["combo_ids"] = combo_ids

    if errors:
        raise ValidationError(errors)
    return clean


class RewardAdminService:

    def list_rewards(self, db: Session, auth: AuthContext) -> List[Reward]:
        auth.require(Permission.REWARD_VIEW)
        return active(db.query(Reward), Reward).order_by(Reward.id.desc()).all()

    def get_reward(self, db: Session, reward_id: int) -> Reward:
        reward = active(db.query(Reward), Reward).filter(Reward.id == reward_id).first()
        if not reward:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    def create_reward(self, db: Session, auth: AuthContext, data: dict) -> Reward:
        auth.require(Permission.REWARD_CREATE)
        clean = validate_reward_data(db, data)
        reward = Reward(create_by=str(auth.user_id) if auth.user_id else None, redeemed=0)
        self._assign(reward, clean)
        db.add(reward)
        db.flush()
        logger.info(f"Reward '{reward.name}' (#{reward.id}) created by user {auth.user_id}")
        return reward

    def update_reward(self, db: Session, auth: AuthContext, reward_id: int, data: dict) -> Reward:
        reward = self.get_reward(db, reward_id)
        auth.require_on(Permission.REWARD_UPDATE, reward.create_by)
        clean = validate_reward_data(db, data, reward=reward)
        self._assign(reward, clean)
        reward.updated_at = now_utc()
        db.flush()
        logger.info(f"Reward '{reward.name}' (#{reward.id}) updated by user {auth.user_id}")
        return reward

    def delete_reward(self, db: Session, auth: AuthContext, reward_id: int) -> Reward:
        reward = self.get_reward(db, reward_id)
        auth.require_on(Permission.REWARD_DELETE, reward.create_by)
        reward.soft_delete()
        db.flush()
        logger.info(f"Reward '{reward.name}' (#{reward.id}) deleted by user {auth.user_id}")
        return reward

    def _assign(self, reward: Reward, clean: dict):
        product_ids = clean.pop("product_ids")
        combo_ids = clean.pop("combo_ids")
        for key, value in clean.items():
            setattr(reward, key, value)
        current_products = {rp.product_id for rp in reward.reward_products}
        reward.reward_products = [rp for rp in reward.reward_products if rp.product_id in product_ids] + [
            RewardProduct(product_id=pid) for pid in product_ids if pid not in current_products
        ]
        current_combos = {rc.combo_id for rc in reward.reward_combos}
        reward.reward_combos = [rc for rc in reward.reward_combos if rc.combo_id in combo_ids] + [
            RewardCombo(combo_id=cid) for cid in combo_ids if cid not in current_combos
        ]


# Singleton
reward_admin_service = RewardAdminService()
