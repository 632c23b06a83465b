"""
Savory - Demo Database Seeder
===============================
Seeds a small storefront for local testing. Idempotent: rows that already
exist (matched by name / code / email) are left alone.

Usage:
    python scripts/seed.py

Seeded:
  1. Admin + staff + test customers
  2. System settings (VAT, loyalty rates, rank thresholds)
  3. Catalog (categories, products with types, extras, combos)
  4. Vouchers (public, private, combinable, new-user)
  5. Loyalty rewards
"""

import sys
import os
import json
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from config.settings import VAT_PERCENT, LOYALTY_POINT_RATE, LOYALTY_EXP_RATE
from modules.admin.models import SystemSetting
from modules.admin.permissions import Permission
from modules.catalog.models import Category, Product, ProductType, ProductExtra, Combo, ComboItem, PriceDiscountType
from modules.reward.models import Reward, RewardProduct, RewardType, ValidityUnit
from modules.user.models import User, CustomerRank
from modules.voucher.models import (
    Voucher, VoucherProduct, VoucherUser, VoucherType, ProductScope, ComboScope, VoucherDiscountType,
)


def _get_or_add(db, model, lookup: dict, **values):
    existing = db.query(model).filter_by(**lookup).first()
    if existing:
        print(f"  = exists: {model.__name__} {lookup}")
        return existing
    obj = model(**lookup, **values)
    db.add(obj)
    db.flush()
    print(f"  + {model.__name__} {lookup}")
    return obj


def seed():
    db = SessionLocal()
    try:
        print("=" * 50)
        print("  Savory - Demo Seeder")
        print("=" * 50)

        Base.metadata.create_all(bind=engine)

        # ==========================================
        # 1. Users
        # ==========================================
        print("\n[1/5] Users")
        _get_or_add(db, User, {"email": "admin@savory.local"},
                    full_name="System Admin", is_admin=True, admin_role="admin")
        staff = _get_or_add(db, User, {"email": "staff@savory.local"},
                            full_name="Voucher Staff", is_admin=True, admin_role="staff")
        staff.permissions = [
            Permission.VOUCHER_VIEW, Permission.VOUCHER_CREATE,
            Permission.VOUCHER_UPDATE, Permission.VOUCHER_DELETE,
            Permission.REWARD_VIEW,
        ]
        alice = _get_or_add(db, User, {"email": "alice@example.com"}, full_name="Alice Customer",
                            point=500, total_point=500, exp=1_200_000, rank=int(CustomerRank.BRONZE))
        _get_or_add(db, User, {"email": "bob@example.com"}, full_name="Bob Customer")

        # ==========================================
        # 2. System Settings
        # ==========================================
        print("\n[2/5] System Settings")
        settings_data = {
            "vat_percent": (str(VAT_PERCENT), "VAT percent applied to the discounted order amount"),
            "loyalty_point_rate": (str(LOYALTY_POINT_RATE), "Points earned per currency unit paid"),
            "loyalty_exp_rate": (str(LOYALTY_EXP_RATE), "Experience earned per currency unit paid"),
            "rank_thresholds": (
                json.dumps({"BRONZE": 1_000_000, "SILVER": 3_000_000, "GOLD": 7_000_000, "DIAMOND": 15_000_000}),
                "Experience required per rank",
            ),
        }
        for key, (value, description) in settings_data.items():
            _get_or_add(db, SystemSetting, {"key": key}, value=value, description=description)

        # ==========================================
        # 3. Catalog
        # ==========================================
        print("\n[3/5] Catalog")
        noodles = _get_or_add(db, Category, {"name": "Noodles"}, sort_order=1)
        drinks = _get_or_add(db, Category, {"name": "Drinks"}, sort_order=2)

        pho = _get_or_add(db, Product, {"name": "Beef Pho"}, category_id=noodles.id, price=Decimal("65000"))
        _get_or_add(db, ProductType, {"name": "Large", "product_id": pho.id}, price=Decimal("80000"))
        ramen = _get_or_add(db, Product, {"name": "Shoyu Ramen"}, category_id=noodles.id,
                            price=Decimal("90000"), discount_type=PriceDiscountType.PERCENT, discount=Decimal("10"))
        tea = _get_or_add(db, Product, {"name": "Iced Tea"}, category_id=drinks.id, price=Decimal("15000"))
        _get_or_add(db, ProductExtra, {"name": "Extra Egg"}, price=Decimal("8000"), is_publish=True)

        combo = _get_or_add(db, Combo, {"name": "Pho + Tea"}, price=Decimal("75000"), stock=100)
        if not combo.items:
            combo.items = [ComboItem(product_id=pho.id, quantity=1), ComboItem(product_id=tea.id, quantity=1)]

        # ==========================================
        # 4. Vouchers
        # ==========================================
        print("\n[4/5] Vouchers")
        _get_or_add(db, Voucher, {"code": "WELCOME10"},
                    name="10% off for new customers", type=VoucherType.PUBLIC,
                    discount_type=VoucherDiscountType.PERCENTAGE, discount=Decimal("10"),
                    maximum_percentage_reduction=Decimal("20000"), is_for_new_users_only=True,
                    is_lifetime=True, quantity=0)
        _get_or_add(db, Voucher, {"code": "NOODLE5K"},
                    name="5,000 off noodles", type=VoucherType.PUBLIC,
                    product_scope=ProductScope.SPECIFIC_PRODUCTS, combo_scope=ComboScope.ALL_COMBOS,
                    discount_type=VoucherDiscountType.MONEY, discount=Decimal("5000"),
                    has_combined_usage_limit=True, max_combined_usage_count=2,
                    is_lifetime=True, quantity=100)
        noodle = db.query(Voucher).filter(Voucher.code == "NOODLE5K").first()
        if not noodle.voucher_products:
            noodle.voucher_products = [VoucherProduct(product_id=pho.id), VoucherProduct(product_id=ramen.id)]
        vip = _get_or_add(db, Voucher, {"code": "ALICEVIP"},
                          name="Bronze thank-you", type=VoucherType.PRIVATE, user_id=alice.id,
                          discount_type=VoucherDiscountType.MONEY, discount=Decimal("20000"),
                          minimum_requirements=Decimal("100000"), minimum_rank=int(CustomerRank.BRONZE),
                          is_lifetime=True, quantity=1, is_show=False)
        if not vip.voucher_users:
            vip.voucher_users = [VoucherUser(user_id=alice.id, is_saved=False)]

        # ==========================================
        # 5. Rewards
        # ==========================================
        print("\n[5/5] Rewards")
        _get_or_add(db, Reward, {"name": "15,000 off your next order"},
                    type=RewardType.VOUCHER, point_cost=100, quantity=50,
                    validity_value=30, validity_unit=ValidityUnit.DAY,
                    voucher_discount_type=VoucherDiscountType.MONEY, voucher_discount=Decimal("15000"),
                    voucher_quantity=1)
        free_tea = _get_or_add(db, Reward, {"name": "Free iced tea"},
                               type=RewardType.PRODUCT, point_cost=60, is_quantity_unlimited=True,
                               validity_value=2, validity_unit=ValidityUnit.WEEK)
        if not free_tea.reward_products:
            free_tea.reward_products = [RewardProduct(product_id=tea.id)]

        db.commit()
        print("\nSeed completed successfully!")
    except Exception as e:
        db.rollback()
        print(f"\nSeed failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
