"""
Voucher Service
================
Checkout preview, transactional application to orders, public board,
bookmarks and "my vouchers".

Application flow (apply_vouchers_to_order):
  1. Lock the order (must be PENDING and belong to the caller)
  2. Release the vouchers currently on it
  3. Lock the requested vouchers and re-evaluate them against the order's
     realised lines (never the client's preview)
  4. Resolve stacking, clamp to the order total
  5. Guarded `used + 1` per accepted voucher, OrderVoucher snapshot rows
  6. Recalculate discount / VAT / total bill
All inside run_atomic: conflicts retry the whole sequence.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, selectinload

from common.helpers import now_utc, money_json
from common.exceptions import NotFoundError
from common.models import active
from common.transaction import run_atomic, guarded_update
from modules.admin.service import get_vat_percent
from modules.cart.snapshot import CartSnapshot
from modules.order.models import Order, PAID_STATUSES
from modules.reward.models import RewardRedemption
from modules.user.models import User, CustomerRank
from modules.voucher.combination import resolve_applicable
from modules.voucher.discount import voucher_discount
from modules.voucher.eligibility import CustomerContext, DenialReason, evaluate
from modules.voucher.models import Voucher, VoucherType, VoucherUser, OrderVoucher

logger = logging.getLogger("savory.voucher")

ZERO = Decimal("0")


class OptionGroup(str, enum.Enum):
    PRIVATE = "PRIVATE"    # owned by / granted to the customer
    SAVED = "SAVED"        # public vouchers the customer bookmarked
    PUBLIC = "PUBLIC"      # everything else on the public board


@dataclass
class CheckoutVoucherOption:
    voucher: Voucher
    group: OptionGroup
    eligible: bool
    reason: Optional[DenialReason]
    eligible_subtotal: Decimal
    potential_discount: Decimal
    missing_amount: Decimal

    def to_dict(self) -> dict:
        v = self.voucher
        return {
            "voucher_id": v.id,
            "code": v.code,
            "name": v.name,
            "description": v.description,
            "group": self.group.value,
            "discount_type": v.discount_type,
            "discount": money_json(v.discount),
            "discount_display": v.discount_display,
            "minimum_requirements": money_json(v.minimum_requirements),
            "has_combined_usage_limit": v.has_combined_usage_limit,
            "max_combined_usage_count": v.max_combined_usage_count,
            "is_for_new_users_only": v.is_for_new_users_only,
            "end_time": v.end_time.isoformat() if v.end_time and not v.is_lifetime else None,
            "eligible": self.eligible,
            "reason": self.reason.value if self.reason else None,
            "message": self.reason.message if self.reason else None,
            "eligible_subtotal": money_json(self.eligible_subtotal),
            "potential_discount": money_json(self.potential_discount),
            "missing_amount": money_json(self.missing_amount),
        }


def _voucher_state(voucher: Voucher, now: datetime) -> str:
    if voucher.start_time and voucher.start_time > now:
        return "NOT_STARTED"
    if not voucher.is_temporally_active(now):
        return "EXPIRED"
    if voucher.quantity and voucher.used >= voucher.quantity:
        return "USED_UP"
    return "ACTIVE"


class VoucherService:

    # ------------------------------------------
    # Customer context
    # ------------------------------------------

    def granted_voucher_ids(self, db: Session, user_id: int) -> frozenset:
        rows = active(db.query(VoucherUser.voucher_id), VoucherUser).filter(
            VoucherUser.user_id == user_id,
            VoucherUser.is_saved == False,  # noqa: E712
        ).all()
        return frozenset(r[0] for r in rows)

    def saved_voucher_ids(self, db: Session, user_id: int) -> frozenset:
        rows = active(db.query(VoucherUser.voucher_id), VoucherUser).filter(
            VoucherUser.user_id == user_id,
            VoucherUser.is_saved == True,  # noqa: E712
        ).all()
        return frozenset(r[0] for r in rows)

    def load_customer(self, db: Session, user_id: int, exclude_order_id: Optional[int] = None) -> CustomerContext:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found")

        q = db.query(Order).filter(Order.user_id == user_id, Order.status.in_(list(PAID_STATUSES)))
        if exclude_order_id is not None:
            q = q.filter(Order.id != exclude_order_id)

        return CustomerContext(
            user_id=user.id,
            rank=CustomerRank(user.rank or 0),
            completed_orders=q.count(),
            granted_voucher_ids=self.granted_voucher_ids(db, user_id),
        )

    # ------------------------------------------
    # Checkout preview (read-only)
    # ------------------------------------------

    def get_applicable_vouchers(self, db: Session, user_id: int, cart: CartSnapshot,
                                now: Optional[datetime] = None) -> List[CheckoutVoucherOption]:
        """
        Every voucher the customer could pick at checkout, grouped
        PRIVATE / SAVED / PUBLIC, each with its potential discount or the
        reason it does not apply. Does not write anything.
        """
        now = now or now_utc()
        customer = self.load_customer(db, user_id)
        saved_ids = self.saved_voucher_ids(db, user_id)

        base = active(db.query(Voucher), Voucher).options(
            selectinload(Voucher.voucher_products), selectinload(Voucher.voucher_combos),
        ).filter(Voucher.is_publish == True)  # noqa: E712

        private = base.filter(
            Voucher.type == VoucherType.PRIVATE,
            or_(Voucher.user_id == user_id, Voucher.id.in_(list(customer.granted_voucher_ids))),
        ).all()
        saved = base.filter(
            Voucher.type == VoucherType.PUBLIC,
            Voucher.id.in_(list(saved_ids)),
        ).all() if saved_ids else []
        public = base.filter(
            Voucher.type == VoucherType.PUBLIC,
            Voucher.is_show == True,  # noqa: E712
            or_(Voucher.is_lifetime == True, Voucher.end_time.is_(None), Voucher.end_time >= now),  # noqa: E712
        ).all()

        options = []
        seen = set()
        for group, vouchers in ((OptionGroup.PRIVATE, private), (OptionGroup.SAVED, saved), (OptionGroup.PUBLIC, public)):
            group_options = []
            for voucher in vouchers:
                if voucher.id in seen:
                    continue
                seen.add(voucher.id)
                check = evaluate(customer, voucher, cart, now)
                potential = voucher_discount(voucher, check.eligible_subtotal) if check.eligible else ZERO
                group_options.append(CheckoutVoucherOption(
                    voucher=voucher,
                    group=group,
                    eligible=check.eligible,
                    reason=check.reason,
                    eligible_subtotal=check.eligible_subtotal,
                    potential_discount=potential,
                    missing_amount=check.missing_amount,
                ))
            group_options.sort(key=lambda o: (not o.eligible, -o.potential_discount, o.voucher.id))
            options.extend(group_options)
        return options

    # ------------------------------------------
    # Apply to order (transactional)
    # ------------------------------------------

    def apply_vouchers_to_order(self, db: Session, order_id: int, voucher_ids: Iterable[int], user_id: int,
                                now: Optional[datetime] = None) -> dict:
        """
        Replace the vouchers on a pending order with `voucher_ids`.
        Returns {success, applied_discounts, new_order_total, rejected, reason}.
        Raises ConcurrencyConflictError when retries are exhausted.
        """
        requested = list(voucher_ids)

        def operation(session: Session) -> dict:
            order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
            if not order or order.user_id != user_id or not order.is_modifiable:
                return {
                    "success": False,
                    "reason": DenialReason.ORDER_NOT_MODIFIABLE,
                    "applied_discounts": [],
                    "rejected": [],
                    "new_order_total": order.total_bill if order else None,
                }
            return self.apply_to_locked_order(session, order, requested, now or now_utc())

        return run_atomic(db, operation, label=f"apply_vouchers order#{order_id}")

    def apply_to_locked_order(self, db: Session, order: Order, voucher_ids: Iterable[int], now: datetime) -> dict:
        """Body of apply_vouchers_to_order; the caller owns the transaction and the order lock."""
        self.release_order_vouchers(db, order)

        ids = sorted({int(v) for v in voucher_ids})
        vouchers = []
        if ids:
            vouchers = (
                active(db.query(Voucher), Voucher)
                .filter(Voucher.id.in_(ids), Voucher.is_publish == True)  # noqa: E712
                .order_by(Voucher.id)
                .with_for_update()
                .all()
            )
        found = {v.id for v in vouchers}
        rejected = [{"voucher_id": vid, "reason": DenialReason.VOUCHER_NOT_FOUND} for vid in ids if vid not in found]

        customer = self.load_customer(db, order.user_id, exclude_order_id=order.id)
        combination = resolve_applicable(vouchers, order.to_snapshot(), customer, now)
        rejected.extend({"voucher_id": v.id, "reason": reason} for v, reason in combination.rejected)

        for applied in combination.applied:
            voucher = applied.voucher
            guarded_update(
                db, voucher, {"used": Voucher.used + 1},
                or_(Voucher.quantity == 0, Voucher.used < Voucher.quantity),
            )
            order.order_vouchers.append(OrderVoucher(
                voucher_id=voucher.id,
                discount_amount=applied.discount_amount,
                created_at=now,
            ))
            if voucher.quantity and voucher.used >= voucher.quantity:
                self._mark_redemption_used_by_order(db, voucher.id, order, now)

        order.discount = combination.total_discount
        order.voucher_id = combination.applied[0].voucher.id if combination.applied else None
        order.recalculate_totals(get_vat_percent(db))
        db.flush()

        if combination.applied:
            logger.info(
                f"Order #{order.id}: vouchers {combination.voucher_ids} applied, "
                f"discount={order.discount} clamped={combination.clamped}"
            )
        return {
            "success": bool(combination.applied) or not ids,
            "reason": None,
            "applied_discounts": [
                {"voucher_id": a.voucher.id, "code": a.voucher.code, "discount_amount": a.discount_amount}
                for a in combination.applied
            ],
            "rejected": sorted(rejected, key=lambda r: r["voucher_id"]),
            "new_order_total": order.total_bill,
        }

    def release_order_vouchers(self, db: Session, order: Order) -> int:
        """Give back the usages held by an order (re-application or cancellation)."""
        released = []
        for ov in list(order.order_vouchers):
            redemption = self._minted_redemption(db, ov.voucher_id)
            consumed_by_code = redemption is not None and redemption.is_used and redemption.used_by_order_id is None
            # a code spent at the counter keeps its voucher used up
            if not consumed_by_code:
                db.execute(
                    update(Voucher)
                    .where(Voucher.id == ov.voucher_id, Voucher.used > 0)
                    .values(used=Voucher.used - 1)
                    .execution_options(synchronize_session=False)
                )
            if redemption is not None and redemption.used_by_order_id == order.id:
                redemption.is_used = False
                redemption.used_at = None
                redemption.used_by_order_id = None
            order.order_vouchers.remove(ov)
            released.append(ov.voucher_id)
        if released:
            order.voucher_id = None
            order.discount = ZERO
            db.flush()
            for voucher_id in released:
                db.expire(db.get(Voucher, voucher_id), ["used"])
        return len(released)

    def _minted_redemption(self, db: Session, voucher_id: int) -> Optional[RewardRedemption]:
        return db.query(RewardRedemption).filter(RewardRedemption.voucher_id == voucher_id).first()

    def _mark_redemption_used_by_order(self, db: Session, voucher_id: int, order: Order, now: datetime):
        """A reward-minted voucher used up at checkout spends its redemption code too."""
        redemption = self._minted_redemption(db, voucher_id)
        if redemption is not None and not redemption.is_used:
            redemption.is_used = True
            redemption.used_at = now
            redemption.used_by_order_id = order.id

    # ------------------------------------------
    # Public board / bookmarks
    # ------------------------------------------

    def list_public(self, db: Session, user_id: Optional[int] = None, now: Optional[datetime] = None) -> List[dict]:
        """Published, visible public vouchers that have not ended, newest first."""
        now = now or now_utc()
        saved_ids = self.saved_voucher_ids(db, user_id) if user_id else frozenset()
        vouchers = (
            active(db.query(Voucher), Voucher)
            .filter(
                Voucher.type == VoucherType.PUBLIC,
                Voucher.is_publish == True,  # noqa: E712
                Voucher.is_show == True,  # noqa: E712
                or_(Voucher.is_lifetime == True, Voucher.end_time.is_(None), Voucher.end_time >= now),  # noqa: E712
            )
            .order_by(Voucher.id.desc())
            .all()
        )
        return [self._to_card(v, now, is_saved=v.id in saved_ids) for v in vouchers]

    def save_voucher(self, db: Session, user_id: int, voucher_id: int) -> VoucherUser:
        voucher = active(db.query(Voucher), Voucher).filter(
            Voucher.id == voucher_id,
            Voucher.type == VoucherType.PUBLIC,
            Voucher.is_publish == True,  # noqa: E712
            Voucher.is_show == True,  # noqa: E712
        ).first()
        if not voucher:
            raise NotFoundError("Voucher not found")

        existing = active(db.query(VoucherUser), VoucherUser).filter(
            VoucherUser.voucher_id == voucher_id,
            VoucherUser.user_id == user_id,
            VoucherUser.is_saved == True,  # noqa: E712
        ).first()
        if existing:
            return existing

        link = VoucherUser(voucher_id=voucher_id, user_id=user_id, is_saved=True, create_by=str(user_id))
        db.add(link)
        db.flush()
        return link

    def unsave_voucher(self, db: Session, user_id: int, voucher_id: int) -> bool:
        links = active(db.query(VoucherUser), VoucherUser).filter(
            VoucherUser.voucher_id == voucher_id,
            VoucherUser.user_id == user_id,
            VoucherUser.is_saved == True,  # noqa: E712
        ).all()
        for link in links:
            link.soft_delete()
        db.flush()
        return bool(links)

    def my_vouchers(self, db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
        """Private vouchers (owned or granted) and saved public ones."""
        now = now or now_utc()
        granted = self.granted_voucher_ids(db, user_id)
        saved_ids = self.saved_voucher_ids(db, user_id)

        base = active(db.query(Voucher), Voucher).filter(Voucher.is_publish == True)  # noqa: E712
        private = base.filter(
            Voucher.type == VoucherType.PRIVATE,
            or_(Voucher.user_id == user_id, Voucher.id.in_(list(granted))),
        ).order_by(Voucher.id.desc()).all()
        saved = base.filter(
            Voucher.type == VoucherType.PUBLIC,
            Voucher.id.in_(list(saved_ids)),
        ).order_by(Voucher.id.desc()).all() if saved_ids else []

        return {
            "private": [self._to_card(v, now) for v in private],
            "saved": [self._to_card(v, now, is_saved=True) for v in saved],
        }

    def _to_card(self, voucher: Voucher, now: datetime, is_saved: bool = False) -> dict:
        return {
            "id": voucher.id,
            "code": voucher.code,
            "name": voucher.name,
            "description": voucher.description,
            "type": voucher.type,
            "discount_type": voucher.discount_type,
            "discount_display": voucher.discount_display,
            "minimum_requirements": money_json(voucher.minimum_requirements),
            "start_time": voucher.start_time.isoformat() if voucher.start_time else None,
            "end_time": voucher.end_time.isoformat() if voucher.end_time and not voucher.is_lifetime else None,
            "remaining": voucher.remaining,
            "state": _voucher_state(voucher, now),
            "is_saved": is_saved,
        }


# Singleton
voucher_service = VoucherService()
