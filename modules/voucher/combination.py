"""
Voucher Module - Combination Resolver
======================================
Picks which of several requested vouchers may stack on one order and what
each one is worth.

Rules:
  - Candidates are considered in ascending voucher id.
  - At most one voucher without a combined usage limit per order.
  - A voucher with `has_combined_usage_limit` caps the total number of
    vouchers in the order (itself included) at `max_combined_usage_count`;
    a candidate is rejected if accepting it would exceed its own cap or the
    cap of any voucher already accepted.
  - Each accepted voucher is priced against its own full eligible subtotal
    (stacking is additive), then the sum is clamped to the cart total by
    scaling every discount down proportionally (largest remainder, cents).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from common.helpers import CENT, round_money
from modules.cart.snapshot import CartSnapshot
from modules.voucher.discount import voucher_discount
from modules.voucher.eligibility import (
    CustomerContext, DenialReason, EligibilityResult, evaluate,
)

ZERO = Decimal("0")


@dataclass
class AppliedDiscount:
    voucher: object
    eligible_subtotal: Decimal
    computed_amount: Decimal
    discount_amount: Decimal


@dataclass
class CombinationResult:
    applied: List[AppliedDiscount] = field(default_factory=list)
    rejected: List[Tuple[object, DenialReason]] = field(default_factory=list)
    clamped: bool = False

    @property
    def total_discount(self) -> Decimal:
        return round_money(sum((a.discount_amount for a in self.applied), ZERO))

    @property
    def voucher_ids(self) -> List[int]:
        return [a.voucher.id for a in self.applied]

    def reason_for(self, voucher_id: int) -> Optional[DenialReason]:
        for voucher, reason in self.rejected:
            if voucher.id == voucher_id:
                return reason
        return None


def _cap(voucher) -> Optional[int]:
    if not voucher.has_combined_usage_limit:
        return None
    return voucher.max_combined_usage_count or None


def _violates_stacking(candidate, accepted: List[AppliedDiscount]) -> bool:
    new_size = len(accepted) + 1

    if candidate.has_combined_usage_limit:
        own_cap = _cap(candidate)
        if own_cap is not None and new_size > own_cap:
            return True
    elif any(not a.voucher.has_combined_usage_limit for a in accepted):
        return True

    for a in accepted:
        cap = _cap(a.voucher)
        if cap is not None and new_size > cap:
            return True
    return False


def scale_to_total(amounts: List[Decimal], target: Decimal) -> List[Decimal]:
    """
    Scale `amounts` down so they sum to exactly `target`, keeping their
    proportions. Works in whole cents; leftover cents go to the largest
    remainders (ties to the earlier entry).
    """
    cents = [int((round_money(a) / CENT).to_integral_value()) for a in amounts]
    target_cents = int((round_money(max(target, ZERO)) / CENT).to_integral_value())
    total_cents = sum(cents)
    if total_cents <= target_cents:
        return [round_money(a) for a in amounts]
    if total_cents == 0 or target_cents == 0:
        return [round_money(ZERO) for _ in amounts]

    shares = [c * target_cents // total_cents for c in cents]
    remainders = [c * target_cents % total_cents for c in cents]
    leftover = target_cents - sum(shares)
    by_remainder = sorted(range(len(cents)), key=lambda i: (-remainders[i], i))
    for i in by_remainder[:leftover]:
        shares[i] += 1
    return [round_money(Decimal(s) * CENT) for s in shares]


def resolve_applicable(
    candidates: Iterable,
    cart: CartSnapshot,
    customer: CustomerContext,
    now: datetime,
) -> CombinationResult:
    result = CombinationResult()
    seen = set()

    for voucher in sorted(candidates, key=lambda v: v.id):
        if voucher.id in seen:
            continue
        seen.add(voucher.id)

        check: EligibilityResult = evaluate(customer, voucher, cart, now)
        if not check.eligible:
            result.rejected.append((voucher, check.reason))
            continue

        if _violates_stacking(voucher, result.applied):
            result.rejected.append((voucher, DenialReason.COMBINATION_LIMIT_EXCEEDED))
            continue

        amount = voucher_discount(voucher, check.eligible_subtotal)
        result.applied.append(AppliedDiscount(voucher, check.eligible_subtotal, amount, amount))

    order_total = cart.total
    if sum((a.computed_amount for a in result.applied), ZERO) > order_total:
        scaled = scale_to_total([a.computed_amount for a in result.applied], order_total)
        for applied, amount in zip(result.applied, scaled):
            applied.discount_amount = amount
        result.clamped = True

    return result
