"""
Cart Module - Snapshot Types
=============================
Immutable view of a cart or order handed to the voucher engine.

The engine never reads carts/orders from the DB itself: callers build a
CartSnapshot from current state and pass it in.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from common.helpers import round_money


class LineKind(str, enum.Enum):
    PRODUCT = "PRODUCT"
    COMBO = "COMBO"


@dataclass(frozen=True)
class LineItem:
    kind: LineKind
    item_id: int
    unit_price: Decimal
    quantity: int
    line_id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    lines: Tuple[LineItem, ...] = ()

    @property
    def total(self) -> Decimal:
        return round_money(sum((line.line_total for line in self.lines), Decimal("0")))

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @classmethod
    def of(cls, *lines: LineItem) -> "CartSnapshot":
        return cls(lines=tuple(lines))
