"""
Loyalty Module - Ranks & Rates
===============================
Experience thresholds per rank and the point/exp accrual rates.

Defaults come from config.settings (RANK_THRESHOLDS, LOYALTY_*_RATE); the
`rank_thresholds`, `loyalty_point_rate` and `loyalty_exp_rate` system
settings override them at runtime.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from config.settings import RANK_THRESHOLDS, DEFAULT_RANK_THRESHOLDS, LOYALTY_POINT_RATE, LOYALTY_EXP_RATE
from modules.admin.service import parse_decimal_setting, parse_json_setting
from modules.user.models import CustomerRank, parse_rank

logger = logging.getLogger("savory.loyalty")


def parse_thresholds(raw) -> Dict[CustomerRank, int]:
    """
    Parse "BRONZE:1000000,SILVER:3000000,..." (or a {"BRONZE": 1000000} dict).
    Raises ValueError on unknown ranks, negative values, or thresholds that
    do not increase with the rank.
    """
    if isinstance(raw, dict):
        pairs = list(raw.items())
    else:
        pairs = []
        for chunk in str(raw or "").split(","):
            if not chunk.strip():
                continue
            name, _, value = chunk.partition(":")
            pairs.append((name, value))

    thresholds = {}
    for name, value in pairs:
        rank = parse_rank(name)
        if rank is None or rank == CustomerRank.POTENTIAL:
            raise ValueError(f"unknown rank '{name}'")
        exp = int(str(value).strip())
        if exp < 0:
            raise ValueError(f"negative threshold for {rank.name}")
        thresholds[rank] = exp

    previous = -1
    for rank in sorted(thresholds):
        if thresholds[rank] <= previous:
            raise ValueError(f"threshold for {rank.name} must be above the lower ranks")
        previous = thresholds[rank]
    return thresholds


def _default_thresholds() -> Dict[CustomerRank, int]:
    try:
        return parse_thresholds(RANK_THRESHOLDS)
    except ValueError as e:
        logger.error(f"Invalid RANK_THRESHOLDS ({e}), using built-in defaults")
        return parse_thresholds(DEFAULT_RANK_THRESHOLDS)


def load_thresholds(db: Optional[Session] = None) -> Dict[CustomerRank, int]:
    if db is not None:
        override = parse_json_setting(db, "rank_thresholds")
        if override:
            try:
                return parse_thresholds(override)
            except (ValueError, TypeError) as e:
                logger.warning(f"Ignoring invalid rank_thresholds setting: {e}")
    return _default_thresholds()


def load_rates(db: Session) -> Tuple[Decimal, Decimal]:
    """(point_rate, exp_rate)"""
    return (
        parse_decimal_setting(db, "loyalty_point_rate", LOYALTY_POINT_RATE),
        parse_decimal_setting(db, "loyalty_exp_rate", LOYALTY_EXP_RATE),
    )


def calculate_rank(exp: int, thresholds: Dict[CustomerRank, int]) -> CustomerRank:
    """Highest rank whose threshold is <= exp. POTENTIAL is the floor."""
    result = CustomerRank.POTENTIAL
    for rank in sorted(thresholds):
        if exp >= thresholds[rank]:
            result = rank
    return result


def next_rank_info(exp: int, thresholds: Dict[CustomerRank, int]) -> Optional[Tuple[CustomerRank, int]]:
    """(next rank, exp required for it), or None at the top rank."""
    current = calculate_rank(exp, thresholds)
    for rank in sorted(thresholds):
        if rank > current:
            return rank, thresholds[rank]
    return None
