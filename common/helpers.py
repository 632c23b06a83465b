"""
Savory - Shared Helpers
========================
Pure utility functions with NO module dependencies.
"""

import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

CENT = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """Treat naive datetimes as UTC; convert aware ones to UTC. None passes through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def to_decimal(value, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce float/int/str/None to Decimal without binary float noise."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def round_money(value) -> Decimal:
    """Currency rounding: 2 decimals, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    """Format a money value with comma separators (no trailing .00 for whole amounts)."""
    if value is None:
        return "0"
    d = round_money(value)
    if d == d.to_integral_value():
        return "{:,}".format(int(d))
    return "{:,.2f}".format(d)


# ==========================================
# Redemption Code Generator
# ==========================================

_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"  # no O/0/I/1/L


def generate_code(length: int = 8, prefix: str = "") -> str:
    """Generate a short, human-readable code."""
    return prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def money_json(value) -> str:
    """Money for JSON payloads: exact 2-decimal string ("1500.00")."""
    return str(round_money(value))


def parse_enum(enum_cls, value, field_name: str, errors: dict, default=None):
    """Enum member for `value`; records an error under `field_name` when invalid."""
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        errors[field_name] = f"invalid value '{value}'"
        return default
