"""
Admin Module - Settings Store
==============================
Runtime overrides on top of config.settings, read with an existing DB session.
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from config.settings import VAT_PERCENT
from modules.admin.models import SystemSetting


def get_setting_from_db(db: Session, key: str, default: str = "") -> str:
    """Fetch a system setting using an existing DB session."""
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    return setting.value if setting else default


def parse_int_setting(db: Session, key: str, default: int = 0) -> int:
    """Fetch a system setting and parse it as integer."""
    val = get_setting_from_db(db, key, str(default))
    try:
        return int(str(val).strip())
    except (ValueError, TypeError):
        return default


def parse_decimal_setting(db: Session, key: str, default: Decimal) -> Decimal:
    """Fetch a system setting and parse it as Decimal."""
    val = get_setting_from_db(db, key, "")
    if not str(val).strip():
        return default
    try:
        return Decimal(str(val).strip())
    except (InvalidOperation, ValueError):
        return default


def parse_json_setting(db: Session, key: str) -> Optional[dict]:
    """Fetch a JSON object setting. Returns None when missing or malformed."""
    val = get_setting_from_db(db, key, "")
    if not val:
        return None
    try:
        data = json.loads(val)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def set_setting(db: Session, key: str, value: str, description: str = None) -> SystemSetting:
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if setting:
        setting.value = value
        if description is not None:
            setting.description = description
    else:
        setting = SystemSetting(key=key, value=value, description=description)
        db.add(setting)
    db.flush()
    return setting


def get_vat_percent(db: Session) -> Decimal:
    """VAT percent: `vat_percent` system setting, falling back to VAT_PERCENT."""
    return parse_decimal_setting(db, "vat_percent", VAT_PERCENT)
