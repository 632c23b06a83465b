"""
Savory - Security Utilities
============================
JWT token decoding/encoding for the auth dependencies.

Login and token issuance live in the identity provider; this module only
needs to read the token it hands us (and create one for tests/scripts).
"""

import logging
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError

from config.settings import SECRET_KEY, ALGORITHM
from common.helpers import now_utc

logger = logging.getLogger("savory.security")

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


def create_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Create a signed JWT with an expiry claim."""
    payload = data.copy()
    payload["exp"] = now_utc() + timedelta(minutes=expires_minutes)
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode JWT. Returns payload dict or None if invalid/expired."""
    if not SECRET_KEY:
        return None
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        return None
