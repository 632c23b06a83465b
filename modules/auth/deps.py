"""
Auth Module - Dependencies
===========================
FastAPI dependencies for user authentication and authorization.
These are injected into route handlers via Depends().

The token comes from the `auth_token` cookie or an `Authorization: Bearer`
header; its `sub` claim is the user id.
"""

from fastapi import Request, Depends, HTTPException, status
from sqlalchemy.orm import Session

from config.database import get_db
from common.security import decode_token
from common.helpers import safe_int
from modules.user.models import User
from modules.admin.permissions import AuthContext, PERMISSION_LABELS, OWN_TO_ALL


def _read_token(request: Request):
    token = request.cookies.get("auth_token")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def get_current_active_user(request: Request, db: Session = Depends(get_db)):
    """
    Identify the current user from the auth token.
    Returns User object or None.
    """
    token = _read_token(request)
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = safe_int(payload.get("sub"))
    if not user_id:
        return None

    return db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712


def require_login(user=Depends(get_current_active_user)):
    """Require any authenticated active user. Raises 401 if not logged in."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    return user


def get_auth_context(user=Depends(get_current_active_user)) -> AuthContext:
    """AuthContext for the caller (anonymous context when not logged in)."""
    return AuthContext.for_user(user)


def require_permission(*perm_keys: str):
    """
    Factory: returns a dependency that checks static permission keys and
    yields the caller's AuthContext. Super admins pass every check; an
    "own" key is also satisfied by its "all" counterpart.

    Usage:
      auth=Depends(require_permission(Permission.VOUCHER_CREATE))
    """

    def dependency(user=Depends(get_current_active_user)) -> AuthContext:
        if not user or not user.is_admin:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")

        auth = AuthContext.for_user(user)
        for key in perm_keys:
            if not (auth.has(key) or auth.has(OWN_TO_ALL.get(key, key))):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"You do not have the permission “{PERMISSION_LABELS.get(key, key)}”",
                )
        return auth

    return dependency
