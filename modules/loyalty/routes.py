"""
Loyalty Routes
===============
Customer summary, leaderboard, and the admin per-user loyalty settings.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login, require_permission
from modules.admin.permissions import AuthContext, Permission
from modules.loyalty.service import loyalty_service, normalize_booster

router = APIRouter(tags=["loyalty"])


class LoyaltySettingsIn(BaseModel):
    booster: Optional[Decimal] = None
    exclude_from_leaderboard: Optional[bool] = None


@router.get("/api/loyalty/me")
def my_loyalty(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return loyalty_service.summary(db, me)


@router.get("/api/loyalty/leaderboard")
def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    users = loyalty_service.leaderboard(db, limit=limit)
    return {
        "leaderboard": [
            {
                "position": i,
                "user_id": u.id,
                "name": u.display_name,
                "total_point": u.total_point,
                "rank": u.customer_rank.name,
            }
            for i, u in enumerate(users, start=1)
        ]
    }


@router.put("/admin/api/users/{user_id}/loyalty-settings")
def update_loyalty_settings(
    user_id: int,
    body: LoyaltySettingsIn,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(Permission.CUSTOMER_MANAGE)),
):
    user = loyalty_service.update_user_settings(
        db, auth, user_id,
        booster=body.booster,
        exclude_from_leaderboard=body.exclude_from_leaderboard,
    )
    db.commit()
    return {
        "user_id": user.id,
        "booster": str(normalize_booster(user.booster)),
        "exclude_from_leaderboard": user.exclude_from_leaderboard,
    }
