"""
Admin Permissions Registry
============================
Static set of permission keys, their groups and labels, plus the
AuthContext object that core operations receive instead of inspecting the
request.

"Own vs all" pairs: `vouchers.update` lets a staff member edit what they
created, `vouchers.update_all` lets them edit anything.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from common.exceptions import AuthorizationError


class Permission:
    VOUCHER_VIEW = "vouchers.view"
    VOUCHER_VIEW_ALL = "vouchers.view_all"
    VOUCHER_CREATE = "vouchers.create"
    VOUCHER_UPDATE = "vouchers.update"
    VOUCHER_UPDATE_ALL = "vouchers.update_all"
    VOUCHER_DELETE = "vouchers.delete"
    VOUCHER_DELETE_ALL = "vouchers.delete_all"

    REWARD_VIEW = "rewards.view"
    REWARD_CREATE = "rewards.create"
    REWARD_UPDATE = "rewards.update"
    REWARD_UPDATE_ALL = "rewards.update_all"
    REWARD_DELETE = "rewards.delete"
    REWARD_DELETE_ALL = "rewards.delete_all"

    ORDER_VIEW_ALL = "orders.view_all"
    ORDER_CHANGE_STATUS_ALL = "orders.change_status_all"

    CUSTOMER_MANAGE = "customers.manage"
    STATISTICS_VIEW = "statistics.view"


# --- Group registry (key -> label) ---

PERMISSION_GROUPS = {
    "Vouchers": {
        Permission.VOUCHER_VIEW:       "View own vouchers",
        Permission.VOUCHER_VIEW_ALL:   "View all vouchers",
        Permission.VOUCHER_CREATE:     "Create vouchers",
        Permission.VOUCHER_UPDATE:     "Edit own vouchers",
        Permission.VOUCHER_UPDATE_ALL: "Edit any voucher",
        Permission.VOUCHER_DELETE:     "Delete own vouchers",
        Permission.VOUCHER_DELETE_ALL: "Delete any voucher",
    },
    "Rewards": {
        Permission.REWARD_VIEW:       "View rewards",
        Permission.REWARD_CREATE:     "Create rewards",
        Permission.REWARD_UPDATE:     "Edit own rewards",
        Permission.REWARD_UPDATE_ALL: "Edit any reward",
        Permission.REWARD_DELETE:     "Delete own rewards",
        Permission.REWARD_DELETE_ALL: "Delete any reward",
    },
    "Orders & Others": {
        Permission.ORDER_VIEW_ALL:          "View all orders",
        Permission.ORDER_CHANGE_STATUS_ALL: "Change status of any order",
        Permission.CUSTOMER_MANAGE:         "Manage customer loyalty settings",
        Permission.STATISTICS_VIEW:         "View statistics",
    },
}

PERMISSION_LABELS = {key: label for group in PERMISSION_GROUPS.values() for key, label in group.items()}

ALL_PERMISSION_KEYS = frozenset(PERMISSION_LABELS)

# own-permission -> its "any entity" counterpart
OWN_TO_ALL = {
    Permission.VOUCHER_VIEW: Permission.VOUCHER_VIEW_ALL,
    Permission.VOUCHER_UPDATE: Permission.VOUCHER_UPDATE_ALL,
    Permission.VOUCHER_DELETE: Permission.VOUCHER_DELETE_ALL,
    Permission.REWARD_UPDATE: Permission.REWARD_UPDATE_ALL,
    Permission.REWARD_DELETE: Permission.REWARD_DELETE_ALL,
}


def normalize_permissions(keys) -> list:
    """Drop unknown keys (stale data in the users.permissions JSON)."""
    return sorted(k for k in (keys or []) if k in ALL_PERMISSION_KEYS)


# ==========================================
# AuthContext
# ==========================================

@dataclass(frozen=True)
class AuthContext:
    user_id: Optional[int]
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    is_super_admin: bool = False

    @classmethod
    def for_user(cls, user) -> "AuthContext":
        if user is None:
            return cls(user_id=None)
        return cls(
            user_id=user.id,
            permissions=frozenset(normalize_permissions(user.permissions)) if user.is_admin else frozenset(),
            is_super_admin=user.is_super_admin,
        )

    @classmethod
    def system(cls) -> "AuthContext":
        """Context for scripts and internal jobs."""
        return cls(user_id=None, permissions=ALL_PERMISSION_KEYS, is_super_admin=True)

    def has(self, key: str) -> bool:
        return self.is_super_admin or key in self.permissions

    def require(self, key: str) -> None:
        if not self.has(key):
            raise AuthorizationError(key)

    def can_on(self, key: str, owner_id) -> bool:
        """Own/all check: the "all" variant, or the own variant on an entity this user created."""
        all_key = OWN_TO_ALL.get(key)
        if all_key and self.has(all_key):
            return True
        if not self.has(key):
            return False
        return owner_id is not None and str(owner_id) == str(self.user_id)

    def require_on(self, key: str, owner_id) -> None:
        if not self.can_on(key, owner_id):
            raise AuthorizationError(OWN_TO_ALL.get(key, key))
