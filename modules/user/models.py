"""
User Module - User Model
=========================
Single users table for customers and staff, extended with loyalty fields.

Authentication itself is handled by the identity provider; this table only
keeps what the storefront and the loyalty engine need.
"""

import enum
import json

from sqlalchemy import (
    Column, Integer, String, Boolean, BigInteger, Numeric, Text, Index, text,
)
from sqlalchemy.sql import func

from config.database import Base, UTCDateTime
from common.helpers import now_utc


class CustomerRank(enum.IntEnum):
    """Ordered customer tiers. Stored as the ordinal so SQL can compare ranks."""
    POTENTIAL = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    PLATINUM = 4
    DIAMOND = 5
    EMERALD = 6

    @property
    def label(self) -> str:
        return RANK_LABELS.get(self, self.name.title())


RANK_LABELS = {
    CustomerRank.POTENTIAL: "Potential customer",
    CustomerRank.BRONZE: "Bronze member",
    CustomerRank.SILVER: "Silver member",
    CustomerRank.GOLD: "Gold member",
    CustomerRank.PLATINUM: "Platinum member",
    CustomerRank.DIAMOND: "Diamond member",
    CustomerRank.EMERALD: "Emerald member",
}


def parse_rank(value):
    """Accept a CustomerRank, its ordinal, or its name. Returns None for empty/invalid input."""
    if value is None or value == "":
        return None
    if isinstance(value, CustomerRank):
        return value
    try:
        return CustomerRank(int(value))
    except (ValueError, TypeError):
        pass
    try:
        return CustomerRank[str(value).strip().upper()]
    except KeyError:
        return None


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # === Identity ===
    email = Column(String(200), unique=True, nullable=True, index=True)
    phone = Column(String(11), nullable=True)
    full_name = Column(String(200), nullable=True)

    # === Role Flags ===
    is_active = Column(Boolean, default=True, server_default="true", nullable=False, index=True)
    is_admin = Column(Boolean, default=False, server_default="false", nullable=False, index=True)
    admin_role = Column(String, nullable=True)           # "admin" | "staff"
    _permissions = Column("permissions", Text, nullable=True)  # JSON list

    # === Loyalty ===
    point = Column(BigInteger, default=0, server_default=text("0"), nullable=False)
    total_point = Column(BigInteger, default=0, server_default=text("0"), nullable=False)
    exp = Column(BigInteger, default=0, server_default=text("0"), nullable=False)
    rank = Column(Integer, default=CustomerRank.POTENTIAL, server_default=text("0"), nullable=False)
    booster = Column(Numeric(6, 2), default=1, server_default=text("1"), nullable=False)
    exclude_from_leaderboard = Column(Boolean, default=False, server_default="false", nullable=False)

    # === Audit ===
    created_at = Column(UTCDateTime, server_default=func.now(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime, onupdate=now_utc)

    __table_args__ = (
        Index("ix_users_total_point", "total_point"),
    )

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or self.email or f"User #{self.id}"

    @property
    def customer_rank(self) -> CustomerRank:
        return CustomerRank(self.rank or 0)

    # === Permissions ===

    @property
    def is_super_admin(self) -> bool:
        return bool(self.is_admin and self.admin_role == "admin")

    @property
    def permissions(self) -> list:
        if not self._permissions:
            return []
        try:
            return json.loads(self._permissions)
        except (json.JSONDecodeError, TypeError):
            return []

    @permissions.setter
    def permissions(self, value: list):
        self._permissions = json.dumps(sorted(set(value))) if value else None

    def __repr__(self):
        return f"<User #{self.id} {self.display_name}>"
