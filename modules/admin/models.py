"""
Admin Module - Models
======================
SystemSetting: Key-value runtime configuration (loyalty rates, rank thresholds).
"""

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.sql import func

from config.database import Base, UTCDateTime
from common.helpers import now_utc


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True)
    key = Column(String, unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    description = Column(String, nullable=True)
    updated_at = Column(UTCDateTime, server_default=func.now(), default=now_utc, onupdate=now_utc)

    def __repr__(self):
        return f"<SystemSetting {self.key}={self.value}>"
