"""
Savory - Shared Model Mixins
=============================
Audit columns + logical deletion shared by every catalog/voucher/reward entity.

Soft-deleted rows stay in the table (they may still be referenced by past
orders) and are filtered out through `active()` instead of ad hoc checks.
"""

from sqlalchemy import Column, String, Boolean, text
from sqlalchemy.sql import func

from config.database import UTCDateTime
from common.helpers import now_utc


class AuditMixin:
    create_by = Column(String, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), default=now_utc, nullable=False)
    updated_at = Column(UTCDateTime, onupdate=now_utc, nullable=True)
    is_deleted = Column(Boolean, server_default=text("false"), default=False, nullable=False, index=True)
    deleted_at = Column(UTCDateTime, nullable=True)

    def soft_delete(self, at=None):
        self.is_deleted = True
        self.deleted_at = at or now_utc()


def active(query, *models):
    """Restrict a query to rows that are not soft-deleted (for every model given)."""
    for model in models:
        query = query.filter(model.is_deleted == False)  # noqa: E712
    return query


def existing_ids(db, model, ids) -> set:
    """Subset of `ids` that are live (not soft-deleted) rows of `model`."""
    if not ids:
        return set()
    rows = active(db.query(model.id), model).filter(model.id.in_(list(ids))).all()
    return {r[0] for r in rows}
