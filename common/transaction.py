"""
Savory - Transaction Helpers
=============================
Atomic evaluate-then-commit with bounded retry, and guarded counter updates.

Every counter mutation (voucher usage, reward stock, user points/exp) goes
through `run_atomic`: the whole operation is re-run from scratch after a
deadlock, serialization failure, or a guarded UPDATE that matched no row.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config.settings import TXN_MAX_RETRIES
from common.exceptions import ConcurrencyConflictError

logger = logging.getLogger("savory.txn")

T = TypeVar("T")


class CounterRaceError(Exception):
    """A guarded UPDATE matched no row: someone changed the counter since we read it."""
    pass


def guarded_update(db: Session, obj, values: dict, *conditions) -> None:
    """
    UPDATE obj's row with `values` only if `conditions` still hold in the DB.
    Raises CounterRaceError when the row no longer qualifies.
    """
    model = type(obj)
    db.flush()
    stmt = (
        update(model)
        .where(model.id == obj.id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        raise CounterRaceError(f"{model.__tablename__}#{obj.id}")
    db.expire(obj, list(values.keys()))


def run_atomic(db: Session, operation: Callable[[Session], T], label: str = "operation",
               retries: int = TXN_MAX_RETRIES) -> T:
    """
    Run `operation(db)` and commit. On conflict roll back and run it again,
    up to `retries` attempts, then raise ConcurrencyConflictError.
    Any other exception rolls back and propagates.
    """
    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            result = operation(db)
            db.commit()
            return result
        except (OperationalError, StaleDataError, CounterRaceError) as e:
            db.rollback()
            logger.warning(f"{label}: conflict on attempt {attempt}/{attempts}: {e}")
        except Exception:
            db.rollback()
            raise
    raise ConcurrencyConflictError()
