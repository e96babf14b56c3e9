# Overview: Transaction boundary helpers: row locks, retries, all-or-nothing rollback.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking (SELECT ... FOR UPDATE) to a query.

    Used on the invoice settings row and on every bill/challan whose
    amounts are about to change.

    NOTE: SQLite ignores FOR UPDATE; there the version_id columns and the
    database-level write lock provide the serialization instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one all-or-nothing unit of work.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic version conflicts). Any other exception rolls the session
    back before propagating, so no partial state is ever committed.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
