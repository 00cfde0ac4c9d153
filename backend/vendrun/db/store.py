"""Store primitives shared by the services.

``find_or_create`` is the natural-key upsert used by reconciliation and
pick generation: the insert runs inside a SAVEPOINT, and when a concurrent
writer wins the unique index the savepoint is rolled back and the winner's
row is re-read and reused.

``run_in_transaction`` wraps a unit of work with bounded retries for
transient store failures (timeouts, lock contention).
"""

import logging
import time
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from vendrun.core.config import settings
from vendrun.core.errors import EntityConflict, StoreUnavailable
from vendrun.core.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


def find_or_create(
    db: Session,
    lookup: Callable[[], Optional[T]],
    factory: Callable[[], T],
) -> Tuple[T, bool]:
    """Return ``(row, created)`` for the row matched by *lookup*.

    *lookup* must query by the same natural key the table's unique
    constraint enforces, otherwise the re-read after a lost race finds
    nothing and ``EntityConflict`` is raised.
    """
    existing = lookup()
    if existing is not None:
        return existing, False

    row = factory()
    savepoint = db.begin_nested()
    try:
        db.add(row)
        db.flush()
    except IntegrityError:
        savepoint.rollback()
        winner = lookup()
        if winner is None:
            raise EntityConflict(
                f"{type(row).__name__} natural key collided but no row could be re-read"
            )
        logger.debug("Lost create race for %s, reusing id=%s", type(row).__name__, winner.id)
        return winner, False
    savepoint.commit()
    return row, True


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> T:
    """Run *work* and commit, retrying transient store failures.

    Domain errors roll the session back and propagate untouched; only
    ``OperationalError`` is retried, with the delay doubling after every
    failed attempt.
    """
    attempts = attempts or settings.store_retry_attempts
    delay = settings.store_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except OperationalError as e:
            db.rollback()
            if attempt == attempts:
                logger.error(f"Store unavailable after {attempts} attempts: {e}")
                raise StoreUnavailable(attempts) from e
            metrics.store_retries += 1
            logger.warning(f"Transient store failure (attempt {attempt}/{attempts}): {e}")
            time.sleep(delay)
            delay *= 2
        except Exception:
            db.rollback()
            raise

    raise StoreUnavailable(attempts)
