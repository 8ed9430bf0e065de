import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from hive_booking.core.config import settings
from hive_booking.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_store_retry(
    db: Session,
    operation: Callable[[], T],
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Run a unit of work, retrying it whole when the store is briefly unavailable.

    The operation must be safe to repeat: reservations re-run their overlap
    check on every attempt, so a retry can never insert a second row.
    """
    max_attempts = attempts or settings.store_retry_attempts
    backoff = settings.store_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except OperationalError as exc:
            db.rollback()
            if attempt == max_attempts:
                logger.error("store_unavailable attempts=%s error=%s", attempt, exc.orig)
                raise TransientStoreError("Booking store is temporarily unavailable") from exc
            logger.warning("store_retry attempt=%s/%s error=%s", attempt, max_attempts, exc.orig)
            time.sleep(backoff * attempt)

    raise TransientStoreError("Booking store is temporarily unavailable")
