import logging
from contextlib import contextmanager

from django.conf import settings
from django.db import OperationalError, connection

from common.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
RETRYABLE_SQLSTATES = {"55P03", "40P01", "40001"}


def is_lock_conflict(exc):
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(exc)


def set_lock_timeout():
    """Bound row-lock waits for the rest of the current transaction (PostgreSQL only)."""
    if connection.vendor != "postgresql":
        return
    timeout_ms = int(settings.INVENTORY_LOCK_TIMEOUT_MS)
    with connection.cursor() as cursor:
        cursor.execute(f"SET LOCAL lock_timeout = '{timeout_ms}ms'")


@contextmanager
def lock_conflicts_as_retryable(entity, entity_id=None):
    """Re-raise lock timeouts, deadlocks and serialization failures as ConcurrencyConflict."""
    try:
        yield
    except OperationalError as exc:
        if not is_lock_conflict(exc):
            raise
        logger.warning("lock_conflict entity=%s entity_id=%s", entity, entity_id)
        raise ConcurrencyConflict(entity=entity, entity_id=entity_id) from exc
