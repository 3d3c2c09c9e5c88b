"""
Firestore helpers shared by the services: query filters, timestamp
conversion, and the bounded retry loop around optimistic transactions.

NOTE: For the firebase_admin SDK we use positional arguments in where(),
which still work. The deprecation warning is just a warning.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from firebase_admin import firestore
from google.api_core import exceptions as gexc

from app.core.errors import TransientStoreConflict
from app.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Prefix of the ValueError google-cloud-firestore raises once its own
# commit attempts are used up.
_EXCEEDED_ATTEMPTS_PREFIX = "Failed to commit transaction"

RETRYABLE_STORE_ERRORS = (gexc.Aborted, gexc.Conflict)


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Usage:
        query = where_filter(collection, "cityId", "==", "san-diego-ca")
    """
    return query.where(field_path, op_string, value)


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse Firestore timestamps / datetimes / ISO strings to aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    if hasattr(value, "timestamp"):
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    return None


def to_iso(value: Any) -> Optional[str]:
    """
    ISO-8601 UTC string at full microsecond precision.

    Cursors round-trip through this, so it must not drop precision: a
    millisecond-truncated createdAt would sort before the real one.
    """
    dt = to_datetime(value)
    if dt is None:
        return None
    return dt.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RETRYABLE_STORE_ERRORS):
        return True
    if isinstance(exc, ValueError):
        if isinstance(exc.__cause__, RETRYABLE_STORE_ERRORS):
            return True
        return str(exc).startswith(_EXCEEDED_ATTEMPTS_PREFIX)
    return False


def run_transaction(
    db,
    callback: Callable[[Any], T],
    *,
    label: str,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> T:
    """
    Run ``callback(transaction)`` in a Firestore transaction, retrying on
    read-set conflicts.

    Each attempt gets a fresh single-shot transaction so retries are counted
    and logged here, not hidden inside the SDK. Domain errors raised by the
    callback abort the transaction and propagate untouched.

    Raises:
        TransientStoreConflict: still conflicting after ``max_attempts``
    """
    attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS
    backoff = settings.TRANSACTION_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    @firestore.transactional
    def _attempt(transaction):
        return callback(transaction)

    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return _attempt(db.transaction(max_attempts=1))
        except Exception as exc:
            if not _is_retryable(exc):
                raise
            last_exc = exc
            logger.warning(f"[TX] {label}: conflict on attempt {attempt}/{attempts}: {exc}")
            if attempt < attempts and backoff > 0:
                time.sleep(backoff * attempt)

    logger.error(f"[TX] {label}: giving up after {attempts} attempts", exc_info=last_exc)
    raise TransientStoreConflict(
        f"Transaction '{label}' could not complete after {attempts} attempts",
        attempts=attempts,
    ) from last_exc
